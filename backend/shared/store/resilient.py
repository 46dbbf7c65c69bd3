"""Store wrapper that bounds every call with a timeout and retries transient faults."""

from __future__ import annotations

import asyncio
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from shared.store.base import Record, Store, StoreUnavailableError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

logger = structlog.get_logger()

T = TypeVar("T")


class ResilientStore(Store):
    """Delegate to an inner store with per-call timeouts and exponential backoff.

    Only StoreUnavailableError and timeouts are retried. ConditionFailedError
    and every other exception propagate immediately: a failed condition is an
    answer, not a fault.
    """

    def __init__(
        self,
        inner: Store,
        *,
        timeout_seconds: float = 5.0,
        attempts: int = 3,
        base_delay_seconds: float = 0.05,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self._inner = inner
        self._timeout = timeout_seconds
        self._attempts = attempts
        self._base_delay = base_delay_seconds
        self._sleep = sleep

    async def _call(self, operation: str, factory: Callable[[], Awaitable[T]]) -> T:
        delay = self._base_delay
        for attempt in range(1, self._attempts + 1):
            try:
                return await asyncio.wait_for(factory(), timeout=self._timeout)
            except (TimeoutError, StoreUnavailableError) as exc:
                if attempt == self._attempts:
                    logger.error("store call failed, giving up", operation=operation, attempts=attempt)
                    if isinstance(exc, StoreUnavailableError):
                        raise
                    raise StoreUnavailableError(f"{operation} timed out after {self._timeout}s") from exc
                logger.warning(
                    "store call failed, retrying",
                    operation=operation,
                    attempt=attempt,
                    delay=delay,
                    error=str(exc) or type(exc).__name__,
                )
            await self._sleep(delay)
            delay *= 2
        raise AssertionError("unreachable")  # pragma: no cover

    async def get(self, pk: str, sk: str) -> Record | None:
        return await self._call("get", lambda: self._inner.get(pk, sk))

    async def put(self, record: Mapping[str, Any]) -> None:
        await self._call("put", lambda: self._inner.put(record))

    async def conditional_update(
        self,
        pk: str,
        sk: str,
        changes: Mapping[str, Any],
        expected: Mapping[str, Any],
    ) -> Record:
        return await self._call(
            "conditional_update",
            lambda: self._inner.conditional_update(pk, sk, changes, expected),
        )

    async def delete(self, pk: str, sk: str, expected: Mapping[str, Any] | None = None) -> None:
        await self._call("delete", lambda: self._inner.delete(pk, sk, expected))

    async def range_query(self, pk: str, sk_prefix: str = "") -> list[Record]:
        return await self._call("range_query", lambda: self._inner.range_query(pk, sk_prefix))
