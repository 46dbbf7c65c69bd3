"""In-process record store used by tests and single-process deployments."""

from __future__ import annotations

import asyncio
import copy
from typing import TYPE_CHECKING, Any

from shared.store.base import ConditionFailedError, Record, Store, failed_condition, merge_changes

if TYPE_CHECKING:
    from collections.abc import Mapping


class InMemoryStore(Store):
    """Dict-backed store. A single asyncio lock serializes conditional writes."""

    def __init__(self) -> None:
        self._partitions: dict[str, dict[str, Record]] = {}
        self._lock = asyncio.Lock()

    async def get(self, pk: str, sk: str) -> Record | None:
        record = self._partitions.get(pk, {}).get(sk)
        return copy.deepcopy(record) if record is not None else None

    async def put(self, record: Mapping[str, Any]) -> None:
        pk, sk = record["pk"], record["sk"]
        async with self._lock:
            self._partitions.setdefault(pk, {})[sk] = copy.deepcopy(dict(record))

    async def conditional_update(
        self,
        pk: str,
        sk: str,
        changes: Mapping[str, Any],
        expected: Mapping[str, Any],
    ) -> Record:
        async with self._lock:
            current = self._partitions.get(pk, {}).get(sk)
            field = failed_condition(current, expected)
            if field is not None:
                raise ConditionFailedError(pk, sk, field)
            merged = merge_changes(pk, sk, current, changes)
            self._partitions.setdefault(pk, {})[sk] = merged
            return copy.deepcopy(merged)

    async def delete(self, pk: str, sk: str, expected: Mapping[str, Any] | None = None) -> None:
        async with self._lock:
            partition = self._partitions.get(pk, {})
            current = partition.get(sk)
            if expected:
                if current is None:
                    raise ConditionFailedError(pk, sk)
                field = failed_condition(current, expected)
                if field is not None:
                    raise ConditionFailedError(pk, sk, field)
            partition.pop(sk, None)
            if not partition:
                self._partitions.pop(pk, None)

    async def range_query(self, pk: str, sk_prefix: str = "") -> list[Record]:
        partition = self._partitions.get(pk, {})
        return [copy.deepcopy(partition[sk]) for sk in sorted(partition) if sk.startswith(sk_prefix)]
