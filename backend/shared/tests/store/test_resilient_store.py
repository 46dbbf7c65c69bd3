from __future__ import annotations

import asyncio

import pytest

from shared.store import ConditionFailedError, InMemoryStore, ResilientStore, StoreUnavailableError


class _FlakyStore(InMemoryStore):
    """In-memory store whose ``get`` fails a fixed number of times first."""

    def __init__(self, failures: int, error: Exception | None = None, hang: bool = False) -> None:
        super().__init__()
        self.failures = failures
        self.error = error or StoreUnavailableError("database is locked")
        self.hang = hang
        self.calls = 0

    async def get(self, pk, sk):
        self.calls += 1
        if self.calls <= self.failures:
            if self.hang:
                await asyncio.sleep(10)
            raise self.error
        return await super().get(pk, sk)


class _Sleeps:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


class TestResilientStore:
    async def test_passes_through_on_success(self):
        inner = InMemoryStore()
        store = ResilientStore(inner)

        await store.put({"pk": "GAME", "sk": "g1", "version": 1})

        assert await store.get("GAME", "g1") == {"pk": "GAME", "sk": "g1", "version": 1}
        assert await store.range_query("GAME") == [{"pk": "GAME", "sk": "g1", "version": 1}]

    async def test_retries_transient_failures_with_backoff(self):
        inner = _FlakyStore(failures=2)
        sleeps = _Sleeps()
        store = ResilientStore(inner, attempts=3, base_delay_seconds=0.1, sleep=sleeps)

        assert await store.get("GAME", "g1") is None
        assert inner.calls == 3
        assert sleeps.delays == [0.1, 0.2]

    async def test_gives_up_after_attempts(self):
        inner = _FlakyStore(failures=5)
        store = ResilientStore(inner, attempts=3, sleep=_Sleeps())

        with pytest.raises(StoreUnavailableError):
            await store.get("GAME", "g1")
        assert inner.calls == 3

    async def test_timeout_becomes_unavailable(self):
        inner = _FlakyStore(failures=5, hang=True)
        store = ResilientStore(inner, timeout_seconds=0.01, attempts=2, sleep=_Sleeps())

        with pytest.raises(StoreUnavailableError, match="timed out"):
            await store.get("GAME", "g1")
        assert inner.calls == 2

    async def test_condition_failure_is_not_retried(self):
        inner = InMemoryStore()
        sleeps = _Sleeps()
        store = ResilientStore(inner, sleep=sleeps)

        with pytest.raises(ConditionFailedError):
            await store.conditional_update("GAME", "g1", {"version": 2}, {"version": 1})
        assert sleeps.delays == []

    async def test_unexpected_errors_are_not_retried(self):
        inner = _FlakyStore(failures=1, error=ValueError("bad"))
        store = ResilientStore(inner, sleep=_Sleeps())

        with pytest.raises(ValueError, match="bad"):
            await store.get("GAME", "g1")
        assert inner.calls == 1

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError, match="at least 1"):
            ResilientStore(InMemoryStore(), attempts=0)
