"""Key/value record store shared by the session engine and the lobby.

Records are JSON-compatible dicts addressed by a partition key (``pk``) and a
sortable key (``sk``) within the partition. Implementations hand out copies:
mutating a returned record never changes stored data.
"""

from __future__ import annotations

import copy
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Final

if TYPE_CHECKING:
    from collections.abc import Mapping

Record = dict[str, Any]


class _Missing:
    """Marker for "field or record must be absent" in conditional writes."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Final = _Missing()

KEY_FIELDS = frozenset({"pk", "sk"})


class StoreError(Exception):
    """Base class for store failures."""


class ConditionFailedError(StoreError):
    """A conditional write found the record in a different state than expected."""

    def __init__(self, pk: str, sk: str, field: str | None = None) -> None:
        self.pk = pk
        self.sk = sk
        self.field = field
        where = f" on field {field!r}" if field else ""
        super().__init__(f"condition failed for {pk}/{sk}{where}")


class StoreUnavailableError(StoreError):
    """Transient infrastructure fault (timeout, locked database). Safe to retry."""


def failed_condition(record: Mapping[str, Any] | None, expected: Mapping[str, Any]) -> str | None:
    """Return the first expected field that does not hold, or None when all hold.

    A missing record satisfies only expectations of MISSING.
    """
    for field, value in expected.items():
        if record is None:
            if value is not MISSING:
                return field
            continue
        if value is MISSING:
            if field in record:
                return field
        elif field not in record or record[field] != value:
            return field
    return None


def merge_changes(pk: str, sk: str, record: Mapping[str, Any] | None, changes: Mapping[str, Any]) -> Record:
    """Apply field-level changes to a record copy. A MISSING value removes the field."""
    merged: Record = copy.deepcopy(dict(record)) if record is not None else {}
    for field, value in changes.items():
        if field in KEY_FIELDS:
            continue
        if value is MISSING:
            merged.pop(field, None)
        else:
            merged[field] = copy.deepcopy(value)
    merged["pk"] = pk
    merged["sk"] = sk
    return merged


class Store(ABC):
    """Abstract record store with conditional (compare-and-set) writes."""

    @abstractmethod
    async def get(self, pk: str, sk: str) -> Record | None:
        """Return a copy of the record, or None when absent."""

    @abstractmethod
    async def put(self, record: Mapping[str, Any]) -> None:
        """Insert or replace a record. ``record`` must carry ``pk`` and ``sk``."""

    @abstractmethod
    async def conditional_update(
        self,
        pk: str,
        sk: str,
        changes: Mapping[str, Any],
        expected: Mapping[str, Any],
    ) -> Record:
        """Atomically merge ``changes`` into the record if every ``expected`` field matches.

        Expecting MISSING for a field requires it to be absent; when every
        expectation is MISSING the record may be created. Raises
        ConditionFailedError otherwise. Returns the stored record.
        """

    @abstractmethod
    async def delete(self, pk: str, sk: str, expected: Mapping[str, Any] | None = None) -> None:
        """Delete a record. Deleting an absent record without expectations is a no-op."""

    @abstractmethod
    async def range_query(self, pk: str, sk_prefix: str = "") -> list[Record]:
        """Return the partition's records whose ``sk`` starts with ``sk_prefix``, sorted by ``sk``."""
