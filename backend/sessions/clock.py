"""Chess-clock arithmetic. Pure functions; times are integer milliseconds."""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Sequence

MS_PER_HOUR = 3_600_000


def hours_to_ms(hours: float) -> int:
    return round(hours * MS_PER_HOUR)


def apply_elapsed(seat_time: int, elapsed: int, increment: int, maximum: int) -> int:
    """Return a seat's remaining time after spending ``elapsed`` and earning ``increment``.

    A seat that overspent keeps exactly ``increment``: nobody claimed the
    timeout, so the clock is treated as having bottomed out at zero.
    Otherwise the result is capped at ``maximum``.
    """
    remaining = seat_time - elapsed
    if remaining < 0:
        return increment
    return min(remaining + increment, maximum)


def find_expired_seat(times: Sequence[int], to_move: int | Sequence[bool] | None, elapsed: int) -> int | None:
    """Return the seat whose clock has run out, or None.

    Sequential sessions check only the seat to move. Simultaneous sessions
    check every seat that still owes a move and report the one with the most
    negative margin.
    """
    if to_move is None:
        return None
    if isinstance(to_move, int):
        return to_move if times[to_move] - elapsed < 0 else None

    expired: int | None = None
    worst_margin = 0
    for seat, owes_move in enumerate(to_move):
        margin = times[seat] - elapsed
        if owes_move and margin < worst_margin:
            expired, worst_margin = seat, margin
    return expired
