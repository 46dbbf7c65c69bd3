"""Seat assignment and initial per-seat orientation."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

from lobby.challenges.models import Seating
from sessions.rules import GameFlag

if TYPE_CHECKING:
    import random

    from lobby.challenges.models import Challenge, Participant
    from sessions.rules import RulesEngine


def seat_players(challenge: Challenge, accepter: Participant, rng: random.Random) -> list[Participant]:
    """Order the challenge's players plus the final accepter into seats."""
    if challenge.num_players == 2 and challenge.seating == Seating.SEAT_FIRST:
        return [challenge.challenger, accepter]
    if challenge.num_players == 2 and challenge.seating == Seating.SEAT_SECOND:
        return [accepter, challenge.challenger]
    seated = [*challenge.players, accepter]
    rng.shuffle(seated)
    return seated


def orientation_settings(engine: RulesEngine, seat_count: int) -> list[dict[str, Any] | None]:
    """Seat 0 keeps the default view; later seats are rotated for games played from a perspective."""
    if not engine.has_flag(GameFlag.PERSPECTIVE):
        return [None] * seat_count
    step = 90 if seat_count > 2 and engine.has_flag(GameFlag.ROTATE90) else 180
    return [None, *({"rotate": (seat * step) % 360} for seat in range(1, seat_count))]
