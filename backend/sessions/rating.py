"""Elo rating for two-player rated games."""

from __future__ import annotations

from typing import TYPE_CHECKING

from pydantic import BaseModel

from sessions.exceptions import InvalidOutcomeError

if TYPE_CHECKING:
    from collections.abc import Collection

DEFAULT_RATING = 1200.0

WIN = 1.0
LOSS = 0.0
DRAW = 0.5


class RatingRecord(BaseModel):
    """Per player, per game type. ``n`` counts rated games played."""

    rating: float = DEFAULT_RATING
    n: int = 0
    wins: int = 0
    draws: int = 0


def k_factor(games_played: int) -> int:
    if games_played < 10:
        return 40
    if games_played < 20:
        return 30
    if games_played < 40:
        return 25
    return 20


def expected_score(rating: float, opponent_rating: float) -> float:
    return 1 / (1 + 10 ** ((opponent_rating - rating) / 400))


def first_player_score(winners: Collection[int]) -> float:
    """Realized score for player 1 given the 1-based winner set.

    An empty winner set is scored as a draw. Any set other than {}, {1}, {2}
    or {1, 2} is a data-integrity defect.
    """
    outcome = frozenset(winners)
    if outcome == {1}:
        return WIN
    if outcome == {2}:
        return LOSS
    if outcome in (frozenset(), frozenset({1, 2})):
        return DRAW
    raise InvalidOutcomeError(f"cannot rate winner set {sorted(outcome)}")


def rate_side(record: RatingRecord, opponent_rating: float, score: float) -> RatingRecord:
    """Apply one game's result to one player's record.

    ``opponent_rating`` is the opponent's rating before the game; the K factor
    comes from this player's own game count.
    """
    change = k_factor(record.n) * (score - expected_score(record.rating, opponent_rating))
    return RatingRecord(
        rating=record.rating + change,
        n=record.n + 1,
        wins=record.wins + (1 if score == WIN else 0),
        draws=record.draws + (1 if score == DRAW else 0),
    )


def rate_match(
    first: RatingRecord,
    second: RatingRecord,
    winners: Collection[int],
) -> tuple[RatingRecord, RatingRecord]:
    """Return both players' updated records. Raises InvalidOutcomeError for unratable outcomes."""
    score = first_player_score(winners)
    return rate_side(first, second.rating, score), rate_side(second, first.rating, 1 - score)
