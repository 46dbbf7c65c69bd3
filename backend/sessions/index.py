"""Denormalized game listings and per game type counters.

A session appears under four listing partitions per namespace: all games,
games of its type, games of each participant, and games of its type for each
participant. Starting a session fans it out under CURRENTGAMES; completing it
removes those entries and, when the game is retained, fans it out under
COMPLETEDGAMES.

The fan-out is not transactional. Each write is attempted independently and
failures are logged; the session record stays authoritative and listings are
repaired by the next write that touches them.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from sessions import keys
from sessions.exceptions import ConflictError
from shared.store import Record, StoreError

if TYPE_CHECKING:
    from sessions.models import GameSession, GameSummary
    from sessions.repository import SessionRepository
    from sessions.user_games import UserGameLists

logger = structlog.get_logger()


@dataclass(frozen=True)
class IndexPlan:
    """Store writes and counter changes for one session transition."""

    meta_game: str
    puts: list[Record] = field(default_factory=list)
    deletes: list[tuple[str, str]] = field(default_factory=list)
    counter_deltas: dict[str, int] = field(default_factory=dict)


def listing_partitions(namespace: str, summary: GameSummary) -> list[str]:
    partitions = [
        keys.listing_partition(namespace),
        keys.listing_partition(namespace, summary.meta_game),
    ]
    for player in summary.players:
        partitions.append(keys.listing_partition(namespace, player_id=player.id))
        partitions.append(keys.listing_partition(namespace, summary.meta_game, player.id))
    return partitions


def is_retained(session: GameSession) -> bool:
    """Games that ended within the opening round (no more plies than seats) stay out of completed listings."""
    return (session.num_moves or 0) > session.num_players


def plan_progress(session: GameSession) -> IndexPlan:
    """Rewrite the CURRENTGAMES entries in place; the sort key is fixed by the start time."""
    summary = session.summary()
    sort_key = keys.listing_sort_key(session.game_started, session.id)
    body = summary.model_dump(mode="json")
    return IndexPlan(
        meta_game=session.meta_game,
        puts=[{"pk": pk, "sk": sort_key, **body} for pk in listing_partitions(keys.CURRENT_GAMES, summary)],
    )


def plan_start(session: GameSession) -> IndexPlan:
    return IndexPlan(
        meta_game=session.meta_game,
        puts=plan_progress(session).puts,
        counter_deltas={"currentgames": 1},
    )


def plan_complete(session: GameSession, completed_at: int) -> IndexPlan:
    summary = session.summary()
    current_key = keys.listing_sort_key(session.game_started, session.id)
    deletes = [(pk, current_key) for pk in listing_partitions(keys.CURRENT_GAMES, summary)]
    if not is_retained(session):
        return IndexPlan(meta_game=session.meta_game, deletes=deletes, counter_deltas={"currentgames": -1})

    completed_key = keys.listing_sort_key(completed_at, session.id)
    body = summary.model_dump(mode="json")
    return IndexPlan(
        meta_game=session.meta_game,
        puts=[{"pk": pk, "sk": completed_key, **body} for pk in listing_partitions(keys.COMPLETED_GAMES, summary)],
        deletes=deletes,
        counter_deltas={"currentgames": -1, "completedgames": 1},
    )


class IndexMaintainer:
    def __init__(self, repository: SessionRepository, user_games: UserGameLists) -> None:
        self._repository = repository
        self._user_games = user_games

    async def record_start(self, session: GameSession) -> None:
        await self.apply(plan_start(session))
        await self._user_games.upsert(session.player_ids, session.summary())

    async def record_progress(self, session: GameSession) -> None:
        """Rewrite current listings and participants' game lists after a non-terminal transition."""
        await self.apply(plan_progress(session))
        await self._user_games.upsert(session.player_ids, session.summary())

    async def record_complete(self, session: GameSession, completed_at: int, *, seen_by: str | None = None) -> None:
        await self.apply(plan_complete(session, completed_at))
        await self._user_games.upsert(session.player_ids, session.summary(), seen_by=seen_by, seen_at=completed_at)

    async def apply(self, plan: IndexPlan) -> int:
        """Execute a plan, continuing past individual failures. Returns the number of failed writes."""
        store = self._repository.store
        failures = 0
        # Removals first: a crash midway leaves a game missing from a listing
        # rather than listed as both current and completed.
        for pk, sk in plan.deletes:
            try:
                await store.delete(pk, sk)
            except StoreError:
                failures += 1
                logger.exception("listing delete failed", pk=pk, sk=sk)
        for record in plan.puts:
            try:
                await store.put(record)
            except StoreError:
                failures += 1
                logger.exception("listing write failed", pk=record["pk"], sk=record["sk"])
        if plan.counter_deltas:
            try:
                await self._repository.adjust_counts(plan.meta_game, plan.counter_deltas)
            except (ConflictError, StoreError):
                failures += 1
                logger.exception("counter update failed", meta_game=plan.meta_game, deltas=plan.counter_deltas)
        if failures:
            logger.warning("listing fan-out incomplete", meta_game=plan.meta_game, failures=failures)
        return failures
