"""Turns a fully subscribed challenge into a live game session."""

from __future__ import annotations

import random
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from lobby.challenges.seating import orientation_settings, seat_players
from sessions.clock import hours_to_ms
from sessions.exceptions import InvalidChallengeError
from sessions.models import GameSession, SeatPlayer
from sessions.rules import GameFlag, IllegalMoveError
from shared.store import StoreError

if TYPE_CHECKING:
    from collections.abc import Callable

    from lobby.challenges.models import Challenge, Participant
    from lobby.challenges.repository import ChallengeRepository
    from sessions.index import IndexMaintainer
    from sessions.repository import SessionRepository
    from sessions.rules import RulesRegistry

logger = structlog.get_logger()


def _new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class StartedMatch:
    session: GameSession
    challenge: Challenge
    game_name: str


class MatchStarter:
    def __init__(
        self,
        registry: RulesRegistry,
        challenges: ChallengeRepository,
        sessions: SessionRepository,
        index: IndexMaintainer,
        *,
        rng: random.Random | None = None,
        id_factory: Callable[[], str] = _new_id,
    ) -> None:
        self._registry = registry
        self._challenges = challenges
        self._sessions = sessions
        self._index = index
        self._rng = rng or random.Random()  # noqa: S311
        self._id_factory = id_factory

    def build_session(self, challenge: Challenge, accepter: Participant, now: int) -> GameSession:
        """Seat the players and build the initial session. Writes nothing."""
        engine = self._registry.get(challenge.meta_game)
        seated = seat_players(challenge, accepter, self._rng)
        settings = orientation_settings(engine, len(seated))
        start_time = hours_to_ms(challenge.clock_start)
        try:
            state = engine.instantiate(challenge.num_players, challenge.variants)
        except IllegalMoveError as e:
            raise InvalidChallengeError(f"cannot set up {challenge.meta_game}: {e.reason}") from e

        simultaneous = engine.has_flag(GameFlag.SIMULTANEOUS)
        n = len(seated)
        return GameSession(
            id=self._id_factory(),
            meta_game=challenge.meta_game,
            num_players=n,
            variants=list(challenge.variants),
            rated=challenge.rated,
            simultaneous=simultaneous,
            players=[
                SeatPlayer(id=p.id, name=p.name, time=start_time, settings=s)
                for p, s in zip(seated, settings, strict=True)
            ],
            clock_start=challenge.clock_start,
            clock_inc=challenge.clock_inc,
            clock_max=challenge.clock_max,
            clock_hard=challenge.clock_hard,
            state=engine.serialize(state),
            to_move=[True] * n if simultaneous else 0,
            partial_move=",".join([""] * n) if simultaneous else None,
            last_move_time=now,
            game_started=now,
        )

    async def start(self, challenge: Challenge, accepter: Participant, now: int) -> StartedMatch:
        """Claim the challenge and create the session.

        The claim comes first, so a challenge is consumed by exactly one
        request: a competing request fails with ConditionFailedError before
        anything else is written. If the session write then fails, the claim
        is undone and the error propagates. Listing and game-list updates
        after the session write are best effort.
        """
        session = self.build_session(challenge, accepter, now)
        removed = await self._challenges.consume(challenge)
        try:
            await self._sessions.create_session(session)
        except StoreError:
            await self._challenges.restore(challenge, removed=removed)
            raise
        logger.info(
            "match started",
            game_id=session.id,
            challenge_id=challenge.id,
            meta_game=session.meta_game,
            players=session.player_ids,
        )
        if removed:
            await self._challenges.release_references(challenge)
        await self._index.record_start(session)
        return StartedMatch(session=session, challenge=challenge, game_name=self._registry.get(challenge.meta_game).name)
