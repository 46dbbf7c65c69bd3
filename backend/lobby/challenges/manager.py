"""Challenge lifecycle: propose, accept, revoke and decline.

Accepting the last open seat hands the challenge to the MatchStarter. A
standing challenge for more than two players is never filled in place: the
first acceptance spawns a duplicate with the same terms that collects
players, so the original stays open for others.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

import structlog

from lobby.challenges.models import Challenge, Participant
from lobby.challenges.repository import add_ref, remove_ref
from sessions.exceptions import (
    ConflictError,
    InvalidChallengeError,
    NotEligibleError,
    NotFoundError,
    NotOwnerError,
    NotParticipantError,
)
from sessions.notify import BroadcastEvent, Template
from shared.store import ConditionFailedError, StoreError

if TYPE_CHECKING:
    from collections.abc import Callable

    from lobby.challenges.models import ChallengeTerms
    from lobby.challenges.repository import ChallengeRepository
    from lobby.challenges.starter import MatchStarter, StartedMatch
    from sessions.models import ChallengeRefs
    from sessions.notify import Notifications
    from sessions.repository import SessionRepository
    from sessions.rules import RulesRegistry

logger = structlog.get_logger()

# Fields copied verbatim from the proposed terms onto the stored challenge.
_TERMS_FIELDS = {
    "meta_game",
    "num_players",
    "seating",
    "variants",
    "clock_start",
    "clock_inc",
    "clock_max",
    "clock_hard",
    "rated",
    "standing",
    "duration",
    "challengees",
    "comment",
}


@dataclass(frozen=True)
class AcceptResult:
    """``match`` is set when the acceptance filled the last seat."""

    challenge: Challenge
    match: StartedMatch | None = None


class ChallengeManager:
    def __init__(
        self,
        registry: RulesRegistry,
        challenges: ChallengeRepository,
        sessions: SessionRepository,
        starter: MatchStarter,
        notifications: Notifications,
        now: Callable[[], int],
        *,
        id_factory: Callable[[], str] = lambda: str(uuid.uuid4()),
    ) -> None:
        self._registry = registry
        self._challenges = challenges
        self._sessions = sessions
        self._starter = starter
        self._notifications = notifications
        self._now = now
        self._id_factory = id_factory

    async def _participant(self, user_id: str) -> Participant:
        user = await self._sessions.get_user(user_id)
        if user is None:
            raise NotEligibleError(f"user {user_id} is not registered")
        return Participant(id=user.id, name=user.name)

    async def _require(self, challenge_id: str, meta_game: str | None, standing: bool) -> Challenge:  # noqa: FBT001
        challenge = await self._challenges.get(challenge_id, meta_game=meta_game, standing=standing)
        if challenge is None:
            raise NotFoundError(f"challenge {challenge_id} no longer exists")
        return challenge

    async def propose(self, user_id: str, terms: ChallengeTerms) -> Challenge:
        engine = self._registry.get(terms.meta_game)
        if terms.num_players not in engine.player_counts:
            raise InvalidChallengeError(f"{terms.meta_game} cannot be played by {terms.num_players} players")
        if any(c.id == user_id for c in terms.challengees):
            raise InvalidChallengeError("cannot challenge yourself")
        challenger = await self._participant(user_id)

        challenge = Challenge(
            id=self._id_factory(),
            created_at=self._now(),
            challenger=challenger,
            players=[challenger],
            **terms.model_dump(include=_TERMS_FIELDS),
        )
        await self._challenges.create(challenge)
        logger.info("challenge proposed", challenge_id=challenge.id, meta_game=challenge.meta_game, standing=challenge.standing)

        ref = challenge.reference
        await self._challenges.update_refs(
            user_id,
            lambda refs: add_ref(refs.standing if challenge.standing else refs.issued, ref),
        )
        for challengee in challenge.challengees:
            await self._safe_ref_update(challengee.id, challenge, lambda refs: add_ref(refs.received, ref))
        await self._notifications.send(
            [c.id for c in challenge.challengees],
            Template.CHALLENGE_RECEIVED,
            {"challenger": challenger.name, "game": engine.name, "challenge_id": challenge.id},
        )
        return challenge

    async def accept(
        self,
        user_id: str,
        challenge_id: str,
        *,
        meta_game: str | None = None,
        standing: bool = False,
    ) -> AcceptResult:
        accepter = await self._participant(user_id)

        async def attempt() -> AcceptResult:
            challenge = await self._require(challenge_id, meta_game, standing)
            if challenge.has_player(user_id):
                raise NotEligibleError(f"{user_id} already takes part in challenge {challenge_id}")
            if not challenge.standing and not challenge.is_challengee(user_id):
                raise NotEligibleError(f"{user_id} was not invited to challenge {challenge_id}")

            if challenge.is_standing_original and challenge.num_players > 2:
                return AcceptResult(challenge=await self.duplicate_standing(challenge, accepter))
            if len(challenge.players) == challenge.num_players - 1:
                match = await self._starter.start(challenge, accepter, self._now())
                return AcceptResult(challenge=challenge, match=match)
            return AcceptResult(challenge=await self._add_player(challenge, accepter))

        result = await self._sessions.retry_on_conflict(f"challenge {challenge_id}", attempt)

        if result.match is not None:
            if result.challenge.origin_id is not None:
                await self._spend_origin(result.challenge)
            await self._announce_start(result.match)
        else:
            await self._notifications.send(
                [result.challenge.challenger.id],
                Template.CHALLENGE_ACCEPTED,
                {"player": accepter.name, "challenge_id": result.challenge.id},
            )
        return result

    async def duplicate_standing(self, original: Challenge, accepter: Participant) -> Challenge:
        """Spawn a duplicate of a many-player standing challenge holding its first acceptance.

        The original is only touched to count the duplicate. Raises
        ConditionFailedError if the original changed since it was read.
        """
        await self._challenges.save(
            original.model_copy(update={"duplicates": original.duplicates + 1}),
            expected_version=original.version,
        )
        duplicate = original.model_copy(
            update={
                "id": self._id_factory(),
                "players": [original.challenger, accepter],
                "origin_id": original.id,
                "duration": None,
                "duplicates": 0,
                "created_at": self._now(),
                "version": 1,
            },
        )
        await self._challenges.create(duplicate)
        logger.info("standing challenge duplicated", challenge_id=original.id, duplicate_id=duplicate.id)

        ref = duplicate.reference
        await self._safe_ref_update(original.challenger.id, duplicate, lambda refs: add_ref(refs.standing, ref))
        await self._safe_ref_update(accepter.id, duplicate, lambda refs: add_ref(refs.accepted, ref))
        return duplicate

    async def _spend_origin(self, duplicate: Challenge) -> None:
        """A match started from a duplicate uses up one unit of the original's duration.

        An original that was revoked or expired meanwhile is simply skipped:
        duplicates resolve independently.
        """
        origin_id = duplicate.origin_id
        if origin_id is None:
            return

        async def attempt() -> None:
            origin = await self._challenges.get(origin_id, meta_game=duplicate.meta_game, standing=True)
            if origin is None or origin.duration is None:
                return
            if origin.duration == 1:
                await self._challenges.delete(origin, expected_version=origin.version)
                await self._challenges.release_references(origin)
                logger.info("standing challenge expired", challenge_id=origin.id)
                return
            await self._challenges.save(
                origin.model_copy(update={"duration": origin.duration - 1}),
                expected_version=origin.version,
            )

        try:
            await self._sessions.retry_on_conflict(f"challenge {origin_id}", attempt)
        except (ConflictError, StoreError):
            logger.exception("failed to spend standing challenge duration", challenge_id=origin_id)

    async def _add_player(self, challenge: Challenge, accepter: Participant) -> Challenge:
        updated = challenge.model_copy(
            update={
                "players": [*challenge.players, accepter],
                "challengees": [c for c in challenge.challengees if c.id != accepter.id],
            },
        )
        saved = await self._challenges.save(updated, expected_version=challenge.version)
        ref = challenge.reference

        def change(refs: ChallengeRefs) -> None:
            remove_ref(refs.received, ref)
            add_ref(refs.accepted, ref)

        await self._safe_ref_update(accepter.id, challenge, change)
        return saved

    async def _announce_start(self, match: StartedMatch) -> None:
        session = match.session
        params = {"game": match.game_name, "game_id": session.id, "opponents": [p.name for p in session.players]}
        await self._notifications.send(session.player_ids, Template.GAME_STARTED, params)
        first = session.player_ids if session.simultaneous else [session.players[0].id]
        await self._notifications.send(first, Template.YOUR_MOVE, params)
        await self._notifications.publish(
            BroadcastEvent.GAME_STARTED,
            {"game_id": session.id, "meta_game": session.meta_game, "players": session.player_ids},
        )

    async def revoke(
        self,
        user_id: str,
        challenge_id: str,
        *,
        meta_game: str | None = None,
        standing: bool = False,
    ) -> Challenge:
        challenge = await self._require(challenge_id, meta_game, standing)
        if challenge.challenger.id != user_id:
            raise NotOwnerError(f"only the challenger may revoke challenge {challenge_id}")
        await self._remove(challenge)
        logger.info("challenge revoked", challenge_id=challenge.id)
        others = [p.id for p in [*challenge.challengees, *challenge.players] if p.id != user_id]
        await self._notifications.send(
            others,
            Template.CHALLENGE_REVOKED,
            {"challenger": challenge.challenger.name, "challenge_id": challenge.id},
        )
        return challenge

    async def decline(
        self,
        user_id: str,
        challenge_id: str,
        *,
        meta_game: str | None = None,
        standing: bool = False,
    ) -> Challenge:
        challenge = await self._require(challenge_id, meta_game, standing)
        if challenge.challenger.id == user_id:
            raise NotEligibleError("the challenger revokes, not declines")
        if not challenge.is_challengee(user_id) and not challenge.has_player(user_id):
            raise NotParticipantError(f"{user_id} takes no part in challenge {challenge_id}")
        decliner = next(p for p in [*challenge.challengees, *challenge.players] if p.id == user_id)
        await self._remove(challenge)
        logger.info("challenge declined", challenge_id=challenge.id, user_id=user_id)
        others = [p.id for p in [*challenge.challengees, *challenge.players] if p.id != user_id]
        await self._notifications.send(
            others,
            Template.CHALLENGE_REJECTED,
            {"player": decliner.name, "challenge_id": challenge.id},
        )
        return challenge

    async def _remove(self, challenge: Challenge) -> None:
        try:
            await self._challenges.delete(challenge, expected_version=challenge.version)
        except ConditionFailedError as e:
            raise NotFoundError(f"challenge {challenge.id} changed or was resolved meanwhile") from e
        await self._challenges.release_references(challenge)

    async def _safe_ref_update(self, user_id: str, challenge: Challenge, change: Callable[[ChallengeRefs], None]) -> None:
        try:
            await self._challenges.update_refs(user_id, change)
        except (ConflictError, StoreError):
            logger.exception("challenge reference update failed", user_id=user_id, challenge_id=challenge.id)

    async def details(self, challenge_id: str, *, meta_game: str | None = None, standing: bool = False) -> Challenge:
        return await self._require(challenge_id, meta_game, standing)

    async def list_standing(self, meta_game: str) -> list[Challenge]:
        return await self._challenges.list_standing(meta_game)
