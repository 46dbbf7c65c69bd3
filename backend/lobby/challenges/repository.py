"""Challenge persistence and the challenge references kept on user records."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from lobby.challenges.models import Challenge
from sessions import keys
from sessions.exceptions import ConflictError, InvalidChallengeError
from sessions.models import ChallengeRefs, UserRecord, UserSection
from shared.store import MISSING, StoreError

if TYPE_CHECKING:
    from collections.abc import Callable

    from sessions.repository import SessionRepository
    from shared.store import Store

logger = structlog.get_logger()


def add_ref(refs: list[str], ref: str) -> None:
    if ref not in refs:
        refs.append(ref)


def remove_ref(refs: list[str], ref: str) -> None:
    while ref in refs:
        refs.remove(ref)


class ChallengeRepository:
    def __init__(self, store: Store, sessions: SessionRepository) -> None:
        self._store = store
        self._sessions = sessions

    async def get(self, challenge_id: str, *, meta_game: str | None = None, standing: bool = False) -> Challenge | None:
        if standing and not meta_game:
            raise InvalidChallengeError("standing challenges are looked up by game type")
        pk = keys.standing_partition(meta_game) if standing and meta_game else keys.CHALLENGE
        record = await self._store.get(pk, challenge_id)
        return Challenge.from_record(record) if record is not None else None

    async def list_standing(self, meta_game: str) -> list[Challenge]:
        records = await self._store.range_query(keys.standing_partition(meta_game))
        return sorted((Challenge.from_record(r) for r in records), key=lambda c: c.created_at)

    async def create(self, challenge: Challenge) -> None:
        await self._store.conditional_update(challenge.pk, challenge.id, challenge.to_record(), {"version": MISSING})
        if challenge.standing:
            await self._sessions.adjust_counts(challenge.meta_game, {"standingchallenges": 1})

    async def save(self, challenge: Challenge, *, expected_version: int) -> Challenge:
        """Write ``challenge`` if nobody changed it since ``expected_version``. Raises ConditionFailedError."""
        saved = challenge.model_copy(update={"version": expected_version + 1})
        await self._store.conditional_update(saved.pk, saved.id, saved.to_record(), {"version": expected_version})
        return saved

    async def delete(self, challenge: Challenge, *, expected_version: int | None = None) -> None:
        """Delete the record; with ``expected_version`` only if it is unchanged."""
        expected = {"version": expected_version} if expected_version is not None else None
        await self._store.delete(challenge.pk, challenge.id, expected)
        if challenge.standing:
            try:
                await self._sessions.adjust_counts(challenge.meta_game, {"standingchallenges": -1})
            except (ConflictError, StoreError):
                logger.exception("standing challenge counter update failed", meta_game=challenge.meta_game)

    async def consume(self, challenge: Challenge) -> bool:
        """Claim ``challenge`` for a match about to start. Returns True when the record was removed.

        Direct challenges and standing duplicates are single use and are
        deleted. A two-player standing challenge stays open and spends one
        unit of ``duration``; the last unit deletes it. Raises
        ConditionFailedError if another request changed the challenge first.
        """
        if not challenge.is_standing_original or challenge.duration == 1:
            await self.delete(challenge, expected_version=challenge.version)
            return True
        if challenge.duration is not None:
            await self.save(
                challenge.model_copy(update={"duration": challenge.duration - 1}),
                expected_version=challenge.version,
            )
        return False

    async def restore(self, challenge: Challenge, *, removed: bool) -> None:
        """Undo ``consume`` when the match it was claimed for could not be created.

        Puts the challenge back as it stood before the claim, so it can be
        accepted again. Failures are logged.
        """
        try:
            if removed:
                await self.create(challenge)
            elif challenge.duration is not None:
                await self.save(challenge, expected_version=challenge.version + 1)
        except (ConflictError, StoreError):
            logger.exception("failed to restore claimed challenge", challenge_id=challenge.id)
        else:
            logger.warning("claimed challenge restored", challenge_id=challenge.id)

    async def update_refs(self, user_id: str, change: Callable[[ChallengeRefs], None]) -> None:
        def apply(user: UserRecord) -> None:
            change(user.challenges)

        await self._sessions.update_user(user_id, UserSection.CHALLENGES, apply)

    async def release_references(self, challenge: Challenge) -> None:
        """Remove every user's reference to ``challenge``. Failures are logged per user."""
        ref = challenge.reference
        touched: dict[str, Callable[[ChallengeRefs], None]] = {}

        def challenger_change(refs: ChallengeRefs) -> None:
            remove_ref(refs.standing if challenge.standing else refs.issued, ref)

        def invitee_change(refs: ChallengeRefs) -> None:
            remove_ref(refs.received, ref)
            remove_ref(refs.accepted, ref)

        touched[challenge.challenger.id] = challenger_change
        for participant in [*challenge.challengees, *challenge.players]:
            if participant.id != challenge.challenger.id:
                touched[participant.id] = invitee_change

        for user_id, change in touched.items():
            try:
                await self.update_refs(user_id, change)
            except (ConflictError, StoreError):
                logger.exception("failed to release challenge reference", user_id=user_id, challenge_id=challenge.id)
