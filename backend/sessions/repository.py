"""Typed access to session, user, comment, counter and listing records.

Writes to shared records go through compare-and-set loops: read, change a
copy, write conditionally on the version (or section counter) that was read,
and retry on a lost race. Only the changed fields are written, so concurrent
updates to other sections of the same record are never overwritten.
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from sessions import keys
from sessions.exceptions import ConflictError
from sessions.models import (
    MAX_COMMENT_LOG_BYTES,
    Comment,
    GameSession,
    GameSummary,
    MetaGameCounts,
    UserRecord,
    UserSection,
)
from shared.store import MISSING, ConditionFailedError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable, Mapping

    from sessions.rating import RatingRecord
    from shared.store import Store

logger = structlog.get_logger()

T = TypeVar("T")


class SessionRepository:
    def __init__(self, store: Store, *, cas_attempts: int = 3) -> None:
        self._store = store
        self._cas_attempts = cas_attempts

    @property
    def store(self) -> Store:
        return self._store

    async def retry_on_conflict(
        self,
        what: str,
        attempt: Callable[[], Awaitable[T]],
        *,
        attempts: int | None = None,
    ) -> T:
        """Run ``attempt`` until it stops raising ConditionFailedError.

        Gives up with ConflictError after ``attempts`` tries (default: the
        repository's ``cas_attempts``).
        """
        limit = attempts or self._cas_attempts
        for number in range(1, limit + 1):
            try:
                return await attempt()
            except ConditionFailedError:
                logger.info("record changed concurrently, retrying", record=what, attempt=number)
        logger.warning("giving up after repeated concurrent updates", record=what, attempts=limit)
        raise ConflictError(f"{what} changed concurrently {limit} times")

    # Sessions

    async def get_session(self, game_id: str) -> GameSession | None:
        record = await self._store.get(keys.GAME, game_id)
        return GameSession.from_record(record) if record is not None else None

    async def create_session(self, session: GameSession) -> None:
        await self._store.conditional_update(
            keys.GAME,
            session.id,
            session.to_record(),
            {"version": MISSING},
        )

    async def save_session(self, session: GameSession, *, expected_version: int) -> GameSession:
        """Write ``session`` if the stored version is still ``expected_version``.

        Raises ConditionFailedError when another writer got there first.
        """
        saved = session.model_copy(update={"version": expected_version + 1})
        await self._store.conditional_update(
            keys.GAME,
            saved.id,
            saved.to_record(),
            {"version": expected_version},
        )
        return saved

    # Users

    async def get_user(self, user_id: str) -> UserRecord | None:
        record = await self._store.get(keys.USER, user_id)
        return UserRecord.from_record(record) if record is not None else None

    async def register_user(self, user_id: str, name: str, language: str) -> UserRecord:
        """Create the user record, or refresh name and language on an existing one."""
        try:
            await self._store.conditional_update(
                keys.USER,
                user_id,
                UserRecord(id=user_id, name=name, language=language).to_record(),
                {"id": MISSING},
            )
        except ConditionFailedError:
            await self._store.conditional_update(
                keys.USER,
                user_id,
                {"name": name, "language": language},
                {"id": user_id},
            )
        user = await self.get_user(user_id)
        if user is None:  # pragma: no cover
            raise ConflictError(f"user {user_id} vanished during registration")
        return user

    async def update_user(
        self,
        user_id: str,
        section: UserSection,
        change: Callable[[UserRecord], object],
    ) -> UserRecord | None:
        """Apply ``change`` to one section of a user record under that section's counter.

        ``change`` receives a fresh copy on every attempt and must only touch
        ``section``. Returns None (after logging) when the user does not exist.
        """

        async def attempt() -> UserRecord | None:
            user = await self.get_user(user_id)
            if user is None:
                logger.warning("user record missing, skipping update", user_id=user_id, section=section)
                return None
            counter = getattr(user, section.counter)
            change(user)
            setattr(user, section.counter, counter + 1)
            dumped = user.model_dump(mode="json", include={section.value, section.counter})
            await self._store.conditional_update(keys.USER, user_id, dumped, {section.counter: counter})
            return user

        return await self.retry_on_conflict(f"user {user_id} {section}", attempt)

    # Comments

    async def get_comments(self, game_id: str) -> list[Comment]:
        record = await self._store.get(keys.GAME_COMMENTS, game_id)
        if record is None:
            return []
        return [Comment.model_validate(c) for c in record.get("comments", [])]

    async def append_comment(self, game_id: str, comment: Comment) -> bool:
        """Append to the game's comment log. Returns False when the log is full."""

        async def attempt() -> bool:
            record = await self._store.get(keys.GAME_COMMENTS, game_id)
            version = record["version"] if record is not None else MISSING
            comments = [Comment.model_validate(c) for c in (record or {}).get("comments", [])]
            used = sum(c.accounted_size for c in comments)
            if used + comment.accounted_size >= MAX_COMMENT_LOG_BYTES:
                logger.warning("comment log full, dropping comment", game_id=game_id, size=used)
                return False
            comments.append(comment)
            await self._store.conditional_update(
                keys.GAME_COMMENTS,
                game_id,
                {
                    "comments": [c.model_dump(mode="json") for c in comments],
                    "version": (0 if version is MISSING else version) + 1,
                },
                {"version": version},
            )
            return True

        return await self.retry_on_conflict(f"comments {game_id}", attempt)

    # Per game type counters

    async def get_counts(self, meta_game: str) -> MetaGameCounts:
        record = await self._store.get(keys.METAGAMES, keys.counts_key(meta_game))
        return MetaGameCounts.model_validate(record) if record is not None else MetaGameCounts(meta_game=meta_game)

    async def adjust_counts(
        self,
        meta_game: str,
        deltas: Mapping[str, int],
        *,
        rated_players: tuple[str, ...] = (),
    ) -> MetaGameCounts:
        """Add ``deltas`` to the named counters and record ``rated_players`` in the rated set."""

        async def attempt() -> MetaGameCounts:
            record = await self._store.get(keys.METAGAMES, keys.counts_key(meta_game))
            counts = MetaGameCounts.model_validate(record) if record is not None else MetaGameCounts(meta_game=meta_game)
            expected: Any = counts.version if record is not None else MISSING
            values = counts.model_dump()
            for name, delta in deltas.items():
                values[name] += delta
            for player in rated_players:
                if player not in values["ratedplayers"]:
                    values["ratedplayers"].append(player)
            values["version"] = counts.version + 1
            updated = MetaGameCounts.model_validate(values)
            await self._store.conditional_update(
                keys.METAGAMES,
                keys.counts_key(meta_game),
                updated.model_dump(mode="json"),
                {"version": expected},
            )
            return updated

        return await self.retry_on_conflict(f"counts {meta_game}", attempt)

    async def all_counts(self) -> list[MetaGameCounts]:
        records = await self._store.range_query(keys.METAGAMES, "COUNTS#")
        return [MetaGameCounts.model_validate(r) for r in records]

    # Listings and leaderboards

    async def list_games(
        self,
        namespace: str,
        *,
        meta_game: str | None = None,
        player_id: str | None = None,
    ) -> list[GameSummary]:
        records = await self._store.range_query(keys.listing_partition(namespace, meta_game, player_id))
        return [GameSummary.model_validate(r) for r in records]

    async def put_rating_entry(self, meta_game: str, user_id: str, name: str, rating: RatingRecord) -> None:
        await self._store.put(
            {"pk": keys.ratings_partition(meta_game), "sk": user_id, "name": name, **rating.model_dump(mode="json")},
        )

    async def list_ratings(self, meta_game: str) -> list[dict[str, Any]]:
        records = await self._store.range_query(keys.ratings_partition(meta_game))
        entries = [{"id": r["sk"], **{k: v for k, v in r.items() if k not in ("pk", "sk")}} for r in records]
        return sorted(entries, key=lambda e: e["rating"], reverse=True)
