"""Per-user game lists: the projection of every session a user plays in."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from sessions.exceptions import ConflictError
from sessions.models import GameSummary, UserRecord, UserSection
from shared.store import StoreError

if TYPE_CHECKING:
    from collections.abc import Iterable

    from sessions.repository import SessionRepository

logger = structlog.get_logger()


def prune_completed(games: list[GameSummary], now: int, retention_ms: int) -> list[GameSummary]:
    """Drop completed games the owner saw more than ``retention_ms`` ago. Unseen games stay."""
    return [g for g in games if not g.completed or g.seen is None or now - g.seen <= retention_ms]


def _upsert(games: list[GameSummary], summary: GameSummary) -> None:
    for index, game in enumerate(games):
        if game.id == summary.id:
            games[index] = summary
            return
    games.append(summary)


class UserGameLists:
    """Keeps ``UserRecord.games`` in step with sessions.

    Each change is applied through the repository's ``games_update`` counter,
    so concurrent changes to the same list for different games all land.
    """

    def __init__(self, repository: SessionRepository) -> None:
        self._repository = repository

    async def upsert(
        self,
        user_ids: Iterable[str],
        summary: GameSummary,
        *,
        seen_by: str | None = None,
        seen_at: int | None = None,
    ) -> list[str]:
        """Insert or replace ``summary`` in each user's list. Returns the ids whose update failed.

        ``seen_by`` gets the entry stamped as seen at ``seen_at``.
        """
        failed: list[str] = []
        for user_id in user_ids:
            entry = summary.model_copy(update={"seen": seen_at}) if user_id == seen_by else summary

            def change(user: UserRecord, entry: GameSummary = entry) -> None:
                _upsert(user.games, entry)

            try:
                await self._repository.update_user(user_id, UserSection.GAMES, change)
            except (ConflictError, StoreError):
                logger.exception("failed to update user game list", user_id=user_id, game_id=summary.id)
                failed.append(user_id)
        return failed

    async def mark_seen(self, user_id: str, game_id: str, seen_at: int) -> None:
        """Stamp the first time the user saw a game; later views keep the original stamp."""

        def change(user: UserRecord) -> None:
            for index, game in enumerate(user.games):
                if game.id == game_id and game.seen is None:
                    user.games[index] = game.model_copy(update={"seen": seen_at})

        await self._repository.update_user(user_id, UserSection.GAMES, change)

    async def prune(self, user_id: str, now: int, retention_ms: int) -> UserRecord | None:
        user = await self._repository.get_user(user_id)
        if user is None:
            return None
        if prune_completed(user.games, now, retention_ms) == user.games:
            return user

        def change(fresh: UserRecord) -> None:
            fresh.games = prune_completed(fresh.games, now, retention_ms)

        return await self._repository.update_user(user_id, UserSection.GAMES, change)
