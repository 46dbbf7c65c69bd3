"""Outbound notifications and live-update broadcast.

Both are best effort. Failures are logged and swallowed so they never fail
the action that triggered them. The recipient's locale travels with every
message; nothing here keeps a process-wide "current language".
"""

from __future__ import annotations

from enum import StrEnum
from typing import TYPE_CHECKING, Any, Protocol

import structlog

from shared.store import StoreError

if TYPE_CHECKING:
    from collections.abc import Collection, Iterable, Mapping

    from sessions.repository import SessionRepository

logger = structlog.get_logger()

DEFAULT_LOCALE = "en"


class Template(StrEnum):
    CHALLENGE_RECEIVED = "challenge_received"
    CHALLENGE_REVOKED = "challenge_revoked"
    CHALLENGE_REJECTED = "challenge_rejected"
    CHALLENGE_ACCEPTED = "challenge_accepted"
    GAME_STARTED = "game_started"
    YOUR_MOVE = "your_move"
    GAME_OVER = "game_over"
    GAME_OVER_RATED = "game_over_rated"


class BroadcastEvent(StrEnum):
    GAME_STARTED = "game_started"
    GAME_UPDATED = "game_updated"
    GAME_OVER = "game_over"


class Notifier(Protocol):
    async def send(self, user_id: str, template: str, locale: str, params: Mapping[str, Any]) -> None: ...


class Broadcaster(Protocol):
    async def publish(self, event: Mapping[str, Any], exclude_user_ids: Collection[str] = ()) -> None: ...


class LoggingNotifier:
    """Notifier that only logs. Used when no delivery channel is configured."""

    async def send(self, user_id: str, template: str, locale: str, params: Mapping[str, Any]) -> None:
        logger.info("notification", user_id=user_id, template=template, locale=locale, params=dict(params))


class NullBroadcaster:
    async def publish(self, event: Mapping[str, Any], exclude_user_ids: Collection[str] = ()) -> None:
        pass


class Notifications:
    """Resolves recipients' locales and shields callers from delivery failures."""

    def __init__(self, notifier: Notifier, broadcaster: Broadcaster, repository: SessionRepository) -> None:
        self._notifier = notifier
        self._broadcaster = broadcaster
        self._repository = repository

    async def _locale(self, user_id: str) -> str:
        try:
            user = await self._repository.get_user(user_id)
        except StoreError:
            logger.warning("recipient locale unavailable, using default", user_id=user_id)
            return DEFAULT_LOCALE
        return user.language if user is not None else DEFAULT_LOCALE

    async def send(self, user_ids: Iterable[str], template: Template, params: Mapping[str, Any]) -> None:
        for user_id in user_ids:
            try:
                locale = await self._locale(user_id)
                await self._notifier.send(user_id, template, locale, params)
            except Exception:
                logger.exception("notification failed", user_id=user_id, template=template)

    async def publish(
        self,
        event: BroadcastEvent,
        payload: Mapping[str, Any],
        exclude_user_ids: Collection[str] = (),
    ) -> None:
        try:
            await self._broadcaster.publish({"event": event.value, **payload}, exclude_user_ids)
        except Exception:
            logger.exception("broadcast failed", broadcast_event=event)
