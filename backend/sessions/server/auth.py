"""Identity extraction for the session server.

Authentication itself happens upstream: the gateway in front of this service
verifies the caller and forwards the user id in ``X-User-Id``.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from starlette.authentication import AuthCredentials, AuthenticationBackend, BaseUser

if TYPE_CHECKING:
    from starlette.requests import HTTPConnection

USER_ID_HEADER = "x-user-id"
USER_NAME_HEADER = "x-user-name"


class GatewayUser(BaseUser):
    def __init__(self, user_id: str, username: str | None = None) -> None:
        self._user_id = user_id
        self._username = username or user_id

    @property
    def is_authenticated(self) -> bool:
        return True

    @property
    def display_name(self) -> str:
        return self._username

    @property
    def identity(self) -> str:
        return self._user_id

    @property
    def user_id(self) -> str:
        return self._user_id


class GatewayHeaderBackend(AuthenticationBackend):
    """Trust the identity headers set by the gateway. No header means anonymous."""

    async def authenticate(self, conn: HTTPConnection) -> tuple[AuthCredentials, GatewayUser] | None:
        user_id = conn.headers.get(USER_ID_HEADER, "").strip()
        if not user_id:
            return None
        return AuthCredentials(["authenticated"]), GatewayUser(user_id, conn.headers.get(USER_NAME_HEADER))
