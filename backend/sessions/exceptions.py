"""Typed failures raised by the session engine.

Every failure a caller can observe is a SessionError subclass carrying an
ErrorCode and a ``retryable`` flag, so the HTTP layer (or any other caller)
can translate it without inspecting message text.
"""

from enum import StrEnum
from typing import ClassVar

from shared.store import StoreUnavailableError


class ErrorCode(StrEnum):
    NOT_FOUND = "not_found"
    NOT_ELIGIBLE = "not_eligible"
    NOT_PARTICIPANT = "not_participant"
    NOT_OWNER = "not_owner"
    NOT_YOUR_TURN = "not_your_turn"
    ALREADY_SUBMITTED = "already_submitted"
    ALREADY_OVER = "already_over"
    NO_TIMEOUT = "no_timeout"
    UNKNOWN_GAME_TYPE = "unknown_game_type"
    INVALID_OUTCOME = "invalid_outcome"
    INVALID_MOVE = "invalid_move"
    INVALID_CHALLENGE = "invalid_challenge"
    CONFLICT = "conflict"
    STORE_UNAVAILABLE = "store_unavailable"


class SessionError(Exception):
    """Base class for session engine failures."""

    code: ClassVar[ErrorCode]
    retryable: ClassVar[bool] = False


class NotFoundError(SessionError):
    """The target was already resolved or removed. Usually a benign race."""

    code = ErrorCode.NOT_FOUND


class NotEligibleError(SessionError):
    """The user may not take this action on this target."""

    code = ErrorCode.NOT_ELIGIBLE


class NotParticipantError(SessionError):
    """The user holds no seat (or challenge slot) in the target."""

    code = ErrorCode.NOT_PARTICIPANT


class NotOwnerError(SessionError):
    """Only the challenger may do this."""

    code = ErrorCode.NOT_OWNER


class NotYourTurnError(SessionError):
    code = ErrorCode.NOT_YOUR_TURN


class AlreadySubmittedError(SessionError):
    """The seat already submitted its part of the current simultaneous turn."""

    code = ErrorCode.ALREADY_SUBMITTED


class AlreadyOverError(SessionError):
    code = ErrorCode.ALREADY_OVER


class NoTimeoutError(SessionError):
    """A timeout was claimed but no seat has run out of time."""

    code = ErrorCode.NO_TIMEOUT


class UnknownGameTypeError(SessionError):
    """No rules engine is registered for the game type."""

    code = ErrorCode.UNKNOWN_GAME_TYPE

    def __init__(self, game_type: str) -> None:
        self.game_type = game_type
        super().__init__(f"unknown game type: {game_type}")


class InvalidOutcomeError(SessionError):
    """A finished game reported a winner set that cannot be rated."""

    code = ErrorCode.INVALID_OUTCOME


class InvalidMoveError(SessionError):
    """The rules engine rejected the submitted payload."""

    code = ErrorCode.INVALID_MOVE


class InvalidChallengeError(SessionError):
    """Challenge terms are malformed or inconsistent with the game type."""

    code = ErrorCode.INVALID_CHALLENGE


class ConflictError(SessionError):
    """Lost an optimistic-concurrency race too many times. Re-read and retry."""

    code = ErrorCode.CONFLICT
    retryable = True


__all__ = [
    "AlreadyOverError",
    "AlreadySubmittedError",
    "ConflictError",
    "ErrorCode",
    "InvalidChallengeError",
    "InvalidMoveError",
    "InvalidOutcomeError",
    "NoTimeoutError",
    "NotEligibleError",
    "NotFoundError",
    "NotOwnerError",
    "NotParticipantError",
    "NotYourTurnError",
    "SessionError",
    "StoreUnavailableError",
    "UnknownGameTypeError",
]
