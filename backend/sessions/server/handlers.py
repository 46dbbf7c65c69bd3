"""JSON endpoints of the session server."""

from __future__ import annotations

import functools
import json
from http import HTTPStatus
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from pydantic import BaseModel, ValidationError
from starlette.responses import JSONResponse

from lobby.challenges import ChallengeTerms
from sessions.exceptions import ErrorCode, NotFoundError, SessionError
from sessions.server.types import CommentRequest, DrawRequest, MoveRequest, RegisterRequest, SettingsRequest
from sessions.views import public_view
from shared.logging import log_context
from shared.store import StoreUnavailableError

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

    from starlette.requests import Request

    from lobby.challenges import AcceptResult, Challenge
    from sessions.manager import SessionManager

logger = structlog.get_logger()

Model = TypeVar("Model", bound=BaseModel)

_MAX_REQUEST_BODY_SIZE = 64 * 1024

_STATUS_BY_CODE: dict[ErrorCode, HTTPStatus] = {
    ErrorCode.NOT_FOUND: HTTPStatus.NOT_FOUND,
    ErrorCode.NOT_ELIGIBLE: HTTPStatus.FORBIDDEN,
    ErrorCode.NOT_PARTICIPANT: HTTPStatus.FORBIDDEN,
    ErrorCode.NOT_OWNER: HTTPStatus.FORBIDDEN,
    ErrorCode.NOT_YOUR_TURN: HTTPStatus.CONFLICT,
    ErrorCode.ALREADY_SUBMITTED: HTTPStatus.CONFLICT,
    ErrorCode.ALREADY_OVER: HTTPStatus.CONFLICT,
    ErrorCode.NO_TIMEOUT: HTTPStatus.CONFLICT,
    ErrorCode.CONFLICT: HTTPStatus.CONFLICT,
    ErrorCode.UNKNOWN_GAME_TYPE: HTTPStatus.UNPROCESSABLE_ENTITY,
    ErrorCode.INVALID_MOVE: HTTPStatus.UNPROCESSABLE_ENTITY,
    ErrorCode.INVALID_CHALLENGE: HTTPStatus.UNPROCESSABLE_ENTITY,
    ErrorCode.INVALID_OUTCOME: HTTPStatus.INTERNAL_SERVER_ERROR,
    ErrorCode.STORE_UNAVAILABLE: HTTPStatus.SERVICE_UNAVAILABLE,
}


def error_response(code: ErrorCode, message: str, *, retryable: bool = False) -> JSONResponse:
    return JSONResponse(
        {"error": code.value, "message": message, "retryable": retryable},
        status_code=_STATUS_BY_CODE[code],
    )


async def session_error_handler(_request: Request, exc: Exception) -> JSONResponse:
    if isinstance(exc, StoreUnavailableError):
        logger.warning("store unavailable", error=str(exc))
        return error_response(ErrorCode.STORE_UNAVAILABLE, "storage temporarily unavailable", retryable=True)
    if not isinstance(exc, SessionError):  # pragma: no cover
        raise exc
    if exc.code in {ErrorCode.UNKNOWN_GAME_TYPE, ErrorCode.INVALID_OUTCOME}:
        logger.error("data integrity failure", code=exc.code, error=str(exc))
    return error_response(exc.code, str(exc), retryable=exc.retryable)


def _unauthenticated() -> JSONResponse:
    return JSONResponse({"error": "Authentication required"}, status_code=HTTPStatus.UNAUTHORIZED)


def authenticated(handler: Callable[[Request, str], Awaitable[JSONResponse]]) -> Callable[[Request], Awaitable[JSONResponse]]:
    """Require an identified caller and bind request identifiers into the log context."""

    @functools.wraps(handler)
    async def wrapper(request: Request) -> JSONResponse:
        if not request.user.is_authenticated:
            return _unauthenticated()
        user_id: str = request.user.identity
        with log_context(
            user_id=user_id,
            game_id=request.path_params.get("game_id"),
            challenge_id=request.path_params.get("challenge_id"),
        ):
            return await handler(request, user_id)

    return wrapper


async def _parse_body(request: Request, model: type[Model]) -> Model | JSONResponse:
    raw_body = await request.body()
    if len(raw_body) > _MAX_REQUEST_BODY_SIZE:
        return JSONResponse({"error": "Request body too large"}, status_code=HTTPStatus.REQUEST_ENTITY_TOO_LARGE)
    try:
        body = json.loads(raw_body) if raw_body.strip() else {}
        return model.model_validate(body)
    except (ValueError, json.JSONDecodeError, ValidationError) as e:  # fmt: skip
        return JSONResponse({"error": "Invalid request body", "message": str(e)}, status_code=422)


def _manager(request: Request) -> SessionManager:
    return request.app.state.session_manager


def _challenge_target(request: Request) -> dict[str, Any]:
    meta_game = request.query_params.get("meta_game") or None
    return {"meta_game": meta_game, "standing": request.query_params.get("standing", "").lower() in {"1", "true"}}


def _challenge_json(challenge: Challenge) -> dict[str, Any]:
    return challenge.model_dump(mode="json")


async def health(_request: Request) -> JSONResponse:
    return JSONResponse({"status": "ok"})


@authenticated
async def register(request: Request, user_id: str) -> JSONResponse:
    body = await _parse_body(request, RegisterRequest)
    if isinstance(body, JSONResponse):
        return body
    user = await _manager(request).register_user(user_id, body.name, body.language)
    return JSONResponse({"id": user.id, "name": user.name, "language": user.language})


@authenticated
async def me(request: Request, user_id: str) -> JSONResponse:
    return JSONResponse(await _manager(request).my_games(user_id))


@authenticated
async def propose_challenge(request: Request, user_id: str) -> JSONResponse:
    body = await _parse_body(request, ChallengeTerms)
    if isinstance(body, JSONResponse):
        return body
    challenge = await _manager(request).propose_challenge(user_id, body)
    return JSONResponse(_challenge_json(challenge), status_code=HTTPStatus.CREATED)


async def challenge_details(request: Request) -> JSONResponse:
    challenge = await _manager(request).challenge_details(
        request.path_params["challenge_id"],
        **_challenge_target(request),
    )
    return JSONResponse(_challenge_json(challenge))


def _accept_json(result: AcceptResult, user_id: str) -> dict[str, Any]:
    if result.match is None:
        return {"status": "accepted", "challenge": _challenge_json(result.challenge)}
    return {"status": "started", "game": public_view(result.match.session, user_id)}


async def _resolve_challenge(
    request: Request,
    user_id: str,
    action: Callable[..., Awaitable[Any]],
) -> Any:  # noqa: ANN401
    """Run a challenge action; a challenge that is already gone is reported as such, not as an error."""
    try:
        return await action(user_id, request.path_params["challenge_id"], **_challenge_target(request))
    except NotFoundError:
        logger.info("challenge already resolved")
        return None


@authenticated
async def accept_challenge(request: Request, user_id: str) -> JSONResponse:
    result = await _resolve_challenge(request, user_id, _manager(request).accept_challenge)
    if result is None:
        return JSONResponse({"status": "gone"})
    return JSONResponse(_accept_json(result, user_id))


@authenticated
async def revoke_challenge(request: Request, user_id: str) -> JSONResponse:
    result = await _resolve_challenge(request, user_id, _manager(request).revoke_challenge)
    return JSONResponse({"status": "gone" if result is None else "revoked"})


@authenticated
async def decline_challenge(request: Request, user_id: str) -> JSONResponse:
    result = await _resolve_challenge(request, user_id, _manager(request).decline_challenge)
    return JSONResponse({"status": "gone" if result is None else "declined"})


async def list_standing_challenges(request: Request) -> JSONResponse:
    challenges = await _manager(request).list_standing_challenges(request.path_params["meta_game"])
    return JSONResponse({"challenges": [_challenge_json(c) for c in challenges]})


async def list_games(request: Request) -> JSONResponse:
    params = request.query_params
    games = await _manager(request).list_games(
        params.get("meta_game") or None,
        completed=params.get("completed", "").lower() in {"1", "true"},
        player_id=params.get("player_id") or None,
    )
    return JSONResponse({"games": games})


async def get_game(request: Request) -> JSONResponse:
    user_id = request.user.identity if request.user.is_authenticated else None
    with log_context(user_id=user_id, game_id=request.path_params["game_id"]):
        return JSONResponse(await _manager(request).get_game(user_id, request.path_params["game_id"]))


@authenticated
async def submit_move(request: Request, user_id: str) -> JSONResponse:
    body = await _parse_body(request, MoveRequest)
    if isinstance(body, JSONResponse):
        return body
    view = await _manager(request).submit_move(user_id, request.path_params["game_id"], body.move, draw_offer=body.draw_offer)
    return JSONResponse(view)


@authenticated
async def submit_draw(request: Request, user_id: str) -> JSONResponse:
    body = await _parse_body(request, DrawRequest)
    if isinstance(body, JSONResponse):
        return body
    return JSONResponse(await _manager(request).submit_draw(user_id, request.path_params["game_id"], body.action))


@authenticated
async def resign(request: Request, user_id: str) -> JSONResponse:
    return JSONResponse(await _manager(request).resign(user_id, request.path_params["game_id"]))


@authenticated
async def claim_timeout(request: Request, user_id: str) -> JSONResponse:
    return JSONResponse(await _manager(request).timeout(user_id, request.path_params["game_id"]))


@authenticated
async def invoke_pie(request: Request, user_id: str) -> JSONResponse:
    return JSONResponse(await _manager(request).invoke_pie(user_id, request.path_params["game_id"]))


@authenticated
async def submit_comment(request: Request, user_id: str) -> JSONResponse:
    body = await _parse_body(request, CommentRequest)
    if isinstance(body, JSONResponse):
        return body
    stored = await _manager(request).submit_comment(user_id, request.path_params["game_id"], body.comment, body.move_number)
    return JSONResponse({"status": "ok" if stored else "full"})


@authenticated
async def update_settings(request: Request, user_id: str) -> JSONResponse:
    body = await _parse_body(request, SettingsRequest)
    if isinstance(body, JSONResponse):
        return body
    return JSONResponse(await _manager(request).update_game_settings(user_id, request.path_params["game_id"], body.settings))


async def ratings(request: Request) -> JSONResponse:
    return JSONResponse({"ratings": await _manager(request).ratings(request.path_params["meta_game"])})


async def counts(request: Request) -> JSONResponse:
    return JSONResponse(await _manager(request).counts(request.path_params["meta_game"]))
