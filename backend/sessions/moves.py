"""Move processor: applies one player action to one session.

Pure with respect to storage. ``process`` takes the session as read, returns
the session to write plus what changed, and raises a SessionError when the
action is not allowed. The caller owns persistence and side effects.

Clock accounting: the acting seat is charged the time elapsed since
``last_move_time`` whenever its action commits (a move, including a buffered
simultaneous submission, a resignation, a pie swap, or the draw acceptance
that ends the game). ``last_move_time`` advances when the turn changes hands
or the game ends; buffered simultaneous submissions leave it alone so every
seat of the turn is measured from the same start.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Any, cast

import structlog

from sessions.clock import apply_elapsed, find_expired_seat
from sessions.exceptions import (
    AlreadyOverError,
    AlreadySubmittedError,
    InvalidMoveError,
    NoTimeoutError,
    NotEligibleError,
    NotParticipantError,
    NotYourTurnError,
)
from sessions.models import DrawStatus
from sessions.rules import GameFlag, IllegalMoveError

if TYPE_CHECKING:
    from collections.abc import Callable

    from sessions.models import GameSession
    from sessions.rules import RulesEngine, RulesRegistry

logger = structlog.get_logger()

# Fills the slot of an eliminated seat in a simultaneous turn.
ELIMINATED_MOVE = "-"


class Action(StrEnum):
    MOVE = "move"
    RESIGN = "resign"
    TIMEOUT = "timeout"
    DRAW_OFFER = "draw_offer"
    DRAW_ACCEPT = "draw_accept"
    PIE = "pie"


@dataclass(frozen=True)
class MoveResult:
    session: GameSession
    action: Action
    completed: bool = False
    turn_passed: bool = False
    comment: str | None = None
    timed_out_seat: int | None = None


class MoveProcessor:
    def __init__(self, registry: RulesRegistry, *, max_automove_plies: int = 500) -> None:
        self._registry = registry
        self._max_automove_plies = max_automove_plies

    def process(
        self,
        session: GameSession,
        user_id: str,
        action: Action,
        now: int,
        *,
        move: str = "",
        draw_offer: bool = False,
    ) -> MoveResult:
        if session.completed:
            raise AlreadyOverError(f"game {session.id} is over")
        seat = session.seat_of(user_id)
        if seat is None:
            raise NotParticipantError(f"{user_id} is not playing in game {session.id}")

        engine = self._registry.get(session.meta_game)
        updated = session.model_copy(deep=True)
        handlers: dict[Action, Callable[..., MoveResult]] = {
            Action.MOVE: self._move,
            Action.RESIGN: self._resign,
            Action.TIMEOUT: self._timeout,
            Action.DRAW_OFFER: self._draw_offer,
            Action.DRAW_ACCEPT: self._draw_accept,
            Action.PIE: self._pie,
        }
        result = handlers[action](updated, engine, seat, now, move=move, draw_offer=draw_offer)
        logger.debug(
            "action processed",
            game_id=session.id,
            action=action,
            seat=seat,
            completed=result.completed,
            turn_passed=result.turn_passed,
        )
        return result

    def expire(self, session: GameSession, seat: int, timestamp: int) -> MoveResult:
        """End a hard-clock game as a timeout loss for ``seat``, as of ``timestamp``."""
        if session.completed:
            raise AlreadyOverError(f"game {session.id} is over")
        engine = self._registry.get(session.meta_game)
        updated = session.model_copy(deep=True)
        state = _engine_call(engine.timeout, engine.load(updated.state), seat + 1)
        self._complete(updated, engine, state, timestamp)
        return MoveResult(updated, Action.TIMEOUT, completed=True, turn_passed=True, timed_out_seat=seat)

    # Handlers. Each receives a private copy of the session and may mutate it.

    def _move(self, session: GameSession, engine: RulesEngine, seat: int, now: int, **kwargs: Any) -> MoveResult:  # noqa: ANN401
        if session.simultaneous:
            return self._simultaneous_move(session, engine, seat, now, kwargs["move"])

        _require_turn(session, seat)
        state = _engine_call(engine.apply_move, engine.load(session.state), kwargs["move"])
        plies = 1
        if engine.has_flag(GameFlag.AUTOMOVE):
            state, extra = self._automove(engine, state)
            plies += extra

        _charge(session, seat, now)
        session.last_move_time = now
        if kwargs["draw_offer"]:
            session.players[seat].draw = DrawStatus.OFFERED
        else:
            _clear_draws(session)

        session.state = engine.serialize(state)
        if engine.outcome(state).over:
            self._complete(session, engine, state, now)
            return MoveResult(session, Action.MOVE, completed=True, turn_passed=True)
        session.to_move = (cast("int", session.to_move) + plies) % session.num_players
        return MoveResult(session, Action.MOVE, turn_passed=True)

    def _automove(self, engine: RulesEngine, state: Any) -> tuple[Any, int]:  # noqa: ANN401
        """Play forced continuations while exactly one legal move exists."""
        plies = 0
        while plies < self._max_automove_plies and not engine.outcome(state).over:
            legal = engine.legal_moves(state)
            if len(legal) != 1:
                break
            state = _engine_call(engine.apply_move, state, legal[0])
            plies += 1
        if plies == self._max_automove_plies:
            logger.warning("automove limit reached", plies=plies, game_type=engine.game_type)
        return state, plies

    def _simultaneous_move(
        self,
        session: GameSession,
        engine: RulesEngine,
        seat: int,
        now: int,
        move: str,
    ) -> MoveResult:
        to_move = cast("list[bool]", session.to_move)
        n = session.num_players
        slots = session.partial_move.split(",") if session.partial_move else [""] * n
        if len(slots) != n:
            slots = [""] * n
        if slots[seat] or not to_move[seat]:
            raise AlreadySubmittedError(f"seat {seat} already submitted this turn")
        if not move:
            raise InvalidMoveError("empty move")

        state = engine.load(session.state)
        slots[seat] = move
        to_move[seat] = False
        for other in range(n):
            if not slots[other] and engine.is_eliminated(state, other + 1):
                slots[other] = ELIMINATED_MOVE
                to_move[other] = False

        _charge(session, seat, now)
        joined = ",".join(slots)
        if not all(slots):
            # Validate only; the buffered turn is applied once it is complete.
            _engine_call(engine.apply_move, engine.load(session.state), joined, partial=True)
            session.partial_move = joined
            return MoveResult(session, Action.MOVE)

        state = _engine_call(engine.apply_move, state, joined)
        session.partial_move = ",".join([""] * n)
        session.last_move_time = now
        _clear_draws(session)
        session.state = engine.serialize(state)
        if engine.outcome(state).over:
            self._complete(session, engine, state, now)
            return MoveResult(session, Action.MOVE, completed=True, turn_passed=True)
        session.to_move = [True] * n
        return MoveResult(session, Action.MOVE, turn_passed=True)

    def _resign(self, session: GameSession, engine: RulesEngine, seat: int, now: int, **_: Any) -> MoveResult:  # noqa: ANN401
        state = _engine_call(engine.resign, engine.load(session.state), seat + 1)
        _charge(session, seat, now)
        self._complete(session, engine, state, now)
        return MoveResult(session, Action.RESIGN, completed=True, turn_passed=True)

    def _timeout(self, session: GameSession, engine: RulesEngine, seat: int, now: int, **_: Any) -> MoveResult:  # noqa: ANN401, ARG002
        times = [p.time for p in session.players]
        expired = find_expired_seat(times, session.to_move, now - session.last_move_time)
        if expired is None:
            raise NoTimeoutError(f"nobody's time is up in game {session.id}")
        state = _engine_call(engine.timeout, engine.load(session.state), expired + 1)
        self._complete(session, engine, state, now)
        return MoveResult(session, Action.TIMEOUT, completed=True, turn_passed=True, timed_out_seat=expired)

    def _draw_offer(self, session: GameSession, engine: RulesEngine, seat: int, now: int, **_: Any) -> MoveResult:  # noqa: ANN401, ARG002
        session.players[seat].draw = DrawStatus.OFFERED
        return MoveResult(session, Action.DRAW_OFFER)

    def _draw_accept(self, session: GameSession, engine: RulesEngine, seat: int, now: int, **_: Any) -> MoveResult:  # noqa: ANN401
        _require_turn(session, seat)
        session.players[seat].draw = DrawStatus.ACCEPTED
        if any(p.draw is None for p in session.players):
            return MoveResult(session, Action.DRAW_ACCEPT)

        state = _engine_call(engine.draw, engine.load(session.state))
        _charge(session, seat, now)
        self._complete(session, engine, state, now)
        return MoveResult(session, Action.DRAW_ACCEPT, completed=True, turn_passed=True)

    def _pie(self, session: GameSession, engine: RulesEngine, seat: int, now: int, **_: Any) -> MoveResult:  # noqa: ANN401
        if not engine.has_flag(GameFlag.PIE):
            raise NotEligibleError(f"{session.meta_game} does not use the pie rule")
        if session.pie_invoked:
            raise NotEligibleError("the pie rule was already invoked")
        _require_turn(session, seat)

        invoker = session.players[seat].name
        _charge(session, seat, now)
        session.last_move_time = now
        # Identities swap seats; per-seat settings such as orientation stay with the seat.
        settings = [p.settings for p in session.players]
        session.players.reverse()
        for player, seat_settings in zip(session.players, settings, strict=True):
            player.settings = seat_settings
        session.pie_invoked = True
        return MoveResult(session, Action.PIE, comment=f"{invoker} invoked the pie rule: seats swapped")

    @staticmethod
    def _complete(session: GameSession, engine: RulesEngine, state: Any, now: int) -> None:  # noqa: ANN401
        outcome = engine.outcome(state)
        session.state = engine.serialize(state)
        session.to_move = None
        session.winner = list(outcome.winners)
        session.num_moves = engine.move_count(state)
        session.last_move_time = now
        _clear_draws(session)


def _require_turn(session: GameSession, seat: int) -> None:
    to_move = session.to_move
    on_move = to_move[seat] if isinstance(to_move, list) else to_move == seat
    if not on_move:
        raise NotYourTurnError(f"it is not seat {seat}'s turn")


def _charge(session: GameSession, seat: int, now: int) -> None:
    player = session.players[seat]
    player.time = apply_elapsed(player.time, now - session.last_move_time, session.clock_inc_ms, session.clock_max_ms)


def _clear_draws(session: GameSession) -> None:
    for player in session.players:
        player.draw = None


def _engine_call(method: Callable[..., Any], *args: Any, **kwargs: Any) -> Any:  # noqa: ANN401
    try:
        return method(*args, **kwargs)
    except IllegalMoveError as e:
        raise InvalidMoveError(str(e)) from e
