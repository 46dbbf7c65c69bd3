"""Rules engine contract and the registry that selects an engine by game type.

Game-specific logic (board representation, move legality, end detection) is
never implemented here. Each game type supplies a RulesEngine; the session
engine only talks to that interface and to the capability flags it declares.

Players are numbered from 1 at this boundary (``player = seat + 1``), and
winner sets use the same numbering.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from enum import StrEnum
from typing import TYPE_CHECKING, Any, ClassVar, NamedTuple

import structlog

from sessions.exceptions import UnknownGameTypeError

if TYPE_CHECKING:
    from collections.abc import Iterable, Sequence

logger = structlog.get_logger()


class GameFlag(StrEnum):
    SIMULTANEOUS = "simultaneous"
    PERSPECTIVE = "perspective"
    ROTATE90 = "rotate90"
    PIE = "pie"
    AUTOMOVE = "automove"
    SCORES = "scores"


class IllegalMoveError(Exception):
    """Raised by engines when a payload (or resign/timeout/draw) is not legal in the current state."""

    def __init__(self, move: str, reason: str) -> None:
        self.move = move
        self.reason = reason
        super().__init__(f"illegal move {move!r}: {reason}")


class GameOutcome(NamedTuple):
    over: bool
    winners: tuple[int, ...] = ()


class RulesEngine(ABC):
    """One implementation per game type.

    ``state`` is whatever object the engine chooses; the session engine only
    passes it back to the same engine and persists ``serialize(state)``.
    Methods may mutate and return the same state object or return a new one.
    """

    game_type: ClassVar[str]
    display_name: ClassVar[str] = ""
    flags: ClassVar[frozenset[GameFlag]] = frozenset()
    player_counts: ClassVar[tuple[int, ...]] = (2,)

    @abstractmethod
    def instantiate(self, player_count: int, variants: Sequence[str]) -> Any:  # noqa: ANN401
        """Build the initial state."""

    @abstractmethod
    def load(self, serialized: str) -> Any:  # noqa: ANN401
        ...

    @abstractmethod
    def serialize(self, state: Any) -> str:  # noqa: ANN401
        ...

    @abstractmethod
    def apply_move(self, state: Any, move: str, *, partial: bool = False) -> Any:  # noqa: ANN401
        """Apply ``move``. With ``partial`` the move is only validated and the result must not be persisted."""

    @abstractmethod
    def resign(self, state: Any, player: int) -> Any:  # noqa: ANN401
        ...

    @abstractmethod
    def timeout(self, state: Any, player: int) -> Any:  # noqa: ANN401
        ...

    @abstractmethod
    def draw(self, state: Any) -> Any:  # noqa: ANN401
        ...

    @abstractmethod
    def outcome(self, state: Any) -> GameOutcome:  # noqa: ANN401
        ...

    @abstractmethod
    def move_count(self, state: Any) -> int:  # noqa: ANN401
        """Plies applied since the initial state."""

    def is_eliminated(self, state: Any, player: int) -> bool:  # noqa: ANN401, ARG002
        return False

    def legal_moves(self, state: Any) -> list[str]:  # noqa: ANN401, ARG002
        """Legal continuations; only consulted for games declaring AUTOMOVE."""
        return []

    def has_flag(self, flag: GameFlag) -> bool:
        return flag in self.flags

    @property
    def name(self) -> str:
        return self.display_name or self.game_type


class RulesRegistry:
    """Maps game type identifiers to rules engines."""

    def __init__(self, engines: Iterable[RulesEngine] = ()) -> None:
        self._engines: dict[str, RulesEngine] = {}
        for engine in engines:
            self.register(engine)

    def register(self, engine: RulesEngine) -> None:
        if engine.game_type in self._engines:
            raise ValueError(f"rules engine already registered for {engine.game_type!r}")
        self._engines[engine.game_type] = engine

    def get(self, game_type: str) -> RulesEngine:
        engine = self._engines.get(game_type)
        if engine is None:
            logger.error("no rules engine registered", game_type=game_type)
            raise UnknownGameTypeError(game_type)
        return engine

    def flags(self, game_type: str) -> frozenset[GameFlag]:
        return self.get(game_type).flags

    def __contains__(self, game_type: object) -> bool:
        return game_type in self._engines

    @property
    def game_types(self) -> list[str]:
        return sorted(self._engines)
