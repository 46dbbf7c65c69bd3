"""Persistent records: game sessions, their listing summaries, comments and users."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, Field

from sessions import keys
from sessions.clock import hours_to_ms
from sessions.rating import RatingRecord

# Bytes charged per comment on top of its text when sizing a comment log.
COMMENT_OVERHEAD_BYTES = 110
MAX_COMMENT_LENGTH = 4000
MAX_COMMENT_LOG_BYTES = 360_000


class DrawStatus(StrEnum):
    OFFERED = "offered"
    ACCEPTED = "accepted"


class SeatPlayer(BaseModel):
    """A seated player. ``time`` is the remaining clock in milliseconds."""

    id: str
    name: str
    time: int
    settings: dict[str, Any] | None = None
    draw: DrawStatus | None = None


class GameSummary(BaseModel):
    """Projection of a session kept in listings and in each player's game list."""

    id: str
    meta_game: str
    players: list[SeatPlayer]
    clock_hard: bool
    to_move: int | list[bool] | None
    last_move_time: int
    game_started: int
    num_moves: int | None = None
    winner: list[int] | None = None
    seen: int | None = None

    @property
    def completed(self) -> bool:
        return self.to_move is None


class GameSession(BaseModel):
    """Authoritative session record.

    ``to_move`` is a seat index for sequential games, one "still owes a move"
    flag per seat for simultaneous games, and None once the game is over.
    ``partial_move`` buffers simultaneous submissions, one comma-separated slot
    per seat. ``version`` increases by one on every committed mutation.
    """

    id: str
    meta_game: str
    num_players: int
    variants: list[str] = Field(default_factory=list)
    rated: bool = False
    simultaneous: bool = False
    players: list[SeatPlayer]
    clock_start: float
    clock_inc: float
    clock_max: float
    clock_hard: bool = False
    state: str
    to_move: int | list[bool] | None
    partial_move: str | None = None
    last_move_time: int
    game_started: int
    winner: list[int] | None = None
    num_moves: int | None = None
    pie_invoked: bool = False
    version: int = 1

    @property
    def completed(self) -> bool:
        return self.to_move is None

    @property
    def clock_inc_ms(self) -> int:
        return hours_to_ms(self.clock_inc)

    @property
    def clock_max_ms(self) -> int:
        return hours_to_ms(self.clock_max)

    @property
    def player_ids(self) -> list[str]:
        return [p.id for p in self.players]

    def seat_of(self, user_id: str) -> int | None:
        for seat, player in enumerate(self.players):
            if player.id == user_id:
                return seat
        return None

    def summary(self) -> GameSummary:
        return GameSummary(
            id=self.id,
            meta_game=self.meta_game,
            players=[p.model_copy(update={"settings": None}) for p in self.players],
            clock_hard=self.clock_hard,
            to_move=self.to_move,
            last_move_time=self.last_move_time,
            game_started=self.game_started,
            num_moves=self.num_moves,
            winner=self.winner,
        )

    def to_record(self) -> dict[str, Any]:
        return {"pk": keys.GAME, "sk": self.id, **self.model_dump(mode="json")}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Self:
        return cls.model_validate(record)


class Comment(BaseModel):
    comment: str
    user_id: str
    move_number: int
    timestamp: int

    @property
    def accounted_size(self) -> int:
        return len(self.comment.encode()) + COMMENT_OVERHEAD_BYTES


class ChallengeRefs(BaseModel):
    """Challenge references held on a user record.

    Direct challenges are referenced by id, standing ones by ``<type>#<id>``.
    """

    issued: list[str] = Field(default_factory=list)
    received: list[str] = Field(default_factory=list)
    accepted: list[str] = Field(default_factory=list)
    standing: list[str] = Field(default_factory=list)


class UserSection(StrEnum):
    """Independently versioned parts of a user record."""

    GAMES = "games"
    CHALLENGES = "challenges"
    RATINGS = "ratings"

    @property
    def counter(self) -> str:
        return f"{self.value}_update"


class UserRecord(BaseModel):
    id: str
    name: str
    language: str = "en"
    games: list[GameSummary] = Field(default_factory=list)
    games_update: int = 0
    challenges: ChallengeRefs = Field(default_factory=ChallengeRefs)
    challenges_update: int = 0
    ratings: dict[str, RatingRecord] = Field(default_factory=dict)
    ratings_update: int = 0

    def to_record(self) -> dict[str, Any]:
        return {"pk": keys.USER, "sk": self.id, **self.model_dump(mode="json")}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Self:
        return cls.model_validate(record)


class MetaGameCounts(BaseModel):
    """Per game type counters kept on the METAGAMES partition."""

    meta_game: str
    currentgames: int = 0
    completedgames: int = 0
    standingchallenges: int = 0
    ratedplayers: list[str] = Field(default_factory=list)
    version: int = 0
