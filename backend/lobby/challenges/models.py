"""Challenge records: direct challenges and standing (open) challenges."""

from __future__ import annotations

from enum import StrEnum
from typing import Any, Self

from pydantic import BaseModel, ConfigDict, Field, model_validator

from sessions import keys


class Seating(StrEnum):
    RANDOM = "random"
    SEAT_FIRST = "seat-first"
    SEAT_SECOND = "seat-second"


class Participant(BaseModel):
    id: str = Field(min_length=1, max_length=100)
    name: str = Field(min_length=1, max_length=100)


class ChallengeTerms(BaseModel):
    """What a challenger proposes. Validated before anything is stored."""

    model_config = ConfigDict(extra="forbid")

    meta_game: str = Field(min_length=1, max_length=100)
    num_players: int = Field(default=2, ge=2, le=16)
    seating: Seating = Seating.RANDOM
    variants: list[str] = Field(default_factory=list)
    clock_start: float = Field(gt=0)
    clock_inc: float = Field(ge=0)
    clock_max: float = Field(gt=0)
    clock_hard: bool = False
    rated: bool = False
    standing: bool = False
    duration: int | None = Field(default=None, ge=1)
    challengees: list[Participant] = Field(default_factory=list)
    comment: str = Field(default="", max_length=4000)

    @model_validator(mode="after")
    def _validate_terms(self) -> Self:
        if self.standing:
            if self.challengees:
                raise ValueError("A standing challenge cannot name challengees")
        else:
            if self.duration is not None:
                raise ValueError("Only standing challenges have a duration")
            if len(self.challengees) != self.num_players - 1:
                raise ValueError(f"Expected {self.num_players - 1} challengees, got {len(self.challengees)}")
            if len({c.id for c in self.challengees}) != len(self.challengees):
                raise ValueError("Duplicate challengee")
        if self.seating != Seating.RANDOM and self.num_players != 2:
            raise ValueError("Fixed seating is only available for two-player games")
        if self.rated and self.num_players != 2:
            raise ValueError("Only two-player games can be rated")
        return self


class Challenge(BaseModel):
    """A stored challenge.

    ``players`` holds everyone who accepted so far and always starts with the
    challenger. A standing challenge for more than two players never collects
    players itself: each first acceptance spawns a duplicate (``origin_id``
    points back) that does, and the original counts them in ``duplicates``.
    ``duration`` is the number of matches a standing challenge may still start.
    """

    id: str
    meta_game: str
    num_players: int
    seating: Seating = Seating.RANDOM
    variants: list[str] = Field(default_factory=list)
    clock_start: float
    clock_inc: float
    clock_max: float
    clock_hard: bool = False
    rated: bool = False
    standing: bool = False
    duration: int | None = None
    comment: str = ""
    challenger: Participant
    challengees: list[Participant] = Field(default_factory=list)
    players: list[Participant]
    origin_id: str | None = None
    duplicates: int = 0
    created_at: int
    version: int = 1

    @property
    def pk(self) -> str:
        return keys.standing_partition(self.meta_game) if self.standing else keys.CHALLENGE

    @property
    def reference(self) -> str:
        """How user records refer to this challenge."""
        return f"{self.meta_game}#{self.id}" if self.standing else self.id

    @property
    def is_standing_original(self) -> bool:
        return self.standing and self.origin_id is None

    def has_player(self, user_id: str) -> bool:
        return any(p.id == user_id for p in self.players)

    def is_challengee(self, user_id: str) -> bool:
        return any(c.id == user_id for c in self.challengees)

    def to_record(self) -> dict[str, Any]:
        return {"pk": self.pk, "sk": self.id, **self.model_dump(mode="json")}

    @classmethod
    def from_record(cls, record: dict[str, Any]) -> Self:
        return cls.model_validate(record)
