"""Engine tuning knobs, independent of how the service is configured."""

from pydantic import BaseModel, Field

from sessions.clock import hours_to_ms


class EngineConfig(BaseModel, frozen=True):
    session_cas_attempts: int = Field(default=3, ge=1)
    user_list_cas_attempts: int = Field(default=3, ge=1)
    # Completed games stay in a player's list this long after they first saw the result.
    completed_retention_hours: float = Field(default=48.0, gt=0)
    max_automove_plies: int = Field(default=500, ge=0)

    @property
    def completed_retention_ms(self) -> int:
        return hours_to_ms(self.completed_retention_hours)
