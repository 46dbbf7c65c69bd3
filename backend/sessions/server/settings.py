"""Session server configuration via environment variables."""

from __future__ import annotations

from typing import TYPE_CHECKING, ClassVar

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings

from sessions.config import EngineConfig
from shared.validators import StringListEnvSettingsSource, parse_string_list

if TYPE_CHECKING:
    from pydantic_settings.sources.base import PydanticBaseSettingsSource


class SessionEnvSettingsSource(StringListEnvSettingsSource):
    string_list_fields: ClassVar[frozenset[str]] = frozenset({"cors_origins", "rules_engines"})


class SessionServerSettings(BaseSettings):
    model_config = {"env_prefix": "BOARDROOM_"}

    log_dir: str = "backend/logs/sessions"
    # Empty selects the in-memory store (single process, nothing persisted).
    database_path: str = "backend/data/sessions.db"
    cors_origins: list[str] = []
    # Rules engines to register, as "package.module:ClassName".
    rules_engines: list[str] = []

    store_timeout_seconds: float = Field(default=5.0, gt=0)
    store_retry_attempts: int = Field(default=3, ge=1)
    store_retry_base_delay_seconds: float = Field(default=0.05, ge=0)

    session_cas_attempts: int = Field(default=3, ge=1)
    user_list_cas_attempts: int = Field(default=3, ge=1)
    completed_retention_hours: float = Field(default=48.0, gt=0)
    max_automove_plies: int = Field(default=500, ge=0)

    @field_validator("cors_origins", "rules_engines", mode="before")
    @classmethod
    def validate_string_lists(cls, v: str | list[str]) -> list[str]:
        return parse_string_list(v, allow_empty=True)

    def engine_config(self) -> EngineConfig:
        return EngineConfig(
            session_cas_attempts=self.session_cas_attempts,
            user_list_cas_attempts=self.user_list_cas_attempts,
            completed_retention_hours=self.completed_retention_hours,
            max_automove_plies=self.max_automove_plies,
        )

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,  # noqa: ARG003
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (init_settings, SessionEnvSettingsSource(settings_cls), dotenv_settings, file_secret_settings)
