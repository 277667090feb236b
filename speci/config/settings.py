"""Pydantic settings for speci configuration."""

from __future__ import annotations

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from speci.core.retry_utils import RetryPolicy

PermissionLevel = Literal["allow-all", "yolo", "strict", "none"]
GateStrategy = Literal["sequential", "parallel"]


class _Section(BaseModel):
    """Config section accepting both snake_case and camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class PathsConfig(_Section):
    """Project-relative file locations."""

    progress: str = "docs/PROGRESS.md"
    tasks: str = "docs/tasks"
    logs: str = ".speci-logs"
    lock: str = ".speci-lock"


class PhaseModels(_Section):
    """Model per agent phase. None omits the --model flag."""

    plan: str | None = "claude-opus-4.6"
    task: str | None = "claude-sonnet-4.6"
    refactor: str | None = "claude-sonnet-4.6"
    impl: str | None = "gpt-5.3-codex"
    review: str | None = "claude-sonnet-4.6"
    fix: str | None = "claude-sonnet-4.6"
    tidy: str | None = "gpt-5.2"

    def for_phase(self, phase: str) -> str | None:
        return getattr(self, phase, None)


class CopilotConfig(_Section):
    """External agent binary configuration."""

    executable: str = "copilot"
    permissions: PermissionLevel = "allow-all"
    models: PhaseModels = Field(default_factory=PhaseModels)
    extra_flags: list[str] = Field(default_factory=list)


class GateConfig(_Section):
    """Validation commands run after implementation phases."""

    commands: list[str] = Field(
        default_factory=lambda: ["npm run lint", "npm run typecheck", "npm test"]
    )
    max_fix_attempts: int = Field(default=5, ge=0)
    strategy: GateStrategy = "sequential"
    timeout_ms: int = Field(default=5 * 60 * 1000, gt=0)


class LoopConfig(_Section):
    """Run loop limits."""

    max_iterations: int = Field(default=100, ge=1)


class Settings(BaseSettings):
    """Main settings for speci."""

    model_config = SettingsConfigDict(
        env_prefix="SPECI_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    version: str = "1.0.0"
    debug: bool = False

    paths: PathsConfig = Field(default_factory=PathsConfig)
    copilot: CopilotConfig = Field(default_factory=CopilotConfig)
    gate: GateConfig = Field(default_factory=GateConfig)
    loop: LoopConfig = Field(default_factory=LoopConfig)
    retry: RetryPolicy = Field(default_factory=RetryPolicy)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment variables override values read from the config file.
        return env_settings, init_settings, file_secret_settings


def get_default_config() -> dict:
    """Default configuration as written by ``speci init``."""
    return Settings().model_dump(mode="json", by_alias=True, exclude={"debug"})
