"""Application configuration management.

Handles loading and validating configuration from multiple sources:
    - TOML/JSON config files
    - Environment variables (GITSWARM_* prefix)
    - Default values

Key components:
    - AppConfig: Main configuration model
    - load_config(): Safe config loading with fallback
    - ConfigLoadResult: Metadata about config source
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from unittest.mock import patch

from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from gitswarm.swarm.types import (
    DEFAULT_CONFLICT_MARKER_THRESHOLD,
    DEFAULT_LOCK_FILES,
    ConflictStrategy,
    DecompositionStrategy,
    SwarmConfig,
    default_base_path,
)

CONFIG_ENV_VAR = "GITSWARM_CONFIG"


class ConfigError(RuntimeError):
    """Raised when configuration cannot be loaded or validated."""


# -----------------------------------------------------------------------------
# Sub-configuration Models
# -----------------------------------------------------------------------------


class SwarmSettings(BaseModel):
    """Defaults for swarm runs; CLI options override them per run."""

    base_path: Path = Field(
        default_factory=default_base_path, description="Root directory for agent worktrees."
    )
    default_strategy: DecompositionStrategy = Field(
        default=DecompositionStrategy.GENERIC, description="Decomposition strategy for `run`."
    )
    default_agent_count: int = Field(default=3, ge=1, description="Agents spawned per swarm.")
    conflict_strategy: ConflictStrategy = Field(
        default=ConflictStrategy.AUTO, description="Resolution policy for conflicted files."
    )
    conflict_marker_threshold: int = Field(
        default=DEFAULT_CONFLICT_MARKER_THRESHOLD,
        ge=0,
        description="Largest conflict-hunk count the auto policy resolves to the agent's side.",
    )
    auto_merge: bool = Field(default=True, description="Merge agent branches after the run.")
    lock_files: list[str] = Field(
        default_factory=lambda: list(DEFAULT_LOCK_FILES),
        description="Basenames the auto policy always resolves to the shared tree's side.",
    )
    preserve_worktrees: bool = Field(
        default=False, description="Keep worktrees after the run for inspection."
    )

    @field_validator("base_path", mode="after")
    @classmethod
    def _expand_base_path(cls, v: Path) -> Path:
        return v.expanduser()

    def to_swarm_config(
        self,
        *,
        swarm_id: str,
        task: str,
        project_path: Path,
        agent_count: int | None = None,
        strategy: DecompositionStrategy | None = None,
        conflict_strategy: ConflictStrategy | None = None,
        conflict_marker_threshold: int | None = None,
        base_path: Path | None = None,
        auto_merge: bool | None = None,
    ) -> SwarmConfig:
        """Build a SwarmConfig, falling back to these settings for unset values."""
        return SwarmConfig(
            swarm_id=swarm_id,
            task=task,
            project_path=project_path,
            agent_count=agent_count if agent_count is not None else self.default_agent_count,
            strategy=strategy or self.default_strategy,
            base_path=base_path or self.base_path,
            auto_merge=self.auto_merge if auto_merge is None else auto_merge,
            conflict_strategy=conflict_strategy or self.conflict_strategy,
            conflict_marker_threshold=(
                self.conflict_marker_threshold
                if conflict_marker_threshold is None
                else conflict_marker_threshold
            ),
            lock_files=tuple(self.lock_files),
        )


class AgentSettings(BaseModel):
    """How agents are executed."""

    command: str | None = Field(
        default=None,
        description="Command run in each worktree; `{subtask}` and `{workspace}` are substituted.",
    )
    timeout: float | None = Field(
        default=None, gt=0, description="Seconds before an agent command is killed."
    )


class UserConfig(BaseModel):
    """User preferences."""

    log_level: str = Field(default="INFO", description="Log level for gitswarm output.")


@dataclass
class ConfigLoadResult:
    path: Path
    file_loaded: bool
    env_overrides: set[str]
    error: str | None = None


class AppConfig(BaseSettings):
    """Application-wide configuration with nested sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="GITSWARM_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    swarm: SwarmSettings = Field(default_factory=SwarmSettings)
    agent: AgentSettings = Field(default_factory=AgentSettings)
    user: UserConfig = Field(default_factory=UserConfig)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
        PydanticBaseSettingsSource,
    ]:
        # Environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


def _resolve_config_path(config_path: Path | None, env_vars: Mapping[str, str]) -> Path:
    candidate = config_path or env_vars.get(CONFIG_ENV_VAR) or (Path.home() / ".gitswarm.toml")
    return Path(candidate).expanduser()


def _read_config_file(path: Path) -> dict[str, Any]:
    if not path.exists():
        return {}

    try:
        raw = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ConfigError(f"Cannot read {path}: {exc}") from exc

    parser = json.loads if path.suffix.lower() == ".json" else tomllib.loads
    try:
        data = parser(raw)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigError(f"Syntax error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError(f"Config root in {path} must be a mapping.")

    return data


def _detect_env_overrides(env_vars: Mapping[str, str]) -> set[str]:
    """Detect which fields are overridden by environment variables.

    Nested fields are spelled like GITSWARM_SWARM__BASE_PATH.
    """
    prefix = AppConfig.model_config.get("env_prefix", "")
    delimiter = AppConfig.model_config.get("env_nested_delimiter", "__")
    overrides: set[str] = set()

    nested_models: dict[str, type[BaseModel]] = {
        "swarm": SwarmSettings,
        "agent": AgentSettings,
        "user": UserConfig,
    }

    for group_name, model_cls in nested_models.items():
        for field in model_cls.model_fields:
            env_key = f"{prefix}{group_name}{delimiter}{field}".upper()
            if env_key in env_vars:
                overrides.add(f"{group_name}.{field}")

    return overrides


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[AppConfig, ConfigLoadResult]:
    """
    Load configuration with Safe Mode fallback.
    If the file is invalid, returns default config + error message.
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    resolved_path = _resolve_config_path(config_path, env_vars)
    env_overrides = _detect_env_overrides(env_vars)

    error: str | None = None
    file_loaded = False
    file_data: dict[str, Any] = {}

    try:
        file_data = _read_config_file(resolved_path)
        file_loaded = resolved_path.exists()
    except ConfigError as exc:
        error = str(exc)

    context_manager = (
        patch.dict(os.environ, env_vars, clear=False) if env is not None else nullcontext()
    )

    try:
        with context_manager:
            config = AppConfig(**file_data)
    except ValidationError as exc:
        error = str(exc)
        config = AppConfig.model_construct()

    load_result = ConfigLoadResult(
        path=resolved_path,
        file_loaded=file_loaded,
        env_overrides=env_overrides,
        error=error,
    )

    return config, load_result


__all__ = [
    "CONFIG_ENV_VAR",
    "AgentSettings",
    "AppConfig",
    "ConfigError",
    "ConfigLoadResult",
    "SwarmSettings",
    "UserConfig",
    "load_config",
]
