"""Configuration for multibot.

Settings come from, in increasing priority: defaults, a TOML or JSON file
(`--config`, `$MULTIBOT_CONFIG` or `~/.multibot.toml`), and `MULTIBOT_*`
environment variables with `__` between nested names. Command-line flags are
applied on top by the commands themselves.

    - ForgeConfig: where and how to reach the forge API
    - RunConfig: defaults for action runs
    - load_config(): never raises; a broken file means defaults (safe mode)
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Mapping
from contextlib import nullcontext
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal
from unittest.mock import patch

from pydantic import BaseModel, Field, SecretStr, ValidationError, field_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from multibot.core.result import ConfigurationError

CONFIG_ENV_VAR = "MULTIBOT_CONFIG"
DEFAULT_CONFIG_PATH = Path("~/.multibot.toml")

OutputFormat = Literal["json", "text", "diff"]


# -----------------------------------------------------------------------------
# Sub-configuration Models
# -----------------------------------------------------------------------------


class ForgeConfig(BaseModel):
    """Git forge (GitHub) connection settings."""

    host: str = Field(default="api.github.com", description="Forge API host.")
    protocol: Literal["https", "http"] = Field(default="https", description="API protocol.")
    path_prefix: str | None = Field(
        default=None, description="API path prefix, e.g. '/api/v3' for GitHub Enterprise."
    )
    token: SecretStr | None = Field(default=None, description="OAuth / personal access token.")
    user: str | None = Field(default=None, description="User name for basic auth.")
    password: SecretStr | None = Field(default=None, description="Password for basic auth.")
    timeout: float = Field(default=30.0, description="Per-request timeout in seconds.")
    max_concurrency: int = Field(
        default=16, ge=0, description="Maximum in-flight API requests (0 = unlimited)."
    )
    user_agent: str = Field(default="multibot", description="User-Agent sent to the forge.")

    @field_validator("path_prefix")
    @classmethod
    def normalize_prefix(cls, v: str | None) -> str | None:
        stripped = (v or "").strip("/")
        return f"/{stripped}" if stripped else None

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}{self.path_prefix or ''}"


class RunConfig(BaseModel):
    """Defaults for action runs; command-line flags override these."""

    branch_src: str = Field(default="master", description="Default source branch.")
    format: OutputFormat = Field(default="diff", description="Default output format.")
    allow_existing: bool = Field(
        default=False, description="Allow existing destination branches / pull requests."
    )
    dry_run: bool = Field(default=False, description="Skip / simulate all mutating calls.")
    protected_branches: list[str] = Field(
        default_factory=lambda: ["master"],
        description="Branches that may never be used as a destination.",
    )


@dataclass
class ConfigLoadResult:
    path: Path
    file_loaded: bool
    env_overrides: set[str]
    error: str | None = None


class AppConfig(BaseSettings):
    """Application-wide configuration with nested sub-configs."""

    model_config = SettingsConfigDict(
        env_prefix="MULTIBOT_",
        env_nested_delimiter="__",
        extra="ignore",
    )

    forge: ForgeConfig = Field(default_factory=ForgeConfig)
    run: RunConfig = Field(default_factory=RunConfig)
    log_level: str = Field(default="WARNING", description="Log level for multibot output.")

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
        # Ensure environment variables override config file entries.
        return (env_settings, init_settings, dotenv_settings, file_secret_settings)


def _config_path(explicit: Path | None, env_vars: Mapping[str, str]) -> Path:
    """``--config`` wins, then ``$MULTIBOT_CONFIG``, then ``~/.multibot.toml``."""
    chosen = explicit or env_vars.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH
    return Path(chosen).expanduser()


def _parse_config_file(path: Path) -> dict[str, Any]:
    """Parse a TOML (or ``.json``) config file; a missing file is empty."""
    if not path.is_file():
        return {}

    text = path.read_text(encoding="utf-8")
    try:
        data = json.loads(text) if path.suffix.lower() == ".json" else tomllib.loads(text)
    except (json.JSONDecodeError, tomllib.TOMLDecodeError) as exc:
        raise ConfigurationError(f"Syntax error in {path}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError(f"Config root in {path} must be a mapping.")
    return data


def _env_overrides(env_vars: Mapping[str, str]) -> set[str]:
    """Dotted names of settings set through the environment.

    ``MULTIBOT_FORGE__TOKEN`` is reported as ``forge.token``.
    """
    prefix = str(AppConfig.model_config.get("env_prefix", ""))
    delimiter = str(AppConfig.model_config.get("env_nested_delimiter", "__"))
    present = {key.upper() for key in env_vars}
    found: set[str] = set()

    for name, info in AppConfig.model_fields.items():
        group = info.annotation
        if isinstance(group, type) and issubclass(group, BaseModel):
            for field in group.model_fields:
                if f"{prefix}{name}{delimiter}{field}".upper() in present:
                    found.add(f"{name}.{field}")
        elif f"{prefix}{name}".upper() in present:
            found.add(name)
    return found


def load_config(
    config_path: Path | None = None,
    env: Mapping[str, str] | None = None,
) -> tuple[AppConfig, ConfigLoadResult]:
    """Load configuration, falling back to defaults ("safe mode") on a bad file.

    ``env`` adds to (and overrides) ``os.environ`` for this call only. Never
    raises: parse and validation problems are reported in
    ``ConfigLoadResult.error``.
    """
    env_vars: Mapping[str, str] = os.environ if env is None else {**os.environ, **env}
    path = _config_path(config_path, env_vars)
    meta = ConfigLoadResult(path=path, file_loaded=False, env_overrides=_env_overrides(env_vars))

    file_data: dict[str, Any] = {}
    try:
        file_data = _parse_config_file(path)
        meta.file_loaded = path.is_file()
    except ConfigurationError as exc:
        meta.error = str(exc)

    scoped_env = patch.dict(os.environ, env_vars) if env is not None else nullcontext()
    try:
        with scoped_env:
            config = AppConfig(**file_data)
    except ValidationError as exc:
        meta.error = str(exc)
        config = AppConfig()

    return config, meta


__all__ = [
    "AppConfig",
    "ConfigLoadResult",
    "ForgeConfig",
    "OutputFormat",
    "RunConfig",
    "load_config",
]
