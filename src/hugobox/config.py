"""Centralized configuration: Pydantic BaseSettings with TOML + dotenv sources.

The four knobs the workflow is normally driven by (``DOCKER_IMAGE``,
``HOST_PORT``, ``CONTAINER_PORT``, ``WATCH_DIR``) are top-level fields so
they map straight onto plain environment variables. Everything else lives
in sections of ``hugobox.toml``; environment variables override those using
``__`` as the nested delimiter (e.g. ``RELOAD__DEBOUNCE_SECONDS=0.5``).

Priority (highest wins): init args > env vars > .env > hugobox.toml

Usage::

    from hugobox.config import get_settings

    s = get_settings()
    print(s.docker_image)
    print(s.watch_root)
"""

from __future__ import annotations

import logging
from functools import cached_property
from pathlib import Path

from pydantic import BaseModel, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    TomlConfigSettingsSource,
)

DEFAULT_SERVER_ARGS = [
    "server",
    "--bind",
    "0.0.0.0",
    "--liveReload",
    "--disableFastRender",
    "--poll",
]

# ---------------------------------------------------------------------------
# Sub-models (each maps to a [section] in hugobox.toml)
# ---------------------------------------------------------------------------


class _StrictModel(BaseModel):
    """Base for all config sub-models. Unknown keys are rejected."""

    model_config = {"extra": "forbid"}


class EngineConfig(_StrictModel):
    cli: str = "docker"  # any docker-compatible CLI, e.g. "podman"
    host_ip: str = "0.0.0.0"  # address the published port binds to
    name_prefix: str = "hugobox"


class SiteConfig(_StrictModel):
    config_file: str = "hugo.toml"  # relative to the watch root
    workdir_target: str = "/home/UserRepo"
    config_target: str = "/home/CentralRepo/hugo.toml"
    server_args: list[str] = DEFAULT_SERVER_ARGS
    tty: bool = False


class ReloadConfig(_StrictModel):
    debounce_seconds: float = 2.0
    stop_timeout: int = 10  # grace period handed to `docker stop -t`
    fingerprint_content: bool = True  # ignore writes that leave content unchanged

    @field_validator("debounce_seconds")
    @classmethod
    def positive_window(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("debounce_seconds must be positive")
        return v

    @field_validator("stop_timeout")
    @classmethod
    def clamp_stop_timeout(cls, v: int) -> int:
        return max(0, v)


class LoggingConfig(_StrictModel):
    level: str | None = None  # None = LOG_LEVEL env var, else INFO

    @field_validator("level")
    @classmethod
    def known_level(cls, v: str | None) -> str | None:
        if not v:
            return None
        v = v.upper()
        if v not in logging.getLevelNamesMapping():
            raise ValueError(f"unknown log level: {v}")
        return v


# ---------------------------------------------------------------------------
# Root Settings
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        toml_file="hugobox.toml",
        env_file=".env",
        env_nested_delimiter="__",
        extra="ignore",
    )

    docker_image: str = "fortinet-hugo:latest"
    host_port: int = 1313
    container_port: int = 1313
    watch_dir: str | None = None  # None = current directory

    engine: EngineConfig = EngineConfig()
    site: SiteConfig = SiteConfig()
    reload: ReloadConfig = ReloadConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("host_port", "container_port")
    @classmethod
    def valid_port(cls, v: int) -> int:
        if not 1 <= v <= 65535:
            raise ValueError(f"port out of range: {v}")
        return v

    @field_validator("watch_dir")
    @classmethod
    def empty_watch_dir_is_unset(cls, v: str | None) -> str | None:
        return v or None

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Priority: init > env vars > .env > hugobox.toml > file secrets."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            TomlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # --- Computed properties ---

    @cached_property
    def watch_root(self) -> Path:
        return Path(self.watch_dir or ".").expanduser().resolve()

    @cached_property
    def site_config_path(self) -> Path:
        return self.watch_root / self.site.config_file


# ---------------------------------------------------------------------------
# Singleton
# ---------------------------------------------------------------------------

_settings: Settings | None = None


def get_settings() -> Settings:
    """Lazy cached singleton."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def reset_settings() -> None:
    """Clear the cached singleton (for tests)."""
    global _settings
    _settings = None
