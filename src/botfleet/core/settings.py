"""Runtime settings for botfleet.

Every knob of the orchestrator is an environment variable with the
``BOTFLEET_`` prefix (or a line in ``.env``). Plan limits, the supervisor
backend and its timeout are read once at startup; the backend is never
switched per call.

Manifesto:
    Configuration should be explicit, validated, and environment-driven.

    - **Pydantic validation:** Type-checked at startup, not runtime
    - **Environment-driven:** Reads from env vars and .env files
    - **Sensible defaults:** free=1 worker, paid=5 workers, local processes

Examples:
    >>> from botfleet.core.settings import FleetSettings
    >>> s = FleetSettings(free_max_workers=2)
    >>> s.quota_for(paid=False)
    2

Tags:
    settings, configuration, pydantic, environment, botfleet
"""

from __future__ import annotations

from functools import lru_cache
from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_FEATURES: dict[str, bool] = {
    "moderation": True,
    "utility": True,
    "antiraid": True,
    "logs": True,
    "backup": True,
    "management": True,
    "botcontrol": True,
}


class FleetSettings(BaseSettings):
    """Settings for the orchestrator process.

    Fields
    ──────
    database_url        : SQLAlchemy URL of the registry database
    free_max_workers    : Worker quota for tenants without an active plan
    paid_max_workers    : Worker quota for tenants with an active plan
    supervisor_backend  : ``process`` (local manager) or ``docker``
    supervisor_timeout  : Upper bound in seconds for one start/stop call
    worker_command      : argv launched for every worker
    max_restarts        : Crash restarts before the process manager gives up
    """

    model_config = SettingsConfigDict(
        env_prefix="BOTFLEET_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Storage ──────────────────────────────────────────────────
    database_url: str = "sqlite:///data/botfleet.db"

    # ── Plans ────────────────────────────────────────────────────
    free_max_workers: int = Field(default=1, ge=0)
    paid_max_workers: int = Field(default=5, ge=0)

    # ── Supervisor ───────────────────────────────────────────────
    supervisor_backend: Literal["process", "docker"] = "process"
    supervisor_timeout: float = Field(default=20.0, gt=0)
    worker_command: list[str] = Field(
        default_factory=lambda: ["python", "-m", "botfleet.runner"],
        description="argv of the worker entry point",
    )
    commands_dir: Path = Path(".")
    log_dir: Path = Path("data/logs")
    max_restarts: int = Field(default=10, ge=0)
    restart_delay: float = Field(default=1.0, ge=0)
    stop_grace_period: float = Field(default=5.0, ge=0)

    docker_binary: str = "docker"
    docker_image: str = "python:3.12-slim"
    docker_workdir: str = "/workspace"

    # ── Worker defaults ──────────────────────────────────────────
    default_prefix: str = "+"
    default_worker_name: str = "bot"
    default_features: dict[str, bool] = Field(default_factory=lambda: dict(DEFAULT_FEATURES))

    # ── Observability ────────────────────────────────────────────
    log_level: str = "INFO"
    log_json: bool | None = None

    def quota_for(self, paid: bool) -> int:
        """Worker quota for a tenant on the paid or free plan."""
        return self.paid_max_workers if paid else self.free_max_workers


@lru_cache(maxsize=1)
def get_settings() -> FleetSettings:
    """Process-wide settings, read once."""
    return FleetSettings()


__all__ = ["DEFAULT_FEATURES", "FleetSettings", "get_settings"]
