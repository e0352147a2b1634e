"""Runtime configuration for session registry and delivery loop."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from agent_runtime.delivery.backoff import DEFAULT_BACKOFF_BASE_MS, DEFAULT_BACKOFF_MAX_MS


@dataclass(slots=True)
class DeliverySettings:
    """Polling cadence and retry backoff for the delivery loop."""

    poll_interval_seconds: float = 5.0
    backoff_base_ms: int = DEFAULT_BACKOFF_BASE_MS
    backoff_max_ms: int = DEFAULT_BACKOFF_MAX_MS


@dataclass(slots=True)
class Settings:
    """Application settings grouped by domain concerns."""

    db_path: Path = Path(".agent_runtime.db")
    sqlite_busy_timeout_ms: int = 5_000
    delivery: DeliverySettings = field(default_factory=DeliverySettings)

    @classmethod
    def from_env(cls, db_path: Path | None = None) -> Settings:
        """Load settings from environment with sane defaults for local development."""

        return cls(
            db_path=db_path or Path(os.getenv("AGENT_RUNTIME_DB_PATH", ".agent_runtime.db")),
            sqlite_busy_timeout_ms=_env_int("AGENT_RUNTIME_SQLITE_BUSY_TIMEOUT_MS", 5_000),
            delivery=DeliverySettings(
                poll_interval_seconds=_env_float(
                    "AGENT_RUNTIME_DELIVERY_POLL_INTERVAL_SECONDS",
                    5.0,
                ),
                backoff_base_ms=_env_int(
                    "AGENT_RUNTIME_DELIVERY_BACKOFF_BASE_MS",
                    DEFAULT_BACKOFF_BASE_MS,
                ),
                backoff_max_ms=_env_int(
                    "AGENT_RUNTIME_DELIVERY_BACKOFF_MAX_MS",
                    DEFAULT_BACKOFF_MAX_MS,
                ),
            ),
        )

    def validate(self) -> None:
        """Raise configuration error on values the runtime cannot work with."""

        if self.sqlite_busy_timeout_ms <= 0:
            raise ValueError("AGENT_RUNTIME_SQLITE_BUSY_TIMEOUT_MS must be > 0.")
        if self.delivery.poll_interval_seconds < 0:
            raise ValueError("AGENT_RUNTIME_DELIVERY_POLL_INTERVAL_SECONDS must be >= 0.")
        if self.delivery.backoff_base_ms <= 0:
            raise ValueError("AGENT_RUNTIME_DELIVERY_BACKOFF_BASE_MS must be > 0.")
        if self.delivery.backoff_max_ms < self.delivery.backoff_base_ms:
            raise ValueError(
                "AGENT_RUNTIME_DELIVERY_BACKOFF_MAX_MS must be >= "
                "AGENT_RUNTIME_DELIVERY_BACKOFF_BASE_MS.",
            )


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid integer value for {name}: {raw!r}") from error


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw.strip())
    except ValueError as error:
        raise ValueError(f"Invalid number for {name}: {raw!r}") from error
