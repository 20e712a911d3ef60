from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path


def _env_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        return int(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid integer for {name}: {raw!r}") from None


def _env_float(name: str, default: str) -> float:
    raw = os.getenv(name, default)
    try:
        return float(raw)
    except (TypeError, ValueError):
        raise ValueError(f"Invalid float for {name}: {raw!r}") from None


@dataclass(frozen=True)
class Settings:
    data_file: Path = Path(os.getenv("CLEANOPS_DATA_FILE", "data/schedule.xlsx"))
    backup_dir: Path = Path(os.getenv("CLEANOPS_BACKUP_DIR", "data/backups"))
    lock_file: Path = Path(os.getenv("CLEANOPS_LOCK_FILE", "data/schedule.lock"))
    lock_timeout_seconds: float = _env_float("CLEANOPS_LOCK_TIMEOUT_SECONDS", "10")
    default_duration_minutes: int = _env_int("CLEANOPS_DEFAULT_DURATION_MINUTES", "120")
    log_level: str = os.getenv("CLEANOPS_LOG_LEVEL", "INFO")

    def __post_init__(self) -> None:
        if self.default_duration_minutes < 1:
            raise ValueError(
                "CLEANOPS_DEFAULT_DURATION_MINUTES must be >= 1, "
                f"got {self.default_duration_minutes}"
            )
        if self.lock_timeout_seconds <= 0:
            raise ValueError(
                f"CLEANOPS_LOCK_TIMEOUT_SECONDS must be > 0, got {self.lock_timeout_seconds}"
            )


def configure_logging(level: str | None = None) -> None:
    logging.basicConfig(
        level=getattr(logging, (level or settings.log_level).upper(), logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


settings = Settings()
