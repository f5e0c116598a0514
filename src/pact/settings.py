from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path

from .errors import ConfigurationError


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{name} must be an integer, got {raw!r}",
            setting=name,
        ) from exc


def _env_quality_threshold(name: str, default: int) -> int:
    """Commit threshold from the environment; it may be raised but never below 80."""
    value = _env_int(name, default)
    if not 80 <= value <= 100:
        raise ConfigurationError(
            f"{name} must be between 80 and 100, got {value}",
            setting=name,
        )
    return value


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return float(raw)
    except ValueError as exc:
        raise ConfigurationError(
            f"{name} must be a number, got {raw!r}",
            setting=name,
        ) from exc


def _default_root() -> Path:
    raw = os.environ.get("PACT_ROOT")
    if raw:
        return Path(raw).expanduser()
    return Path.cwd()


def _default_data_dir() -> Path:
    raw = os.environ.get("PACT_DATA_DIR")
    if raw:
        return Path(raw).expanduser()
    return _default_root() / ".pact-data"


@dataclass(frozen=True)
class Settings:
    """Runtime configuration, read once from `PACT_*` environment variables."""

    root_dir: Path = field(default_factory=_default_root)
    data_dir: Path = field(default_factory=_default_data_dir)
    ollama_url: str = field(
        default_factory=lambda: os.environ.get("PACT_OLLAMA_URL", "http://localhost:11434")
    )
    ollama_model: str | None = field(
        default_factory=lambda: os.environ.get("PACT_OLLAMA_MODEL") or None
    )
    quality_threshold: int = field(
        default_factory=lambda: _env_quality_threshold("PACT_QUALITY_THRESHOLD", 80)
    )
    coupling_min_score: int = field(
        default_factory=lambda: _env_int("PACT_COUPLING_MIN_SCORE", 80)
    )
    judge_timeout_seconds: float = field(
        default_factory=lambda: _env_float("PACT_JUDGE_TIMEOUT_SECONDS", 10.0)
    )
    max_test_files: int = field(default_factory=lambda: _env_int("PACT_MAX_TEST_FILES", 10_000))
    max_file_bytes: int = field(
        default_factory=lambda: _env_int("PACT_MAX_FILE_BYTES", 1024 * 1024)
    )
    log_level: str = field(default_factory=lambda: os.environ.get("PACT_LOG_LEVEL", "WARNING"))

    @property
    def db_path(self) -> Path:
        return self.data_dir / "pact.db"


settings = Settings()
