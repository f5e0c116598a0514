from __future__ import annotations

from pathlib import Path

import pytest

from pact.errors import ConfigurationError
from pact.settings import Settings

_VARS = (
    "PACT_ROOT",
    "PACT_DATA_DIR",
    "PACT_OLLAMA_URL",
    "PACT_OLLAMA_MODEL",
    "PACT_QUALITY_THRESHOLD",
    "PACT_COUPLING_MIN_SCORE",
    "PACT_JUDGE_TIMEOUT_SECONDS",
    "PACT_MAX_TEST_FILES",
    "PACT_MAX_FILE_BYTES",
    "PACT_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in _VARS:
        monkeypatch.delenv(name, raising=False)


def test_defaults(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    s = Settings()

    assert s.root_dir == tmp_path
    assert s.db_path == tmp_path / ".pact-data" / "pact.db"
    assert s.quality_threshold == 80
    assert s.coupling_min_score == 80
    assert s.judge_timeout_seconds == 10.0
    assert s.ollama_model is None
    assert s.log_level == "WARNING"


def test_environment_overrides(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PACT_DATA_DIR", str(tmp_path / "data"))
    monkeypatch.setenv("PACT_COUPLING_MIN_SCORE", "90")
    monkeypatch.setenv("PACT_JUDGE_TIMEOUT_SECONDS", "2.5")
    monkeypatch.setenv("PACT_OLLAMA_MODEL", "llama3.2:3b")

    s = Settings()

    assert s.db_path == tmp_path / "data" / "pact.db"
    assert s.coupling_min_score == 90
    assert s.judge_timeout_seconds == 2.5
    assert s.ollama_model == "llama3.2:3b"


def test_blank_values_fall_back_to_defaults(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PACT_QUALITY_THRESHOLD", "  ")
    assert Settings().quality_threshold == 80


@pytest.mark.parametrize(
    ("name", "value"),
    [("PACT_QUALITY_THRESHOLD", "eighty"), ("PACT_JUDGE_TIMEOUT_SECONDS", "soon")],
)
def test_bad_values_raise_configuration_error(
    monkeypatch: pytest.MonkeyPatch, name: str, value: str
) -> None:
    monkeypatch.setenv(name, value)
    with pytest.raises(ConfigurationError) as exc_info:
        Settings()
    assert exc_info.value.setting == name


@pytest.mark.parametrize("value", ["70", "101"])
def test_quality_threshold_must_stay_between_80_and_100(
    monkeypatch: pytest.MonkeyPatch, value: str
) -> None:
    """Verify the commit threshold cannot be configured below the gate minimum."""
    monkeypatch.setenv("PACT_QUALITY_THRESHOLD", value)
    with pytest.raises(ConfigurationError, match="between 80 and 100"):
        Settings()


def test_quality_threshold_may_be_raised(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PACT_QUALITY_THRESHOLD", "90")
    assert Settings().quality_threshold == 90
