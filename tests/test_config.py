"""Tests for environment-driven settings."""
from pathlib import Path

import pytest
from pydantic import ValidationError

from fare_recon.config import Settings


def test_defaults(monkeypatch) -> None:
    for name in ("FARE_STORE_DIR", "FARE_MAX_CONCURRENCY", "FARE_DEFAULT_CAPACITY", "FARE_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)
    settings = Settings.from_env()
    assert settings.store_dir == Path("data/store")
    assert settings.max_concurrency == 10
    assert settings.default_capacity == 27
    assert settings.log_level == "INFO"


def test_overrides(monkeypatch) -> None:
    monkeypatch.setenv("FARE_MAX_CONCURRENCY", "4")
    monkeypatch.setenv("FARE_LOG_LEVEL", "debug")
    settings = Settings.from_env()
    assert settings.max_concurrency == 4
    assert settings.log_level == "DEBUG"


@pytest.mark.parametrize("raw", ["many", "0"])
def test_invalid_integer(monkeypatch, raw) -> None:
    monkeypatch.setenv("FARE_DEFAULT_CAPACITY", raw)
    with pytest.raises(ValueError):
        Settings.from_env()


def test_settings_are_frozen(monkeypatch, tmp_path) -> None:
    monkeypatch.delenv("FARE_STORE_DIR", raising=False)
    settings = Settings.from_env()
    with pytest.raises(ValidationError):
        settings.max_concurrency = 2
    moved = settings.model_copy(update={"store_dir": tmp_path})
    assert moved.store_dir == tmp_path
    assert settings.store_dir == Path("data/store")
