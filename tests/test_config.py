"""Tests for settings loading."""

import pydantic
import pytest

from surveyflow.config import DATABASE_URL_ENV, EngineSettings, load_settings


@pytest.fixture(autouse=True)
def no_env_url(monkeypatch):
    monkeypatch.delenv(DATABASE_URL_ENV, raising=False)


def test_defaults():
    settings = load_settings()
    assert settings.batcher.max_batch_size == 50
    assert settings.batcher.max_wait_seconds == 5.0
    assert settings.cache.marker_ttl_seconds == 604800
    assert settings.maintenance.stale_after_seconds == 120.0


def test_missing_file_gives_defaults(tmp_path):
    assert load_settings(tmp_path / "absent.yaml") == EngineSettings()


def test_yaml_file(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("batcher:\n  max_batch_size: 10\nlogging:\n  json_output: true\n", encoding="utf-8")
    settings = load_settings(path)
    assert settings.batcher.max_batch_size == 10
    assert settings.batcher.max_wait_seconds == 5.0
    assert settings.logging.json_output is True


def test_env_overrides_database_url(tmp_path, monkeypatch):
    path = tmp_path / "settings.yaml"
    path.write_text("database:\n  url: sqlite:///file.db\n", encoding="utf-8")
    monkeypatch.setenv(DATABASE_URL_ENV, "postgresql://db/surveyflow")
    assert load_settings(path).database.url == "postgresql://db/surveyflow"


def test_non_mapping_rejected(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("- just\n- a list\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(path)


def test_invalid_value_rejected(tmp_path):
    path = tmp_path / "settings.yaml"
    path.write_text("batcher:\n  max_batch_size: 0\n", encoding="utf-8")
    with pytest.raises(pydantic.ValidationError):
        load_settings(path)


def test_settings_are_frozen():
    settings = load_settings()
    with pytest.raises(pydantic.ValidationError):
        settings.batcher.max_batch_size = 5
