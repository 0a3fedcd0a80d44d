import pytest
from pydantic import ValidationError

from tagloop.config import Settings, api_keys, load_settings, models


@pytest.fixture(autouse=True)
def _no_dotenv(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)


def test_settings_from_environment(monkeypatch):
    monkeypatch.setenv("PROVIDER_API_KEYS", "k1, k2,,your_key_here,k1")
    monkeypatch.setenv("PROVIDER_MODELS", "model-a,model-b")
    monkeypatch.setenv("MAX_TOOL_DEPTH", "5")

    settings = load_settings()

    assert api_keys(settings) == ["k1", "k2"]
    assert models(settings) == ["model-a", "model-b"]
    assert settings.max_tool_depth == 5
    assert settings.max_retries == 3
    assert settings.provider_base_url == "https://openrouter.ai/api/v1"


def test_tool_depth_is_bounded(monkeypatch):
    monkeypatch.setenv("PROVIDER_API_KEYS", "k1")
    monkeypatch.setenv("PROVIDER_MODELS", "m")
    monkeypatch.setenv("MAX_TOOL_DEPTH", "51")

    with pytest.raises(ValidationError):
        Settings()


def test_keys_are_required(monkeypatch):
    monkeypatch.delenv("PROVIDER_API_KEYS", raising=False)
    monkeypatch.setenv("PROVIDER_MODELS", "m")

    with pytest.raises(ValidationError):
        Settings()


def test_create_orchestrator_wires_settings(monkeypatch):
    from unittest.mock import MagicMock

    from tagloop.app import create_orchestrator

    monkeypatch.setenv("PROVIDER_API_KEYS", "k1,k2")
    monkeypatch.setenv("PROVIDER_MODELS", "m1")
    monkeypatch.setenv("MAX_TOOL_DEPTH", "4")

    orchestrator = create_orchestrator(load_settings(), platform=MagicMock())

    assert orchestrator._max_tool_depth == 4
    assert len(orchestrator._key_pool) == 2
    assert orchestrator._tool_registry.lookup("create_file") is not None


def test_configure_logging_sets_level():
    import logging
    from unittest.mock import patch

    from tagloop.app import configure_logging

    with patch("tagloop.app.logging.basicConfig") as basic_config:
        configure_logging("debug")

    basic_config.assert_called_once_with(level=logging.DEBUG)
