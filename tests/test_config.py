"""Tests for settings, YAML routing config and the credentials store."""
import pytest

import core.config
from core.config import AppSettings, Config, RetryConfig, RoutingConfig, load_config
from core.errors import ConfigError
from routing.credentials import CredentialStore


@pytest.fixture
def routing_file(tmp_path):
    path = tmp_path / "routing.yml"
    path.write_text("""
models:
  gemini_flash: flash-test
retry:
  max_rotations: 2
  backoff_ms: 250
""", encoding="utf-8")
    return path


def test_defaults_match_shipped_values():
    routing = RoutingConfig()
    assert routing.models.gemini_flash == "gemini-3-flash-preview"
    assert routing.models.groq == "llama-3.3-70b-versatile"
    assert routing.generation.temperature == 0.4
    assert routing.generation.max_tokens == 8192
    assert routing.retry.max_rotations == 3
    assert routing.retry.backoff_ms == 1000


def test_load_config_merges_partial_file(routing_file):
    routing = load_config(routing_file, RoutingConfig)
    assert routing.models.gemini_flash == "flash-test"
    assert routing.models.gemini_pro == "gemini-3-pro-preview"
    assert routing.retry == RetryConfig(max_rotations=2, backoff_ms=250)


def test_missing_file_means_defaults(tmp_path):
    assert load_config(tmp_path / "nope.yml", RoutingConfig) == RoutingConfig()


@pytest.mark.parametrize("content", ["retry: [1, 2", "- just\n- a list\n", "retry:\n  max_rotations: 0\n"])
def test_invalid_file_raises_config_error(tmp_path, content):
    path = tmp_path / "routing.yml"
    path.write_text(content, encoding="utf-8")
    with pytest.raises(ConfigError):
        load_config(path, RoutingConfig)


def test_settings_read_environment(monkeypatch, routing_file):
    monkeypatch.setenv("GROQ_API_KEY", "gsk-env")
    monkeypatch.setenv("ROUTING_CONFIG_PATH", str(routing_file))
    monkeypatch.setenv("REQUEST_TIMEOUT", "15")
    config = Config(app=AppSettings(_env_file=None))
    assert config.app.GROQ_API_KEY == "gsk-env"
    assert config.app.REQUEST_TIMEOUT == 15.0
    assert config.routing.retry.max_rotations == 2


def test_get_settings_is_cached(monkeypatch):
    monkeypatch.setattr(core.config, "_settings_instance", None)
    first = core.config.get_settings()
    assert core.config.get_settings() is first
    core.config.reset_settings()
    assert core.config.get_settings() is not first
    core.config.reset_settings()


def test_credentials_from_settings():
    settings = AppSettings(_env_file=None, GEMINI_API_KEY="g", ANTHROPIC_API_KEY="a", GROQ_API_KEY=None,
                           OPENAI_API_KEY=None, OLLAMA_HOST="http://box:11434/")
    store = CredentialStore.from_settings(settings)
    assert store.get_key("gemini") == "g"
    assert store.get_key("claude") == "a"
    assert store.get_key("groq") is None
    assert store.ollama_url == "http://box:11434"


def test_credential_store_validation():
    store = CredentialStore()
    with pytest.raises(ValueError):
        store.set_key("mistral", "k")
    with pytest.raises(ValueError):
        store.set_key("openai", "   ")
    store.set_key("openai", "  sk  ")
    assert store.get_key("openai") == "sk"
    store.clear_key("openai")
    store.clear_key("openai")
    assert store.get_key("openai") is None
