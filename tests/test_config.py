"""Tests for settings loading."""

from chapal.config import Environment, Settings, _split_keys


def test_split_keys_drops_blanks():
    assert _split_keys(" a, b,,c ,") == ["a", "b", "c"]
    assert _split_keys(None) == []


def test_key_pools_from_env(monkeypatch):
    monkeypatch.setenv("GEMINI_API_KEY", "g1,g2")
    monkeypatch.setenv("GROQ_API_KEY", "q1")
    settings = Settings()
    assert settings.generation_api_keys == ["g1", "g2"]
    assert settings.auditor_api_keys == ["q1"]
    assert settings.has_generation_keys()


def test_missing_keys(monkeypatch):
    monkeypatch.delenv("GEMINI_API_KEY", raising=False)
    monkeypatch.delenv("GROQ_API_KEY", raising=False)
    settings = Settings()
    assert not settings.has_generation_keys()
    assert not settings.has_auditor_keys()


def test_defaults(monkeypatch):
    monkeypatch.delenv("ENVIRONMENT", raising=False)
    monkeypatch.delenv("RETRY_BACKOFF_MS", raising=False)
    settings = Settings()
    assert settings.environment == Environment.DEVELOPMENT
    assert settings.is_development
    assert settings.max_generation_attempts == 3
    assert settings.retry_backoff_ms == 1000
    assert settings.thinking_stage_delay_ms["analyzing_safety"] == 300
