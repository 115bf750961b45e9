import json

import pytest

from voicelog.backend.config import (
    DEFAULT_MODEL,
    load_from_env,
    load_language_service_settings,
    load_workspace_config,
)
from voicelog.backend.errors import ConfigError
from voicelog.backend.limits import EnforcementMode
from voicelog.backend.locales import normalize_locale

ENV_KEYS = (
    "VOICELOG_CONFIG_PATH",
    "VOICELOG_DAILY_LIMIT_HOURS",
    "VOICELOG_LOCALE",
    "VOICELOG_STRICT_PROJECTS",
    "VOICELOG_ENFORCE_LIMITS",
    "OPENAI_API_KEY",
    "OPENAI_MODEL",
    "OPENAI_API_BASE",
    "VOICELOG_LLM_TEMPERATURE",
    "VOICELOG_LLM_MAX_TOKENS",
    "VOICELOG_LLM_TIMEOUT_SECONDS",
)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for key in ENV_KEYS:
        monkeypatch.delenv(key, raising=False)


@pytest.fixture
def workspace_file(tmp_path):
    path = tmp_path / "workspace.json"
    path.write_text(
        json.dumps(
            {
                "workspace": {"name": "Acme"},
                "locale": "uk",
                "projects": ["Hiring", {"name": "Website", "category": "commercial"}],
                "limits": {"daily_hours": 7.5, "weekly": {"commercial": 20}, "monthly": {"internal": 40}},
            }
        ),
        encoding="utf-8",
    )
    return path


def test_load_workspace_config(workspace_file):
    cfg = load_workspace_config(str(workspace_file))
    assert cfg.name == "Acme"
    assert cfg.locale == "uk-UA"
    assert [p.name for p in cfg.projects] == ["Hiring", "Website"]
    assert cfg.category_of("website") == "commercial"
    assert cfg.category_of("Hiring") is None
    assert cfg.daily_limit_hours == 7.5

    policy = cfg.budget_policy()
    assert policy.daily.limit_hours == 7.5
    assert policy.mode is EnforcementMode.ENFORCE
    assert [(b.category_id, b.window_kind) for b in policy.categories] == [
        ("commercial", "weekly"),
        ("internal", "monthly"),
        ("commercial", "monthly"),
    ]


def test_env_overrides_file(monkeypatch, workspace_file):
    monkeypatch.setenv("VOICELOG_CONFIG_PATH", str(workspace_file))
    monkeypatch.setenv("VOICELOG_DAILY_LIMIT_HOURS", "6")
    monkeypatch.setenv("VOICELOG_LOCALE", "en")
    monkeypatch.setenv("VOICELOG_STRICT_PROJECTS", "yes")
    monkeypatch.setenv("VOICELOG_ENFORCE_LIMITS", "off")

    cfg = load_from_env()

    assert cfg.daily_limit_hours == 6
    assert cfg.locale == "en-US"
    assert cfg.strict_projects is True
    assert cfg.budget_policy().mode is EnforcementMode.ADVISORY


def test_missing_file_returns_none(tmp_path):
    assert load_from_env(default_path=str(tmp_path / "nope.json")) is None


def test_invalid_values_raise_config_error(monkeypatch, tmp_path, workspace_file):
    bad = tmp_path / "bad.json"
    bad.write_text(json.dumps({"limits": {"daily_hours": 0}}), encoding="utf-8")
    with pytest.raises(ConfigError):
        load_workspace_config(str(bad))

    broken = tmp_path / "broken.json"
    broken.write_text("{not json", encoding="utf-8")
    with pytest.raises(ConfigError):
        load_workspace_config(str(broken))

    monkeypatch.setenv("VOICELOG_STRICT_PROJECTS", "maybe")
    with pytest.raises(ConfigError):
        load_from_env(default_path=str(workspace_file))


def test_language_service_settings_defaults():
    settings = load_language_service_settings()
    assert settings.api_key is None
    assert not settings.enabled
    assert settings.model == DEFAULT_MODEL
    assert settings.temperature == 0.3
    assert settings.max_tokens == 500


def test_language_service_settings_from_env(monkeypatch):
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test")
    monkeypatch.setenv("OPENAI_MODEL", "gpt-4o")
    monkeypatch.setenv("VOICELOG_LLM_MAX_TOKENS", "300")
    settings = load_language_service_settings()
    assert settings.enabled
    assert settings.model == "gpt-4o"
    assert settings.max_tokens == 300

    monkeypatch.setenv("VOICELOG_LLM_TEMPERATURE", "warm")
    with pytest.raises(ConfigError):
        load_language_service_settings()


def test_normalize_locale():
    assert normalize_locale(None) == "en-US"
    assert normalize_locale("uk_ua") == "uk-UA"
    with pytest.raises(ConfigError):
        normalize_locale("de-DE")
