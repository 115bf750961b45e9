from __future__ import annotations

import json
import os
from dataclasses import dataclass, field

from .errors import ConfigError
from .forms import KnownProject, find_project
from .limits import BudgetPolicy, CategoryBudget, DailyBudget, EnforcementMode
from .locales import DEFAULT_LOCALE, normalize_locale

DEFAULT_DAILY_LIMIT_HOURS = 8.0
DEFAULT_MODEL = "gpt-4o-mini"
DEFAULT_TEMPERATURE = 0.3
DEFAULT_MAX_TOKENS = 500
DEFAULT_TIMEOUT_SECONDS = 10.0

_TRUTHY = {"1", "true", "yes", "on"}
_FALSY = {"0", "false", "no", "off"}


@dataclass
class ProjectConfig:
    name: str
    category: str | None = None  # e.g. internal, commercial


@dataclass
class WorkspaceConfig:
    name: str = ""
    locale: str = DEFAULT_LOCALE
    projects: list[ProjectConfig] = field(default_factory=list)
    daily_limit_hours: float = DEFAULT_DAILY_LIMIT_HOURS
    enforce_daily_limit: bool = True
    weekly_limits: dict[str, float] = field(default_factory=dict)
    monthly_limits: dict[str, float] = field(default_factory=dict)
    strict_projects: bool = False

    def known_projects(self) -> list[KnownProject]:
        return [KnownProject(name=p.name, category=p.category) for p in self.projects if p.name]

    def category_of(self, project_name: str) -> str | None:
        match = find_project(self.known_projects(), project_name)
        return match.category if match else None

    def budget_policy(self) -> BudgetPolicy:
        categories = [
            CategoryBudget(category_id=cat, limit_hours=hours, window_kind="weekly")
            for cat, hours in self.weekly_limits.items()
        ] + [
            CategoryBudget(category_id=cat, limit_hours=hours, window_kind="monthly")
            for cat, hours in self.monthly_limits.items()
        ] + [
            # Weekly ceilings also bound the month unless a monthly limit is set.
            CategoryBudget(category_id=cat, limit_hours=hours, window_kind="monthly", derived_from_weekly=True)
            for cat, hours in self.weekly_limits.items()
            if cat not in self.monthly_limits
        ]
        return BudgetPolicy(
            daily=DailyBudget(limit_hours=self.daily_limit_hours),
            categories=categories,
            mode=EnforcementMode.ENFORCE if self.enforce_daily_limit else EnforcementMode.ADVISORY,
            category_of=self.category_of,
        )


@dataclass(frozen=True)
class LanguageServiceSettings:
    """Outbound language-service settings; no ``api_key`` means deterministic-only."""

    api_key: str | None = None
    model: str = DEFAULT_MODEL
    api_base: str | None = None
    temperature: float = DEFAULT_TEMPERATURE
    max_tokens: int = DEFAULT_MAX_TOKENS
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS

    @property
    def enabled(self) -> bool:
        return bool(self.api_key)


def load_workspace_config(path: str) -> WorkspaceConfig:
    try:
        with open(path, encoding="utf-8") as f:
            data = json.load(f)
    except json.JSONDecodeError as exc:
        raise ConfigError(f"{path} is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a JSON object")

    name = str((data.get("workspace") or {}).get("name") or "")
    projects: list[ProjectConfig] = []
    for x in data.get("projects") or []:
        if isinstance(x, str):
            projects.append(ProjectConfig(name=x.strip()))
        elif isinstance(x, dict):
            projects.append(
                ProjectConfig(
                    name=str(x.get("name", "")).strip(),
                    category=(str(x["category"]) if x.get("category") is not None else None),
                )
            )
    limits = data.get("limits") or {}
    return WorkspaceConfig(
        name=name,
        locale=normalize_locale(data.get("locale") or DEFAULT_LOCALE),
        projects=projects,
        daily_limit_hours=_positive_float(
            limits.get("daily_hours", DEFAULT_DAILY_LIMIT_HOURS), "limits.daily_hours"
        ),
        enforce_daily_limit=bool(limits.get("enforce_daily_limit", True)),
        weekly_limits=_limit_map(limits.get("weekly"), "limits.weekly"),
        monthly_limits=_limit_map(limits.get("monthly"), "limits.monthly"),
        strict_projects=bool(data.get("strict_projects", False)),
    )


def load_from_env(default_path: str | None = None) -> WorkspaceConfig | None:
    """Load a workspace config from VOICELOG_CONFIG_PATH or a default path.

    VOICELOG_DAILY_LIMIT_HOURS, VOICELOG_LOCALE, VOICELOG_STRICT_PROJECTS and
    VOICELOG_ENFORCE_LIMITS override the file. Returns None when no file exists.
    """
    path = os.environ.get("VOICELOG_CONFIG_PATH") or default_path
    if not path or not os.path.isfile(path):
        return None
    cfg = load_workspace_config(path)

    daily = os.environ.get("VOICELOG_DAILY_LIMIT_HOURS")
    if daily and daily.strip():
        cfg.daily_limit_hours = _positive_float(daily, "VOICELOG_DAILY_LIMIT_HOURS")
    locale = os.environ.get("VOICELOG_LOCALE")
    if locale and locale.strip():
        cfg.locale = normalize_locale(locale)
    strict = _env_bool("VOICELOG_STRICT_PROJECTS")
    if strict is not None:
        cfg.strict_projects = strict
    enforce = _env_bool("VOICELOG_ENFORCE_LIMITS")
    if enforce is not None:
        cfg.enforce_daily_limit = enforce
    return cfg


def load_language_service_settings() -> LanguageServiceSettings:
    """Read OpenAI settings from the environment; a missing key is not an error."""
    api_key = (os.environ.get("OPENAI_API_KEY") or "").strip() or None
    return LanguageServiceSettings(
        api_key=api_key,
        model=(os.environ.get("OPENAI_MODEL") or "").strip() or DEFAULT_MODEL,
        api_base=(os.environ.get("OPENAI_API_BASE") or "").strip() or None,
        temperature=_parse_float(
            os.environ.get("VOICELOG_LLM_TEMPERATURE"), DEFAULT_TEMPERATURE, "VOICELOG_LLM_TEMPERATURE"
        ),
        max_tokens=_parse_int(
            os.environ.get("VOICELOG_LLM_MAX_TOKENS"), DEFAULT_MAX_TOKENS, "VOICELOG_LLM_MAX_TOKENS"
        ),
        timeout_seconds=_parse_float(
            os.environ.get("VOICELOG_LLM_TIMEOUT_SECONDS"),
            DEFAULT_TIMEOUT_SECONDS,
            "VOICELOG_LLM_TIMEOUT_SECONDS",
        ),
    )


def _parse_float(raw_value: str | None, default: float, env_key: str) -> float:
    if raw_value is None or raw_value.strip() == "":
        return default
    try:
        return float(raw_value)
    except ValueError as exc:
        raise ConfigError(f"{env_key} must be numeric (received '{raw_value}')") from exc


def _parse_int(raw_value: str | None, default: int, env_key: str) -> int:
    if raw_value is None or raw_value.strip() == "":
        return default
    try:
        return int(raw_value)
    except ValueError as exc:
        raise ConfigError(f"{env_key} must be an integer (received '{raw_value}')") from exc


def _positive_float(raw_value: object, key: str) -> float:
    try:
        value = float(raw_value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{key} must be numeric (received '{raw_value}')") from exc
    if value <= 0:
        raise ConfigError(f"{key} must be greater than zero (received {value:g})")
    return value


def _limit_map(raw: object, key: str) -> dict[str, float]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigError(f"{key} must be an object of category -> hours")
    return {str(cat): _positive_float(hours, f"{key}.{cat}") for cat, hours in raw.items()}


def _env_bool(env_key: str) -> bool | None:
    raw = (os.environ.get(env_key) or "").strip().lower()
    if not raw:
        return None
    if raw in _TRUTHY:
        return True
    if raw in _FALSY:
        return False
    raise ConfigError(f"{env_key} must be a boolean (received '{raw}')")
