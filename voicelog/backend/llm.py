"""OpenAI-backed entry parser.

Sends one chat-completions request per utterance and turns the JSON object in
the reply into a ``CandidateEntry``. Every problem (transport, missing JSON,
missing fields, unknown project) is raised as ``ParseFailure`` so the
orchestrator can fall back to the deterministic parser.
"""

from __future__ import annotations

import json
import logging
import math
import re
from collections.abc import Sequence
from datetime import date as _date, datetime, timedelta
from typing import Any

from openai import APIError, OpenAI

from .config import LanguageServiceSettings
from .dates import parse_iso_date, today_for, verify_service_date
from .errors import ConfigError, ParseFailure, ParseFailureReason
from .forms import CandidateEntry, KnownProject, ProjectLike, find_project, known_projects
from .locales import LocaleRules, get_rules

logger = logging.getLogger(__name__)

_OPEN_BRACE_RE = re.compile(r"\{")


def build_messages(
    text: str,
    projects: Sequence[KnownProject],
    rules: LocaleRules,
    today: _date,
) -> list[dict[str, str]]:
    user_prompt = rules.user_prompt.format(
        today=today.isoformat(),
        yesterday=(today - timedelta(days=1)).isoformat(),
        projects=", ".join(p.name for p in projects),
        text=text,
    )
    return [
        {"role": "system", "content": rules.system_prompt},
        {"role": "user", "content": user_prompt},
    ]


def extract_json_object(content: str) -> dict[str, Any] | None:
    """Return the first decodable ``{...}`` object in ``content``, if any.

    Models like to wrap JSON in prose or code fences, so every opening brace is
    tried in turn.
    """
    decoder = json.JSONDecoder()
    for m in _OPEN_BRACE_RE.finditer(content or ""):
        try:
            obj, _ = decoder.raw_decode(content, m.start())
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict):
            return obj
    return None


class LanguageServiceParser:
    """ChatGPT-backed parser for dictated time entries."""

    name = "openai"

    def __init__(self, settings: LanguageServiceSettings, client: OpenAI | None = None) -> None:
        self._settings = settings
        if client is None:
            if not settings.api_key:
                raise ConfigError("OpenAI client not configured. Set OPENAI_API_KEY.")
            client = OpenAI(
                api_key=settings.api_key,
                base_url=settings.api_base,
                timeout=settings.timeout_seconds,
                max_retries=0,
            )
        self._client = client

    def parse(
        self,
        text: str,
        projects: Sequence[ProjectLike],
        locale: str | None = None,
        now: _date | datetime | None = None,
    ) -> CandidateEntry:
        rules = get_rules(locale)
        today = today_for(now)
        candidates = known_projects(projects)
        if not candidates:
            raise ParseFailure(ParseFailureReason.NO_PROJECT_MATCH, "No known projects to match against.")

        logger.info(
            {
                "event": "language_service_request",
                "provider": self.name,
                "model": self._settings.model,
                "locale": rules.tag,
                "project_count": len(candidates),
            }
        )
        try:
            response = self._client.chat.completions.create(
                model=self._settings.model,
                messages=build_messages(text, candidates, rules, today),
                temperature=self._settings.temperature,
                max_tokens=self._settings.max_tokens,
            )
        except APIError as exc:
            logger.error(
                {
                    "event": "language_service_error",
                    "provider": self.name,
                    "error_type": type(exc).__name__,
                    "error_message": str(exc),
                }
            )
            raise ParseFailure(ParseFailureReason.SERVICE_UNREACHABLE, str(exc)) from exc

        content = _message_content(response)
        data = extract_json_object(content)
        if data is None:
            raise ParseFailure(
                ParseFailureReason.NO_JSON_IN_RESPONSE, "Failed to parse the service response as JSON."
            )
        entry = self._to_candidate(data, text, candidates, rules, today)
        logger.info(
            {
                "event": "language_service_response",
                "provider": self.name,
                "date": entry.date.isoformat(),
                "project_name": entry.project_name,
                "hours": entry.hours,
            }
        )
        return entry

    def _to_candidate(
        self,
        data: dict[str, Any],
        text: str,
        candidates: list[KnownProject],
        rules: LocaleRules,
        today: _date,
    ) -> CandidateEntry:
        raw_date = str(data.get("date") or "").strip()
        project_name = str(data.get("project_name") or "").strip()
        raw_hours = data.get("hours")

        missing = [key for key, value in (("date", raw_date), ("project_name", project_name)) if not value]
        if not raw_hours:
            missing.append("hours")
        if missing:
            raise ParseFailure(
                ParseFailureReason.MISSING_FIELD, f"Parsed data is missing: {', '.join(missing)}"
            )

        hours = _coerce_hours(raw_hours)
        if hours is None:
            raise ParseFailure(
                ParseFailureReason.MISSING_FIELD, f"hours must be a positive number (received {raw_hours!r})"
            )

        project = find_project(candidates, project_name)
        if project is None:
            raise ParseFailure(
                ParseFailureReason.NO_PROJECT_MATCH, f'Project "{project_name}" not found in your projects'
            )

        day = verify_service_date(raw_date, text, rules.tag, today)
        if parse_iso_date(raw_date) != day:
            logger.info(
                {
                    "event": "language_service_date_corrected",
                    "provider": self.name,
                    "service_date": raw_date,
                    "date": day.isoformat(),
                }
            )

        return CandidateEntry(
            date=day,
            project_name=project.name,
            hours=hours,
            description=str(data.get("description") or "").strip(),
        )


def _message_content(response: Any) -> str:
    choices = getattr(response, "choices", None) or []
    if not choices:
        return ""
    return choices[0].message.content or ""


def _coerce_hours(raw: Any) -> float | None:
    if isinstance(raw, bool):
        return None
    try:
        value = float(str(raw).replace(",", "."))
    except ValueError:
        return None
    if not math.isfinite(value) or value <= 0:
        return None
    return round(value, 2)
