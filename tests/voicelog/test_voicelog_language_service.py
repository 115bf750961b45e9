"""
Tests for the OpenAI entry parser.

The OpenAI client is mocked, so these check prompt construction, response
parsing and failure mapping without making real API calls.
"""

from __future__ import annotations

import json
from datetime import date
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

from voicelog.backend.config import LanguageServiceSettings
from voicelog.backend.errors import ConfigError, ParseFailure, ParseFailureReason
from voicelog.backend.llm import LanguageServiceParser, extract_json_object

NOW = date(2024, 6, 10)
PROJECTS = ["Website", "Mobile App"]


@pytest.fixture
def settings() -> LanguageServiceSettings:
    return LanguageServiceSettings(api_key="test-key", model="gpt-4o", temperature=0.3, max_tokens=500)


def _completion(content: str) -> SimpleNamespace:
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


def _parser_returning(settings: LanguageServiceSettings, content: str) -> tuple[LanguageServiceParser, MagicMock]:
    client = MagicMock()
    client.chat.completions.create.return_value = _completion(content)
    return LanguageServiceParser(settings, client=client), client


def test_parse_returns_candidate_from_json(settings):
    content = json.dumps(
        {"date": "2024-06-09", "project_name": "website", "hours": 3, "description": "working on homepage"}
    )
    parser, client = _parser_returning(settings, content)

    entry = parser.parse("3 hours on Website yesterday working on homepage", PROJECTS, "en-US", NOW)

    assert entry.date == date(2024, 6, 9)
    assert entry.project_name == "Website"  # canonical name, not the service's casing
    assert entry.hours == 3
    assert entry.description == "working on homepage"

    kwargs = client.chat.completions.create.call_args.kwargs
    assert kwargs["model"] == "gpt-4o"
    assert kwargs["temperature"] == 0.3
    assert kwargs["max_tokens"] == 500
    system, user = kwargs["messages"]
    assert system["role"] == "system"
    assert "Website, Mobile App" in user["content"]
    assert "2024-06-10" in user["content"]
    assert "2024-06-09" in user["content"]
    assert "3 hours on Website yesterday working on homepage" in user["content"]


def test_ukrainian_prompt_is_used_for_ukrainian_locale(settings):
    content = '{"date": "2024-06-10", "project_name": "Website", "hours": "2,5", "description": "верстка"}'
    parser, client = _parser_returning(settings, content)

    entry = parser.parse("сьогодні 2,5 години Website верстка", PROJECTS, "uk-UA", NOW)

    assert entry.hours == 2.5
    user = client.chat.completions.create.call_args.kwargs["messages"][1]["content"]
    assert "Текст запису" in user


def test_json_wrapped_in_prose_is_extracted(settings):
    content = 'Sure! Here you go:\n```json\n{"date": "2024-06-10", "project_name": "Mobile App", "hours": 1.5}\n```'
    parser, _ = _parser_returning(settings, content)

    entry = parser.parse("today an hour and a half on the mobile app", PROJECTS, "en-US", NOW)

    assert entry.project_name == "Mobile App"
    assert entry.hours == 1.5
    assert entry.description == ""


def test_extract_json_object_skips_invalid_braces():
    assert extract_json_object('{not json} then {"a": 1}') == {"a": 1}
    assert extract_json_object("no braces here") is None
    assert extract_json_object("") is None


def test_reply_without_json_is_a_failure(settings):
    parser, _ = _parser_returning(settings, "I could not understand that.")
    with pytest.raises(ParseFailure) as excinfo:
        parser.parse("today 2 hours on Website", PROJECTS, "en-US", NOW)
    assert excinfo.value.reason is ParseFailureReason.NO_JSON_IN_RESPONSE


@pytest.mark.parametrize(
    "payload",
    [
        {"project_name": "Website", "hours": 2},
        {"date": "2024-06-10", "hours": 2},
        {"date": "2024-06-10", "project_name": "Website"},
        {"date": "2024-06-10", "project_name": "Website", "hours": 0},
        {"date": "2024-06-10", "project_name": "Website", "hours": "lots"},
    ],
)
def test_missing_or_bad_fields_are_failures(settings, payload):
    parser, _ = _parser_returning(settings, json.dumps(payload))
    with pytest.raises(ParseFailure) as excinfo:
        parser.parse("today 2 hours on Website", PROJECTS, "en-US", NOW)
    assert excinfo.value.reason is ParseFailureReason.MISSING_FIELD


def test_unknown_project_is_rejected(settings):
    content = '{"date": "2024-06-10", "project_name": "Backend", "hours": 2}'
    parser, _ = _parser_returning(settings, content)
    with pytest.raises(ParseFailure) as excinfo:
        parser.parse("today 2 hours on backend", PROJECTS, "en-US", NOW)
    assert excinfo.value.reason is ParseFailureReason.NO_PROJECT_MATCH
    assert excinfo.value.detail == 'Project "Backend" not found in your projects'


def test_no_known_projects_fails_without_calling_service(settings):
    parser, client = _parser_returning(settings, "{}")
    with pytest.raises(ParseFailure) as excinfo:
        parser.parse("today 2 hours", [], "en-US", NOW)
    assert excinfo.value.reason is ParseFailureReason.NO_PROJECT_MATCH
    client.chat.completions.create.assert_not_called()


def test_relative_keyword_overrides_service_date(settings):
    content = '{"date": "2023-12-31", "project_name": "Website", "hours": 2}'
    parser, _ = _parser_returning(settings, content)
    entry = parser.parse("yesterday 2 hours on Website", PROJECTS, "en-US", NOW)
    assert entry.date == date(2024, 6, 9)


def test_service_date_outside_window_becomes_today(settings):
    content = '{"date": "2024-01-15", "project_name": "Website", "hours": 2}'
    parser, _ = _parser_returning(settings, content)
    entry = parser.parse("2 hours on Website", PROJECTS, "en-US", NOW)
    assert entry.date == NOW


def test_api_error_maps_to_service_unreachable(settings):
    from httpx import Request, Response
    from openai import APIStatusError

    parser = LanguageServiceParser(settings)
    mock_request = Request("POST", "https://api.openai.com/v1/chat/completions")
    mock_response = Response(429, request=mock_request)

    with patch.object(
        parser._client.chat.completions,
        "create",
        side_effect=APIStatusError("Rate limit exceeded", response=mock_response, body=None),
    ):
        with pytest.raises(ParseFailure) as excinfo:
            parser.parse("today 2 hours on Website", PROJECTS, "en-US", NOW)

    assert excinfo.value.reason is ParseFailureReason.SERVICE_UNREACHABLE


def test_missing_api_key_is_a_config_error():
    with pytest.raises(ConfigError):
        LanguageServiceParser(LanguageServiceSettings(api_key=None))
