"""Single entry point for turning an utterance into a candidate entry.

The language service is tried first when a key is configured; any failure falls
back to the deterministic parser. Failures are returned as values on
``ParseResult`` and never raised to the caller.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date as _date, datetime
from typing import Protocol

from .config import LanguageServiceSettings
from .errors import ParseFailure, ParseFailureReason
from .forms import CandidateEntry, ProjectLike
from .llm import LanguageServiceParser
from .parsers import parse_deterministic

logger = logging.getLogger(__name__)


class EntryParser(Protocol):
    name: str

    def parse(
        self,
        text: str,
        projects: Sequence[ProjectLike],
        locale: str | None = None,
        now: _date | datetime | None = None,
    ) -> CandidateEntry:
        """Return a candidate entry or raise ``ParseFailure``."""
        ...


@dataclass(frozen=True)
class ParseResult:
    entry: CandidateEntry | None = None
    failure: ParseFailure | None = None
    source: str | None = None  # "openai" | "deterministic"
    fallback_reason: ParseFailure | None = None

    @property
    def ok(self) -> bool:
        return self.entry is not None


class ParseOrchestrator:
    def __init__(
        self,
        language_parser: EntryParser | None = None,
        *,
        strict_projects: bool = False,
    ) -> None:
        self.language_parser = language_parser
        self.strict_projects = strict_projects

    @classmethod
    def from_settings(
        cls,
        settings: LanguageServiceSettings,
        *,
        strict_projects: bool = False,
    ) -> ParseOrchestrator:
        """Build an orchestrator; without an API key only the deterministic path is used."""
        parser = LanguageServiceParser(settings) if settings.enabled else None
        return cls(parser, strict_projects=strict_projects)

    def parse(
        self,
        text: str,
        projects: Sequence[ProjectLike],
        locale: str | None = None,
        now: _date | datetime | None = None,
    ) -> ParseResult:
        if not (text or "").strip():
            return ParseResult(
                failure=ParseFailure(ParseFailureReason.UNRECOGNIZABLE_TEXT, "Nothing was said.")
            )

        fallback_reason: ParseFailure | None = None
        if self.language_parser is not None:
            try:
                entry = self.language_parser.parse(text, projects, locale, now)
                return ParseResult(entry=entry, source=self.language_parser.name)
            except ParseFailure as exc:
                fallback_reason = exc
            except Exception as exc:  # noqa: BLE001
                fallback_reason = ParseFailure(ParseFailureReason.SERVICE_UNREACHABLE, repr(exc))
            logger.warning(
                {
                    "event": "language_service_fallback",
                    "provider": self.language_parser.name,
                    "reason": fallback_reason.reason.value,
                    "detail": fallback_reason.detail,
                }
            )

        entry = parse_deterministic(text, projects, locale, now, strict_projects=self.strict_projects)
        if entry is None:
            return ParseResult(
                failure=ParseFailure(
                    ParseFailureReason.UNRECOGNIZABLE_TEXT,
                    "Could not understand the entry. Please try again with a clearer description.",
                ),
                fallback_reason=fallback_reason,
            )
        return ParseResult(entry=entry, source="deterministic", fallback_reason=fallback_reason)
