"""Deterministic natural-language to structured entry parsing.

This is the offline path: no model calls, just the locale rule table. It is
used when no language-service key is configured or when the service fails.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from datetime import date as _date, datetime

from .dates import clamp_to_window, date_like_spans, find_date, today_for
from .forms import CandidateEntry, KnownProject, ProjectLike, known_projects
from .locales import LocaleRules, get_rules

_BARE_NUMBER_RE = re.compile(r"(?<![\w.,])\d+(?:[.,]\d+)?(?!\w)")
_EDGE_PUNCTUATION = " \t,.;:!?-–—\"'"
MIN_DESCRIPTION_LENGTH = 3
DEFAULT_HOURS = 1.0

Span = tuple[int, int]


def parse_deterministic(
    text: str,
    projects: Sequence[ProjectLike],
    locale: str | None = None,
    now: _date | datetime | None = None,
    *,
    strict_projects: bool = False,
) -> CandidateEntry | None:
    """Parse a dictated line into a ``CandidateEntry`` using keyword rules.

    Heuristics:
    - Date: today/yesterday keywords, then a numeric date, then today; dates
      outside the locale look-back window become today.
    - Project: case-insensitive substring match against the known projects; the
      longest matching name wins ("Website Redesign" over "Website"). Without a
      match the first known project is used, unless ``strict_projects``.
    - Hours: ``<number><unit>`` ("2 hours", "2,5 години", "two hours"), then the
      first bare number, then 1.
    - Description: whatever is left once the project, hours and date are cut
      out, or a "Work on {project}" placeholder when that is too short.

    Returns ``None`` when the text cannot be turned into a valid entry.
    """
    s = (text or "").strip()
    candidates = known_projects(projects)
    if not s or not candidates:
        return None

    rules = get_rules(locale)
    today = today_for(now)
    spans: list[Span] = []

    found = find_date(s, rules.tag, today)
    day = clamp_to_window(found.day, today, rules.lookback_days)
    if found.span:
        spans.append(found.span)

    project, project_span = match_project(s, candidates)
    if project is None:
        if strict_projects:
            return None
        project = candidates[0]
    else:
        spans.append(project_span)

    # Digits of a date, even an impossible one like 40/01/2024, are never hours.
    hours, hours_span = find_hours(s, rules, exclude=spans + date_like_spans(s))
    if hours is None:
        return None
    if hours_span:
        spans.append(hours_span)

    description = describe(s, spans, rules)
    if len(description) < MIN_DESCRIPTION_LENGTH:
        description = rules.placeholder_for(project.name)

    return CandidateEntry(
        date=day,
        project_name=project.name,
        hours=hours,
        description=description,
    )


def match_project(text: str, projects: Sequence[KnownProject]) -> tuple[KnownProject | None, Span]:
    """Longest known project name contained in ``text`` (case-insensitive)."""
    best: KnownProject | None = None
    best_span: Span = (0, 0)
    for p in projects:
        name = p.name.strip()
        if not name:
            continue
        m = re.search(re.escape(name), text, flags=re.IGNORECASE)
        if m and (best is None or len(name) > len(best.name.strip())):
            best, best_span = p, m.span()
    return best, best_span


def find_hours(
    text: str,
    rules: LocaleRules,
    exclude: Sequence[Span] = (),
) -> tuple[float | None, Span | None]:
    """Find the hour expression, ignoring characters inside ``exclude`` spans.

    Returns ``(None, span)`` when a number was found but is not a positive value.
    """
    masked = _mask(text, exclude)
    m = rules.hours_pattern.search(masked)
    if m:
        return _to_hours(m.group("number"), rules), m.span()
    m = _BARE_NUMBER_RE.search(masked)
    if m:
        return _to_hours(m.group(0), rules), m.span()
    return DEFAULT_HOURS, None


def describe(text: str, spans: Sequence[Span], rules: LocaleRules) -> str:
    """Cut ``spans`` out of ``text`` and trim leftover filler words at both ends."""
    pieces: list[str] = []
    pos = 0
    for start, end in sorted(spans):
        if start > pos:
            pieces.append(text[pos:start])
        pos = max(pos, end)
    pieces.append(text[pos:])

    tokens = " ".join(pieces).split()
    while tokens and _is_filler(tokens[0], rules):
        tokens.pop(0)
    while tokens and _is_filler(tokens[-1], rules):
        tokens.pop()
    return " ".join(tokens).strip(_EDGE_PUNCTUATION)


def _is_filler(token: str, rules: LocaleRules) -> bool:
    word = token.strip(_EDGE_PUNCTUATION).casefold()
    return not word or word in rules.filler_words


def _mask(text: str, spans: Sequence[Span]) -> str:
    chars = list(text)
    for start, end in spans:
        for i in range(start, min(end, len(chars))):
            chars[i] = " "
    return "".join(chars)


def _to_hours(raw: str, rules: LocaleRules) -> float | None:
    word = raw.casefold()
    if word in rules.number_words:
        value = float(rules.number_words[word])
    else:
        try:
            value = float(raw.replace(",", "."))
        except ValueError:
            return None
    if value <= 0:
        return None
    return round(value, 2)
