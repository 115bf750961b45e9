"""Relative and numeric date resolution for dictated entries.

``resolve_date`` turns a whole utterance into a calendar date:

1. a "today"/"now" keyword of the locale gives today's date;
2. a "yesterday" keyword gives the day before;
3. an explicit numeric date (``YYYY-MM-DD`` or ``D.M.Y``, ``M/D/Y``, ``M-D-Y``);
4. otherwise today's date.

The same keyword rules are used to double-check dates returned by the language
service, which is allowed to get relative dates wrong.
"""

from __future__ import annotations

import calendar
import re
from dataclasses import dataclass
from datetime import date as _date, datetime, timedelta

from .locales import LocaleRules, get_rules

_ISO_RE = re.compile(r"(?<!\d)(\d{4})-(\d{1,2})-(\d{1,2})(?!\d)")
_NUMERIC_RE = re.compile(r"(?<![\d.,/-])(\d{1,2})([./-])(\d{1,2})[./-](\d{4}|\d{2})(?!\d)")

WINDOW_KINDS = ("weekly", "monthly")


@dataclass(frozen=True)
class DateMatch:
    """A resolved date plus where it came from in the text.

    ``kind`` is one of ``today``, ``yesterday``, ``numeric`` or ``default``;
    ``span`` is ``None`` for the default.
    """

    day: _date
    kind: str
    span: tuple[int, int] | None = None


def today_for(now: _date | datetime | None = None) -> _date:
    if now is None:
        return datetime.now().astimezone().date()
    if isinstance(now, datetime):
        return now.date()
    return now


def parse_iso_date(s: str | None) -> _date | None:
    if not s:
        return None
    try:
        return datetime.strptime(s.strip(), "%Y-%m-%d").date()
    except ValueError:
        return None


def match_relative_keyword(text: str, rules: LocaleRules, today: _date) -> DateMatch | None:
    """Return the today/yesterday keyword match, today taking precedence."""
    m = rules.today_pattern.search(text)
    if m:
        return DateMatch(today, "today", m.span())
    m = rules.yesterday_pattern.search(text)
    if m:
        return DateMatch(today - timedelta(days=1), "yesterday", m.span())
    return None


def find_date(
    text: str,
    locale: str | None = None,
    now: _date | datetime | None = None,
) -> DateMatch:
    rules = get_rules(locale)
    today = today_for(now)
    s = text or ""

    keyword = match_relative_keyword(s, rules, today)
    if keyword:
        return keyword

    numeric = _match_numeric(s, rules)
    if numeric:
        return numeric
    return DateMatch(today, "default")


def resolve_date(
    text: str,
    locale: str | None = None,
    now: _date | datetime | None = None,
) -> _date:
    """Resolve the date an utterance refers to; never returns an invalid date."""
    return find_date(text, locale, now).day


def date_like_spans(text: str) -> list[tuple[int, int]]:
    """Spans of every ISO or numeric date pattern in ``text``, valid dates or not."""
    return [m.span() for pattern in (_ISO_RE, _NUMERIC_RE) for m in pattern.finditer(text or "")]


def _match_numeric(s: str, rules: LocaleRules) -> DateMatch | None:
    iso = _ISO_RE.search(s)
    if iso:
        y, m, d = (int(g) for g in iso.groups())
        return _build(y, m, d, iso.span())

    num = _NUMERIC_RE.search(s)
    if not num:
        return None
    first, sep, second, year = num.groups()
    y = int(year)
    if len(year) == 2:
        y += 2000
    if sep in rules.day_first_separators:
        d, m = int(first), int(second)
    else:
        m, d = int(first), int(second)
    return _build(y, m, d, num.span())


def _build(y: int, m: int, d: int, span: tuple[int, int]) -> DateMatch | None:
    try:
        return DateMatch(_date(y, m, d), "numeric", span)
    except ValueError:
        # 31/02 and friends: fall through to the default.
        return None


def clamp_to_window(day: _date, now: _date | datetime | None, lookback_days: int) -> _date:
    """Return ``day`` when it lies in ``[now - lookback_days, now]``, else today."""
    today = today_for(now)
    if day > today or day < today - timedelta(days=lookback_days):
        return today
    return day


def verify_service_date(
    service_date: str | _date | None,
    text: str,
    locale: str | None = None,
    now: _date | datetime | None = None,
    lookback_days: int | None = None,
) -> _date:
    """Check a date produced by the language service against the utterance.

    A today/yesterday keyword in the utterance always wins. Otherwise a date
    outside the look-back window (or one that does not parse) becomes today.
    """
    rules = get_rules(locale)
    today = today_for(now)
    keyword = match_relative_keyword(text or "", rules, today)
    if keyword:
        return keyword.day

    if isinstance(service_date, _date):
        parsed: _date | None = service_date
    else:
        parsed = parse_iso_date(service_date)
    if parsed is None:
        return today
    window = rules.lookback_days if lookback_days is None else lookback_days
    return clamp_to_window(parsed, today, window)


def week_window(day: _date) -> tuple[_date, _date]:
    """ISO week containing ``day``: Monday through Sunday."""
    start = day - timedelta(days=day.weekday())
    return start, start + timedelta(days=6)


def month_window(day: _date) -> tuple[_date, _date]:
    last = calendar.monthrange(day.year, day.month)[1]
    return day.replace(day=1), day.replace(day=last)


def window_for(kind: str, day: _date) -> tuple[_date, _date]:
    if kind == "weekly":
        return week_window(day)
    if kind == "monthly":
        return month_window(day)
    raise ValueError(f"Unknown window kind: {kind!r} (expected one of {WINDOW_KINDS})")


def working_days_in_month(day: _date) -> int:
    """Number of Monday..Friday days in the month containing ``day``."""
    start, end = month_window(day)
    return sum(1 for n in range((end - start).days + 1) if (start + timedelta(days=n)).weekday() < 5)
