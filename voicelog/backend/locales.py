"""Per-locale rule records.

Everything that differs between the supported languages lives in ``LOCALES``:
keyword sets, hour units, spelled-out numbers, date order, filler words and the
prompt text sent to the language service. Adding a locale means adding one
record here.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from functools import cached_property

from .errors import ConfigError

DEFAULT_LOCALE = "en-US"
DEFAULT_LOOKBACK_DAYS = 7


@dataclass(frozen=True)
class LocaleRules:
    tag: str
    today_keywords: tuple[str, ...]
    yesterday_keywords: tuple[str, ...]
    hour_units: tuple[str, ...]
    number_words: dict[str, float] = field(default_factory=dict)
    # Separators that make a numeric date day-first; anything else is month-first.
    day_first_separators: str = ""
    filler_words: frozenset[str] = frozenset()
    placeholder: str = "Work on {project}"
    system_prompt: str = ""
    user_prompt: str = ""
    lookback_days: int = DEFAULT_LOOKBACK_DAYS

    def placeholder_for(self, project: str) -> str:
        return self.placeholder.format(project=project)

    @cached_property
    def today_pattern(self) -> re.Pattern[str]:
        return _keyword_pattern(self.today_keywords)

    @cached_property
    def yesterday_pattern(self) -> re.Pattern[str]:
        return _keyword_pattern(self.yesterday_keywords)

    @cached_property
    def hours_pattern(self) -> re.Pattern[str]:
        """``<number><unit>`` where the number is digits or a number word."""
        words = sorted(self.number_words, key=len, reverse=True)
        number = r"\d+(?:[.,]\d+)?"
        if words:
            number += "|" + "|".join(re.escape(w) for w in words)
        units = "|".join(re.escape(u) for u in sorted(self.hour_units, key=len, reverse=True))
        return re.compile(
            rf"(?<![\w.,])(?P<number>{number})\s*(?:{units})(?!\w)",
            flags=re.IGNORECASE,
        )


def _keyword_pattern(keywords: tuple[str, ...]) -> re.Pattern[str]:
    alternatives = "|".join(re.escape(k) for k in sorted(keywords, key=len, reverse=True))
    return re.compile(rf"(?<!\w)(?:{alternatives})(?!\w)", flags=re.IGNORECASE)


_EN_SYSTEM_PROMPT = (
    "You are a helpful assistant that parses spoken time entries into structured data."
)

_EN_USER_PROMPT = """Parse the following spoken time entry into structured data with these fields:
- date: in YYYY-MM-DD format. Today is {today}. "today" means {today}, "yesterday" means {yesterday}. Use today's date if no date is mentioned.
- project_name: must be exactly one of these existing projects: {projects}
- hours: numerical value representing hours worked (can be decimal)
- description: what work was done, without the project name, hours or date

The input text is: "{text}"

Return ONLY a valid JSON object with the fields above, nothing else."""

_UK_SYSTEM_PROMPT = (
    "Ти помічник, який перетворює продиктовані записи робочого часу на структуровані дані."
)

_UK_USER_PROMPT = """Розбери продиктований запис робочого часу та поверни поля:
- date: у форматі YYYY-MM-DD. Сьогодні {today}. "сьогодні" означає {today}, "вчора" означає {yesterday}. Якщо дату не названо, використовуй сьогоднішню.
- project_name: має точно збігатися з однією з назв проєктів: {projects}
- hours: кількість годин числом (може бути дробовим)
- description: яку роботу виконано, без назви проєкту, годин і дати

Текст запису: "{text}"

Поверни ЛИШЕ валідний JSON-об'єкт з цими полями, без пояснень."""


LOCALES: dict[str, LocaleRules] = {
    "en-US": LocaleRules(
        tag="en-US",
        today_keywords=("today", "now", "this morning", "this afternoon", "tonight"),
        yesterday_keywords=("yesterday",),
        hour_units=("hours", "hour", "hrs", "hr", "h"),
        number_words={
            "one": 1,
            "two": 2,
            "three": 3,
            "four": 4,
            "five": 5,
            "six": 6,
            "seven": 7,
            "eight": 8,
            "nine": 9,
            "ten": 10,
            "eleven": 11,
            "twelve": 12,
        },
        filler_words=frozenset(
            {"i", "on", "for", "at", "in", "spent", "worked", "have", "had", "did", "was", "of", "and", "to", "the"}
        ),
        placeholder="Work on {project}",
        system_prompt=_EN_SYSTEM_PROMPT,
        user_prompt=_EN_USER_PROMPT,
    ),
    "uk-UA": LocaleRules(
        tag="uk-UA",
        today_keywords=("сьогодні", "зараз", "нині"),
        yesterday_keywords=("вчора", "учора"),
        hour_units=("години", "годину", "година", "годин", "год"),
        number_words={
            "одна": 1,
            "одну": 1,
            "один": 1,
            "дві": 2,
            "два": 2,
            "три": 3,
            "чотири": 4,
            "п'ять": 5,
            "пʼять": 5,
            "шість": 6,
            "сім": 7,
            "вісім": 8,
            "дев'ять": 9,
            "десять": 10,
        },
        day_first_separators=".",
        filler_words=frozenset(
            {"я", "на", "над", "для", "в", "у", "по", "з", "із", "і", "та", "провів", "провела", "працював", "працювала"}
        ),
        placeholder="Робота над {project}",
        system_prompt=_UK_SYSTEM_PROMPT,
        user_prompt=_UK_USER_PROMPT,
    ),
}

_PREFIXES = {tag.split("-")[0].lower(): tag for tag in LOCALES}


def normalize_locale(locale: str | None) -> str:
    """Map ``en``, ``EN-us``, ``uk`` and friends onto a supported locale tag."""
    value = (locale or DEFAULT_LOCALE).strip().replace("_", "-")
    for tag in LOCALES:
        if tag.lower() == value.lower():
            return tag
    prefix = value.split("-")[0].lower()
    if prefix in _PREFIXES:
        return _PREFIXES[prefix]
    raise ConfigError(f"Unsupported locale: {locale!r} (supported: {', '.join(LOCALES)})")


def get_rules(locale: str | None) -> LocaleRules:
    return LOCALES[normalize_locale(locale)]
