"""Hour budgets: daily totals and weekly/monthly category ceilings.

The usage functions are pure and work on a snapshot of already accepted
entries. ``check_candidate`` applies them to a new entry in one of two modes:

- enforce: reduce the requested hours to what still fits (never below
  ``MIN_ENTRY_HOURS``), or raise ``BudgetViolation`` when not even that fits;
- advisory: keep the requested hours and report the overtime.
"""

from __future__ import annotations

import math
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field, replace
from datetime import date as _date
from enum import Enum

from .dates import window_for, working_days_in_month
from .errors import BudgetViolation
from .forms import CandidateEntry, TimeEntry

MIN_ENTRY_HOURS = 0.5
WORKING_DAYS_PER_WEEK = 5
_EPSILON = 1e-9

CategoryOf = Callable[[str], "str | None"]


class EnforcementMode(str, Enum):
    ENFORCE = "enforce"
    ADVISORY = "advisory"


@dataclass(frozen=True)
class DailyBudget:
    limit_hours: float


@dataclass(frozen=True)
class CategoryBudget:
    category_id: str
    limit_hours: float
    window_kind: str = "weekly"  # weekly | monthly
    # A monthly budget whose limit_hours is a weekly ceiling, scaled per month.
    derived_from_weekly: bool = False

    @property
    def label(self) -> str:
        return f"{self.window_kind.capitalize()} {self.category_id} limit"


@dataclass
class BudgetPolicy:
    daily: DailyBudget | None = None
    categories: list[CategoryBudget] = field(default_factory=list)
    mode: EnforcementMode = EnforcementMode.ENFORCE
    category_of: CategoryOf | None = None
    minimum_hours: float = MIN_ENTRY_HOURS


@dataclass(frozen=True)
class BudgetStatus:
    label: str
    used: float
    limit: float
    window: tuple[_date, _date]

    @property
    def remaining(self) -> float:
        return max(0.0, round(self.limit - self.used, 2))

    @property
    def overtime(self) -> bool:
        return is_overtime(self.used, self.limit)

    @property
    def overage(self) -> float:
        return max(0.0, round(self.used - self.limit, 2))


@dataclass
class BudgetDecision:
    entry: TimeEntry
    requested_hours: float
    statuses: list[BudgetStatus] = field(default_factory=list)
    message: str | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def accepted_hours(self) -> float:
        return self.entry.hours

    @property
    def adjusted(self) -> bool:
        return abs(self.accepted_hours - self.requested_hours) > _EPSILON


def daily_usage(entries: Iterable[CandidateEntry], day: _date) -> float:
    """Sum of hours for entries dated ``day``."""
    return round(math.fsum(e.hours for e in entries if e.date == day), 2)


def remaining_for_day(entries: Iterable[CandidateEntry], day: _date, daily_limit: float) -> float:
    return max(0.0, round(daily_limit - daily_usage(entries, day), 2))


def category_usage(
    entries: Iterable[CandidateEntry],
    category_of: CategoryOf,
    category: str,
    window_start: _date,
    window_end: _date,
) -> float:
    """Sum of hours in ``[window_start, window_end]`` for projects in ``category``."""
    return round(
        math.fsum(
            e.hours
            for e in entries
            if window_start <= e.date <= window_end and category_of(e.project_name) == category
        ),
        2,
    )


def is_overtime(usage: float, limit: float) -> bool:
    return usage > limit + _EPSILON


def monthly_limit_from_weekly(weekly_limit: float, day: _date) -> float:
    """Scale a weekly ceiling to the month containing ``day`` by its working days."""
    return round(weekly_limit * working_days_in_month(day) / WORKING_DAYS_PER_WEEK, 2)


def daily_status(entries: Sequence[CandidateEntry], day: _date, budget: DailyBudget) -> BudgetStatus:
    return BudgetStatus(
        label="Daily limit",
        used=daily_usage(entries, day),
        limit=budget.limit_hours,
        window=(day, day),
    )


def category_status(
    entries: Sequence[CandidateEntry],
    budget: CategoryBudget,
    category_of: CategoryOf,
    day: _date,
) -> BudgetStatus:
    start, end = window_for(budget.window_kind, day)
    limit = budget.limit_hours
    if budget.derived_from_weekly:
        limit = monthly_limit_from_weekly(limit, day)
    return BudgetStatus(
        label=budget.label,
        used=category_usage(entries, category_of, budget.category_id, start, end),
        limit=limit,
        window=(start, end),
    )


def applicable_statuses(
    candidate: CandidateEntry,
    entries: Sequence[CandidateEntry],
    policy: BudgetPolicy,
) -> list[BudgetStatus]:
    """Every budget that would count the candidate's hours."""
    statuses: list[BudgetStatus] = []
    if policy.daily is not None:
        statuses.append(daily_status(entries, candidate.date, policy.daily))
    if policy.category_of is not None:
        category = policy.category_of(candidate.project_name)
        for budget in policy.categories:
            if category is not None and budget.category_id == category:
                statuses.append(category_status(entries, budget, policy.category_of, candidate.date))
    return statuses


def check_candidate(
    candidate: CandidateEntry,
    entries: Sequence[CandidateEntry],
    policy: BudgetPolicy,
) -> BudgetDecision:
    """Validate a candidate against the policy and return the accepted entry.

    Raises ``BudgetViolation`` in enforce mode when the tightest budget has less
    than ``policy.minimum_hours`` left.
    """
    requested = candidate.hours
    statuses = applicable_statuses(candidate, entries, policy)
    exceeded = [s for s in statuses if is_overtime(s.used + requested, s.limit)]
    if not exceeded:
        return BudgetDecision(entry=TimeEntry.accept(candidate), requested_hours=requested, statuses=statuses)

    if policy.mode is EnforcementMode.ADVISORY:
        return BudgetDecision(
            entry=TimeEntry.accept(candidate),
            requested_hours=requested,
            statuses=statuses,
            warnings=[overtime_warning(s, requested) for s in exceeded],
        )

    binding = min(exceeded, key=lambda s: s.remaining)
    if binding.remaining + _EPSILON < policy.minimum_hours:
        raise BudgetViolation(binding.label, binding.remaining, policy.minimum_hours)
    accepted = max(policy.minimum_hours, binding.remaining)
    return BudgetDecision(
        entry=TimeEntry.accept(candidate, hours=accepted),
        requested_hours=requested,
        statuses=statuses,
        message=(
            f"{binding.label} enforced: {format_hours(binding.limit)}h. "
            f"Max allowed: {format_hours(accepted)}h (requested {format_hours(requested)}h)."
        ),
    )


def overtime_warning(status: BudgetStatus, added_hours: float) -> str:
    """Return e.g. "Daily limit exceeded: 9.5/8h (+1.5h overtime)"."""
    projected = replace(status, used=round(status.used + added_hours, 2))
    return (
        f"{projected.label} exceeded: {format_hours(projected.used)}/{format_hours(projected.limit)}h "
        f"(+{format_hours(projected.overage)}h overtime)"
    )


def format_hours(x: float) -> str:
    s = f"{x:.2f}"
    if s.endswith(".00"):
        return s[:-3]
    if s.endswith("0"):
        return s[:-1]
    return s
