"""Schemas and validation for dictated time entries.

Plain dataclasses plus small coercion/validation helpers. A ``CandidateEntry``
is what a parser produces; it becomes a ``TimeEntry`` only after the hour
budgets have been checked.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import asdict, dataclass
from datetime import date as _date, datetime, timedelta
from typing import Any, Union


@dataclass(frozen=True)
class Transcript:
    """Final speech-to-text output for one utterance."""

    text: str
    locale: str


@dataclass(frozen=True)
class KnownProject:
    name: str
    category: str | None = None


ProjectLike = Union[KnownProject, str]


def known_projects(projects: Iterable[ProjectLike]) -> list[KnownProject]:
    """Coerce project names or ``KnownProject`` values into a list of ``KnownProject``."""
    out: list[KnownProject] = []
    for p in projects or []:
        if isinstance(p, KnownProject):
            out.append(p)
        elif str(p).strip():
            out.append(KnownProject(name=str(p).strip()))
    return out


def find_project(projects: Sequence[ProjectLike], name: str | None) -> KnownProject | None:
    """Case-insensitive exact lookup."""
    target = (name or "").strip().casefold()
    if not target:
        return None
    for p in known_projects(projects):
        if p.name.strip().casefold() == target:
            return p
    return None


@dataclass(frozen=True)
class CandidateEntry:
    """A parsed, not yet budget-validated entry."""

    date: _date
    project_name: str
    hours: float
    description: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["date"] = self.date.isoformat()
        return data


@dataclass(frozen=True)
class TimeEntry(CandidateEntry):
    """An entry that passed the hour budget checks and can be persisted."""

    @classmethod
    def accept(cls, candidate: CandidateEntry, hours: float | None = None) -> TimeEntry:
        return cls(
            date=candidate.date,
            project_name=candidate.project_name,
            hours=candidate.hours if hours is None else hours,
            description=candidate.description,
        )


@dataclass(frozen=True)
class StoredEntry(TimeEntry):
    """A ``TimeEntry`` with the identity assigned by the persistence layer."""

    id: str = ""
    created_at: datetime | None = None

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["created_at"] = self.created_at.isoformat() if self.created_at else None
        return data


def validate(
    entry: CandidateEntry,
    projects: Sequence[ProjectLike] | None = None,
    *,
    today: _date | None = None,
    lookback_days: int | None = None,
) -> list[str]:
    """Return a list of human-readable issues; empty when the entry is valid."""
    issues: list[str] = []
    if today is not None:
        if entry.date > today:
            issues.append(f"Date {entry.date.isoformat()} is in the future.")
        elif lookback_days is not None and entry.date < today - timedelta(days=lookback_days):
            issues.append(
                f"Date {entry.date.isoformat()} is more than {lookback_days} days in the past."
            )
    if not entry.project_name.strip():
        issues.append("Project is required.")
    elif projects is not None:
        match = find_project(projects, entry.project_name)
        if match is None:
            issues.append(f"Unknown project: {entry.project_name}")
        elif match.name != entry.project_name:
            issues.append(f"Project must use its canonical name: {match.name}")
    if entry.hours <= 0:
        issues.append("Hours must be greater than zero.")
    return issues
