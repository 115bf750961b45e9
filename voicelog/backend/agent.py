"""Voice entry flow for the dictation pipeline.

This module defines the high-level loop for one utterance:
    transcript -> parse -> budget check -> save.

Each step is reported as an ``AgentEvent`` so a CLI or UI can render progress
and errors. Only one transcript is processed at a time.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, field
from datetime import date as _date, datetime
from typing import Any

from .dates import month_window, today_for, week_window
from .errors import BudgetViolation
from .forms import ProjectLike, StoredEntry, Transcript, validate
from .io.voice import CaptureSession
from .limits import BudgetPolicy, check_candidate
from .locales import get_rules
from .orchestrator import ParseOrchestrator
from .store import EntryStore

logger = logging.getLogger(__name__)


@dataclass
class AgentEvent:
    """A simple event structure suitable for streaming to a UI."""

    type: str
    payload: dict[str, Any] = field(default_factory=dict)


@dataclass
class AgentState:
    """Holds what the agent saved during this session."""

    saved: list[StoredEntry] = field(default_factory=list)
    events: list[AgentEvent] = field(default_factory=list)


class VoiceEntryAgent:
    """Turns final transcripts into saved time entries."""

    def __init__(
        self,
        orchestrator: ParseOrchestrator,
        store: EntryStore,
        projects: Sequence[ProjectLike],
        policy: BudgetPolicy | None = None,
        *,
        clock: Callable[[], _date | datetime] | None = None,
        on_event: Callable[[AgentEvent], None] | None = None,
    ) -> None:
        self.orchestrator = orchestrator
        self.store = store
        self.projects = list(projects)
        self.policy = policy or BudgetPolicy()
        self.state = AgentState()
        self._clock = clock
        self._on_event = on_event
        self._processing = threading.Lock()

    @property
    def is_processing(self) -> bool:
        return self._processing.locked()

    def today(self) -> _date:
        return today_for(self._clock() if self._clock else None)

    def attach(self, session: CaptureSession) -> None:
        """Route the session's final transcripts into this agent."""
        session.on_transcript = self.handle_transcript

    def handle_transcript(self, transcript: Transcript) -> list[AgentEvent]:
        """Process one transcript end to end and return the emitted events."""
        if not self._processing.acquire(blocking=False):
            logger.info("transcript ignored: another one is still being processed")
            return self._publish([AgentEvent(type="busy", payload={"text": transcript.text})])
        try:
            return self._publish(self._process(transcript))
        finally:
            self._processing.release()

    def _process(self, transcript: Transcript) -> list[AgentEvent]:
        events: list[AgentEvent] = [
            AgentEvent(type="transcript", payload={"text": transcript.text, "locale": transcript.locale})
        ]
        now = self.today()

        result = self.orchestrator.parse(transcript.text, self.projects, transcript.locale, now)
        if not result.ok:
            failure = result.failure
            events.append(
                AgentEvent(
                    type="needs_revision",
                    payload={
                        "reason": failure.reason.value if failure else "unrecognizable-text",
                        "message": failure.detail if failure else "",
                    },
                )
            )
            return events

        candidate = result.entry
        payload: dict[str, Any] = {"entry": candidate.to_dict(), "source": result.source}
        if result.fallback_reason is not None:
            payload["fallback_reason"] = result.fallback_reason.reason.value
        events.append(AgentEvent(type="parsed", payload=payload))

        problems = validate(
            candidate,
            self.projects,
            today=now,
            lookback_days=get_rules(transcript.locale).lookback_days,
        )
        if problems:
            events.append(AgentEvent(type="needs_revision", payload={"reason": "invalid-entry", "problems": problems}))
            return events

        try:
            decision = check_candidate(candidate, self._snapshot(candidate.date), self.policy)
        except BudgetViolation as exc:
            events.append(
                AgentEvent(
                    type="rejected",
                    payload={"budget": exc.budget, "remaining": exc.remaining, "message": str(exc)},
                )
            )
            return events

        if decision.adjusted:
            events.append(
                AgentEvent(
                    type="budget_adjusted",
                    payload={
                        "requested": decision.requested_hours,
                        "accepted": decision.accepted_hours,
                        "message": decision.message,
                    },
                )
            )
        for warning in decision.warnings:
            events.append(AgentEvent(type="budget_warning", payload={"message": warning}))

        stored = self.store.save(decision.entry)
        self.state.saved.append(stored)
        events.append(AgentEvent(type="saved", payload={"entry": stored.to_dict()}))
        return events

    def _snapshot(self, day: _date) -> list[StoredEntry]:
        """Existing entries covering every window a budget may look at."""
        week_start, week_end = week_window(day)
        month_start, month_end = month_window(day)
        return self.store.query(min(week_start, month_start), max(week_end, month_end))

    def _publish(self, events: list[AgentEvent]) -> list[AgentEvent]:
        self.state.events.extend(events)
        if self._on_event is not None:
            for e in events:
                self._on_event(e)
        return events
