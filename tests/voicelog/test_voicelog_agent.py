from datetime import date, datetime, timezone
from unittest.mock import MagicMock

from voicelog.backend.agent import VoiceEntryAgent
from voicelog.backend.config import ProjectConfig, WorkspaceConfig
from voicelog.backend.forms import KnownProject, StoredEntry, Transcript
from voicelog.backend.io.voice import CaptureSession, SpeechResult
from voicelog.backend.limits import BudgetPolicy, CategoryBudget, DailyBudget, EnforcementMode
from voicelog.backend.orchestrator import ParseOrchestrator
from voicelog.backend.store import InMemoryEntryStore

NOW = date(2024, 6, 10)
PROJECTS = [KnownProject("Website", "commercial"), KnownProject("Mobile App", "commercial")]


def _stored(hours: float, day: date = NOW, project: str = "Website") -> StoredEntry:
    return StoredEntry(
        date=day,
        project_name=project,
        hours=hours,
        description="earlier work",
        id=f"seed-{hours}",
        created_at=datetime(2024, 6, 10, 8, tzinfo=timezone.utc),
    )


def _agent(store: InMemoryEntryStore, policy: BudgetPolicy | None = None, **kwargs) -> VoiceEntryAgent:
    policy = policy or BudgetPolicy(daily=DailyBudget(limit_hours=8))
    kwargs.setdefault("clock", lambda: NOW)
    return VoiceEntryAgent(ParseOrchestrator(), store, PROJECTS, policy, **kwargs)


def _types(events) -> list[str]:
    return [e.type for e in events]


def test_transcript_is_parsed_checked_and_saved():
    store = InMemoryEntryStore()
    agent = _agent(store)

    events = agent.handle_transcript(
        Transcript("3 hours on Website yesterday working on homepage", "en-US")
    )

    assert _types(events) == ["transcript", "parsed", "saved"]
    saved = events[-1].payload["entry"]
    assert saved["date"] == "2024-06-09"
    assert saved["project_name"] == "Website"
    assert saved["hours"] == 3
    assert saved["description"] == "working on homepage"
    assert saved["id"]
    assert len(store) == 1
    assert agent.state.saved[0].id == saved["id"]


def test_hours_are_capped_to_daily_remaining():
    store = InMemoryEntryStore([_stored(6)])
    agent = _agent(store)

    events = agent.handle_transcript(Transcript("today 3 hours on Mobile App testing", "en-US"))

    assert _types(events) == ["transcript", "parsed", "budget_adjusted", "saved"]
    assert events[2].payload["accepted"] == 2
    assert events[-1].payload["entry"]["hours"] == 2


def test_full_day_is_rejected_and_nothing_is_saved():
    store = InMemoryEntryStore([_stored(8)])
    agent = _agent(store)

    events = agent.handle_transcript(Transcript("today 1 hour on Website", "en-US"))

    assert _types(events) == ["transcript", "parsed", "rejected"]
    assert events[-1].payload["budget"] == "Daily limit"
    assert len(store) == 1


def test_advisory_policy_saves_with_warning():
    store = InMemoryEntryStore([_stored(7)])
    policy = BudgetPolicy(daily=DailyBudget(limit_hours=8), mode=EnforcementMode.ADVISORY)
    agent = _agent(store, policy)

    events = agent.handle_transcript(Transcript("today 2 hours on Website", "en-US"))

    assert _types(events) == ["transcript", "parsed", "budget_warning", "saved"]
    assert events[2].payload["message"] == "Daily limit exceeded: 9/8h (+1h overtime)"


def test_weekly_category_budget_sees_entries_from_earlier_days():
    store = InMemoryEntryStore([_stored(8, date(2024, 6, 3)), _stored(8, date(2024, 6, 4))])
    policy = BudgetPolicy(
        daily=DailyBudget(limit_hours=8),
        categories=[CategoryBudget("commercial", 10, "weekly")],
        category_of=lambda name: "commercial",
    )
    agent = _agent(store, policy, clock=lambda: date(2024, 6, 5))

    events = agent.handle_transcript(Transcript("today 4 hours on Website", "en-US"))

    assert _types(events) == ["transcript", "parsed", "rejected"]
    assert events[-1].payload["budget"] == "Weekly commercial limit"


def test_unparseable_transcript_needs_revision():
    store = InMemoryEntryStore()
    orchestrator = ParseOrchestrator(strict_projects=True)
    agent = VoiceEntryAgent(orchestrator, store, PROJECTS, clock=lambda: NOW)

    events = agent.handle_transcript(Transcript("2 hours of code review", "en-US"))

    assert _types(events) == ["transcript", "needs_revision"]
    assert events[-1].payload["reason"] == "unrecognizable-text"
    assert len(store) == 0


def test_busy_agent_ignores_overlapping_transcript():
    store = InMemoryEntryStore()
    agent = _agent(store)
    agent._processing.acquire()
    try:
        events = agent.handle_transcript(Transcript("today 1 hour on Website", "en-US"))
    finally:
        agent._processing.release()

    assert _types(events) == ["busy"]
    assert len(store) == 0
    assert not agent.is_processing


def test_events_are_published_to_listener():
    seen = MagicMock()
    agent = _agent(InMemoryEntryStore(), on_event=seen)

    agent.handle_transcript(Transcript("today 1 hour on Website", "en-US"))

    assert [c.args[0].type for c in seen.call_args_list] == ["transcript", "parsed", "saved"]
    assert _types(agent.state.events) == ["transcript", "parsed", "saved"]


def test_attached_capture_session_feeds_the_agent():
    devices = []

    def factory():
        device = MagicMock()
        devices.append(device)
        return device

    store = InMemoryEntryStore()
    agent = _agent(store)
    session = CaptureSession(factory, "uk-UA")
    agent.attach(session)

    session.start()
    devices[-1].on_result([SpeechResult("сьогодні 2 години Website верстка", is_final=True)])
    session.stop()
    devices[-1].on_end()

    assert len(store) == 1
    saved = store.all()[0]
    assert saved.hours == 2
    assert saved.description == "верстка"


def test_monthly_limit_derived_from_weekly_caps_the_entry():
    cfg = WorkspaceConfig(projects=[ProjectConfig("Hiring", "internal")], weekly_limits={"internal": 20})
    seeds = [_stored(18, date(2024, 6, 1), "Hiring")] + [
        _stored(5, date(2024, 6, day), "Hiring")
        for monday in (3, 10, 17)
        for day in range(monday, monday + 4)
    ]
    store = InMemoryEntryStore(seeds)
    agent = VoiceEntryAgent(
        ParseOrchestrator(), store, cfg.known_projects(), cfg.budget_policy(), clock=lambda: date(2024, 6, 25)
    )

    events = agent.handle_transcript(Transcript("today 4 hours on Hiring interviews", "en-US"))

    assert _types(events) == ["transcript", "parsed", "budget_adjusted", "saved"]
    assert events[2].payload["accepted"] == 2
    assert events[2].payload["message"] == "Monthly internal limit enforced: 80h. Max allowed: 2h (requested 4h)."
    assert events[-1].payload["entry"]["hours"] == 2
