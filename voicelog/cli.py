from __future__ import annotations

import asyncio
import logging
import os
from collections.abc import Callable, Iterable
from dataclasses import dataclass, field
from datetime import date as _date, datetime
from typing import Any

from agents import Agent, ModelSettings, RunContextWrapper, function_tool, run_demo_loop
from dotenv import load_dotenv

from .backend.agent import AgentEvent, VoiceEntryAgent
from .backend.config import (
    LanguageServiceSettings,
    WorkspaceConfig,
    load_from_env,
    load_language_service_settings,
)
from .backend.dates import parse_iso_date, resolve_date as resolve_utterance_date
from .backend.exporters.csv import render_entries_csv
from .backend.forms import Transcript
from .backend.limits import category_status, daily_status, format_hours
from .backend.locales import normalize_locale
from .backend.orchestrator import ParseOrchestrator
from .backend.store import InMemoryEntryStore

load_dotenv()

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = os.path.join(os.path.dirname(__file__), "workspace.example.json")


@dataclass
class VoiceLogContext:
    """Per-run context shared by the tools and the offline console."""

    config: WorkspaceConfig
    store: InMemoryEntryStore
    orchestrator: ParseOrchestrator
    flow: VoiceEntryAgent
    locale: str = ""
    events: list[AgentEvent] = field(default_factory=list)

    def __post_init__(self) -> None:
        self.locale = normalize_locale(self.locale or self.config.locale)


def build_context(
    config: WorkspaceConfig | None = None,
    settings: LanguageServiceSettings | None = None,
    *,
    store: InMemoryEntryStore | None = None,
    orchestrator: ParseOrchestrator | None = None,
    clock: Callable[[], _date | datetime] | None = None,
) -> VoiceLogContext:
    cfg = config or load_from_env(default_path=DEFAULT_CONFIG_PATH) or WorkspaceConfig()
    store = store or InMemoryEntryStore()
    if orchestrator is None:
        orchestrator = ParseOrchestrator.from_settings(
            settings or load_language_service_settings(), strict_projects=cfg.strict_projects
        )
    flow = VoiceEntryAgent(orchestrator, store, cfg.known_projects(), cfg.budget_policy(), clock=clock)
    return VoiceLogContext(config=cfg, store=store, orchestrator=orchestrator, flow=flow)


# --- Plain helpers behind the tools (also used by the offline console) ---


def project_listing(context: VoiceLogContext) -> dict[str, Any]:
    cfg = context.config
    if not cfg.projects:
        return {"status": "empty", "projects": []}
    return {
        "status": "ok",
        "workspace": cfg.name,
        "locale": context.locale,
        "projects": [{"name": p.name, "category": p.category} for p in cfg.projects],
        "limits": {
            "daily_hours": cfg.daily_limit_hours,
            "enforce": cfg.enforce_daily_limit,
            "weekly": dict(cfg.weekly_limits),
            "monthly": dict(cfg.monthly_limits),
        },
    }


def preview_entry(
    context: VoiceLogContext,
    text: str,
    locale: str | None = None,
    now: _date | datetime | None = None,
) -> dict[str, Any]:
    """Parse an utterance without saving it."""
    result = context.orchestrator.parse(
        text, context.config.known_projects(), locale or context.locale, now
    )
    if not result.ok:
        failure = result.failure
        return {
            "status": "error",
            "reason": failure.reason.value if failure else "unrecognizable-text",
            "message": failure.detail if failure else "",
        }
    out: dict[str, Any] = {"status": "ok", "source": result.source, "entry": result.entry.to_dict()}
    if result.fallback_reason is not None:
        out["fallback_reason"] = result.fallback_reason.reason.value
    return out


def submit_utterance(context: VoiceLogContext, text: str, locale: str | None = None) -> dict[str, Any]:
    """Run one utterance through parse, budget check and save."""
    events = context.flow.handle_transcript(Transcript(text=text, locale=locale or context.locale))
    context.events.extend(events)
    saved = any(e.type == "saved" for e in events)
    return {
        "status": "ok" if saved else "error",
        "events": [{"type": e.type, **e.payload} for e in events],
        "count": len(context.store),
    }


def summarize_hours(context: VoiceLogContext, day: _date | None = None) -> dict[str, Any]:
    """Used, limit and remaining hours for every budget covering ``day``."""
    day = day or context.flow.today()
    policy = context.config.budget_policy()
    entries = context.store.all()
    statuses = []
    if policy.daily is not None:
        statuses.append(daily_status(entries, day, policy.daily))
    if policy.category_of is not None:
        for budget in policy.categories:
            statuses.append(category_status(entries, budget, policy.category_of, day))
    return {
        "date": day.isoformat(),
        "mode": policy.mode.value,
        "budgets": [
            {
                "label": s.label,
                "used": s.used,
                "limit": s.limit,
                "remaining": s.remaining,
                "overtime": s.overtime,
                "overage": s.overage,
                "window": [s.window[0].isoformat(), s.window[1].isoformat()],
            }
            for s in statuses
        ],
    }


def export_entries(context: VoiceLogContext) -> str:
    """Render saved entries as CSV; also written to VOICELOG_SAVE_PATH when set."""
    csv_text = render_entries_csv(context.store.all())
    save_path = os.environ.get("VOICELOG_SAVE_PATH")
    if save_path:
        try:
            folder = os.path.dirname(save_path)
            if folder:
                os.makedirs(folder, exist_ok=True)
            with open(save_path, "w", encoding="utf-8") as f:
                f.write(csv_text)
        except OSError:
            logger.warning("could not write CSV to %s", save_path, exc_info=True)
    return csv_text


def describe_event(event: AgentEvent) -> str:
    """One console line per flow event."""
    p = event.payload
    if event.type == "transcript":
        return f"heard: {p.get('text', '')}"
    if event.type == "parsed":
        e = p["entry"]
        via = p.get("source", "")
        if p.get("fallback_reason"):
            via += f" (fallback: {p['fallback_reason']})"
        return f"parsed via {via}: {e['date']} {e['project_name']} {format_hours(e['hours'])}h {e['description']}"
    if event.type == "saved":
        e = p["entry"]
        return f"saved {e['id'][:8]}: {e['date']} {e['project_name']} {format_hours(e['hours'])}h"
    if event.type == "needs_revision":
        detail = p.get("message") or "; ".join(p.get("problems", []))
        return f"needs revision ({p.get('reason')}): {detail}"
    if event.type in ("budget_adjusted", "budget_warning", "rejected"):
        return f"{event.type.replace('_', ' ')}: {p.get('message', '')}"
    return f"{event.type}: {p}"


# --- Agent tools ---


@function_tool
def list_projects(ctx: RunContextWrapper[VoiceLogContext]) -> dict[str, Any]:
    """Return the configured projects (with categories) and the hour limits."""
    return project_listing(ctx.context)


@function_tool
def resolve_date(phrase: str, locale: str | None = None, base_date: str | None = None) -> str:
    """Resolve a dictated date to ISO YYYY-MM-DD.

    Args:
        phrase: Text containing "today", "yesterday" (or "сьогодні", "вчора") or a numeric date.
        locale: Optional locale tag (en-US or uk-UA). Defaults to VOICELOG_LOCALE or en-US.
        base_date: Optional YYYY-MM-DD used as "today" (tests/reproducibility).
    """
    base = parse_iso_date(base_date or os.environ.get("VOICELOG_BASE_DATE"))
    day = resolve_utterance_date(phrase, locale or os.environ.get("VOICELOG_LOCALE"), base)
    return day.isoformat()


@function_tool
def parse_utterance(
    ctx: RunContextWrapper[VoiceLogContext], text: str, locale: str | None = None
) -> dict[str, Any]:
    """Parse a dictated sentence into date, project_name, hours and description without saving.

    Args:
        text: The transcript exactly as dictated.
        locale: Optional locale tag (en-US or uk-UA).
    """
    return preview_entry(ctx.context, text, locale)


@function_tool
def submit_entry(
    ctx: RunContextWrapper[VoiceLogContext], text: str, locale: str | None = None
) -> dict[str, Any]:
    """Parse, check against hour limits and save one dictated entry.

    Args:
        text: The transcript exactly as dictated.
        locale: Optional locale tag (en-US or uk-UA).
    """
    return submit_utterance(ctx.context, text, locale)


@function_tool
def hours_summary(ctx: RunContextWrapper[VoiceLogContext], date: str | None = None) -> dict[str, Any]:
    """Show used and remaining hours for the daily, weekly and monthly limits.

    Args:
        date: Optional YYYY-MM-DD; defaults to today.
    """
    return summarize_hours(ctx.context, parse_iso_date(date))


@function_tool
def export_csv(ctx: RunContextWrapper[VoiceLogContext]) -> str:
    """Export saved entries as CSV with headers: id,date,project_name,hours,description."""
    return export_entries(ctx.context)


def build_agent(model_name: str) -> Agent[VoiceLogContext]:
    instructions = (
        "You are a time-tracking assistant that logs dictated work entries. "
        "Each entry needs a date, a project from the configured list, hours and a short description. "
        "Use list_projects to see the projects and hour limits. "
        "When the user dictates an entry, pass their sentence unchanged to submit_entry; do not rewrite it. "
        "If submit_entry reports needs_revision, explain the problem and ask the user to repeat the entry. "
        "If it reports budget_adjusted, rejected or budget_warning, relay the message verbatim. "
        "Use parse_utterance when the user only wants to check how a sentence would be understood, "
        "and resolve_date when they ask which date a phrase refers to; do not guess dates. "
        "Use hours_summary when asked how many hours are left. "
        "When the user indicates they are done, call export_csv and return only the CSV content as your final response. "
        "Be concise and answer in the language the user speaks."
    )

    return Agent[VoiceLogContext](
        name="VoiceLog Agent",
        instructions=instructions,
        tools=[list_projects, resolve_date, parse_utterance, submit_entry, hours_summary, export_csv],
        model=model_name,
        model_settings=ModelSettings(),
    )


def run_offline_loop(
    context: VoiceLogContext,
    lines: Iterable[str],
    write: Callable[[str], object] = print,
) -> None:
    """Console without an API key: each line is treated as a final transcript.

    ``/locale <tag>`` switches the dictation locale, ``/summary`` prints the
    budgets and ``done`` prints the CSV and ends the loop.
    """
    for raw in lines:
        line = raw.strip()
        if not line:
            continue
        if line.lower() in ("done", "exit", "quit"):
            write(export_entries(context))
            return
        if line.startswith("/locale"):
            _, _, tag = line.partition(" ")
            context.locale = normalize_locale(tag.strip() or None)
            write(f"locale: {context.locale}")
            continue
        if line == "/summary":
            for b in summarize_hours(context)["budgets"]:
                write(f"{b['label']}: {format_hours(b['used'])}/{format_hours(b['limit'])}h")
            continue
        for event in submit_utterance(context, line)["events"]:
            kind = event.pop("type")
            write(describe_event(AgentEvent(type=kind, payload=event)))


def _input_lines(prompt: str = "> ") -> Iterable[str]:
    while True:
        try:
            yield input(prompt)
        except EOFError:
            return


async def main() -> None:
    settings = load_language_service_settings()
    context = build_context(settings=settings)
    if not context.config.projects:
        print("Warning: no projects configured. Set VOICELOG_CONFIG_PATH to a workspace JSON file.")

    if not settings.enabled:
        print("OPENAI_API_KEY is not set; using the offline parser. Dictate entries or type 'done'.")
        run_offline_loop(context, _input_lines())
        return

    agent = build_agent(settings.model)
    print("VoiceLog Agent ready. Dictate entries or say 'done' when finished. Ctrl+C to exit.")
    await run_demo_loop(agent, stream=True, context=context)


def run() -> None:
    logging.basicConfig(
        level=os.environ.get("VOICELOG_LOG_LEVEL", "WARNING").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    asyncio.run(main())


if __name__ == "__main__":
    run()
