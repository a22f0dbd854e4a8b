"""Agent-facing brain tool.

One tool, many actions, mirroring what the agent does with its memory:
add, update, remove, list, reinforce, decay, task_done, task_clear and
reminder_run. Every action returns a ``BrainActionResult`` rather than
raising on bad input, so the agent sees the reason in plain text.
"""

from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING, Any

from rho.brain.entries import (
    BehaviorEntry,
    ContextEntry,
    ENTRY_CLASSES,
    Entry,
    IdentityEntry,
    LearningEntry,
    MetaEntry,
    PreferenceEntry,
    ReminderEntry,
    TaskEntry,
    TombstoneEntry,
    UserEntry,
    canonical_json,
    deterministic_id,
    entry_from_dict,
    iso,
    new_id,
    normalize_text,
    utc_now,
    validate_entry,
)
from rho.brain.errors import SchemaViolation
from rho.brain.fold import KEYED_TYPES, MaterializedBrain

if TYPE_CHECKING:
    from rho.brain.brain import Brain

logger = logging.getLogger(__name__)

ADDABLE_TYPES = tuple(t for t in ENTRY_CLASSES if t != "tombstone")

_INTERVAL_UNITS = {"m": "minutes", "h": "hours", "d": "days"}
_INTERVAL = re.compile(r"^(\d+)([mhd])$")


@dataclass
class BrainActionResult:
    ok: bool
    message: str
    data: Any = None


def _fail(message: str) -> BrainActionResult:
    return BrainActionResult(False, message)


# ── Helpers ───────────────────────────────────────────────


def _wire_fields(cls: type[Entry]) -> set[str]:
    return {cls.wire_name(f.name) for f in cls.value_fields()}


def _pick_fields(cls: type[Entry], params: dict[str, Any]) -> dict[str, Any]:
    known = _wire_fields(cls)
    return {k: v for k, v in params.items() if k in known and v is not None}


def _upsert_id(entry_type: str, fields: dict[str, Any]) -> str:
    """Same slot, same id: keyed kinds and contexts overwrite in place."""
    if entry_type in KEYED_TYPES and isinstance(fields.get("key"), str):
        return deterministic_id(entry_type, fields["key"].strip())
    if entry_type == "context" and fields.get("project") and fields.get("path"):
        return deterministic_id("context", f"{fields['project']}:{fields['path']}")
    return new_id()


def next_due_after(cadence: dict[str, Any], now: datetime) -> datetime | None:
    """Next run time for a reminder cadence. Daily times are UTC."""
    kind = cadence.get("kind")
    if kind == "interval":
        m = _INTERVAL.match(str(cadence.get("every", "")).strip())
        if not m:
            return None
        return now + timedelta(**{_INTERVAL_UNITS[m.group(2)]: int(m.group(1))})
    if kind == "daily":
        try:
            hour, minute = (int(part) for part in str(cadence.get("at", "")).split(":"))
            candidate = now.astimezone(timezone.utc).replace(
                hour=hour, minute=minute, second=0, microsecond=0
            )
        except ValueError:
            return None
        if candidate <= now:
            candidate += timedelta(days=1)
        return candidate
    return None


def summarize(entry: Entry) -> str:
    """One-line human summary of an entry."""
    if isinstance(entry, (IdentityEntry, UserEntry, MetaEntry)):
        value = entry.value if isinstance(entry.value, str) else canonical_json(entry.value)
        return f"{entry.key} = {value}"
    if isinstance(entry, BehaviorEntry):
        return f"({entry.category}) {entry.text}"
    if isinstance(entry, LearningEntry):
        reinforced = f" (x{entry.reinforced})" if entry.reinforced else ""
        return f"{entry.text}{reinforced}"
    if isinstance(entry, PreferenceEntry):
        return f"[{entry.category}] {entry.text}"
    if isinstance(entry, ContextEntry):
        return f"{entry.project} {entry.path}: {entry.content}"
    if isinstance(entry, TaskEntry):
        due = f" due {entry.due}" if entry.due else ""
        return f"[{entry.status}/{entry.priority}] {entry.description}{due}"
    if isinstance(entry, ReminderEntry):
        state = "on" if entry.enabled else "off"
        return f"[{state}] {entry.text} {canonical_json(entry.cadence)}"
    if isinstance(entry, TombstoneEntry):
        return f"-> {entry.target} ({entry.reason})"
    raise TypeError(f"Unhandled entry kind: {type(entry).__name__}")


def _active(brain: Brain, entry_id: Any, kind: type[Entry] | None = None) -> Entry | None:
    if not isinstance(entry_id, str) or not entry_id:
        return None
    entry = brain.materialize().get(entry_id)
    if entry is None or (kind is not None and not isinstance(entry, kind)):
        return None
    return entry


def _write(brain: Brain, entry: Entry) -> BrainActionResult | None:
    errors = validate_entry(entry)
    if errors:
        return _fail(f"Invalid {entry.TYPE}: {'; '.join(errors)}")
    brain.append(entry)
    return None


# ── Actions ───────────────────────────────────────────────


def _add(brain: Brain, params: dict[str, Any], now: datetime) -> BrainActionResult:
    entry_type = params.get("type")
    if entry_type not in ADDABLE_TYPES:
        return _fail(f"Unknown entry type: {entry_type}. Valid types: {', '.join(ADDABLE_TYPES)}")
    cls = ENTRY_CLASSES[entry_type]
    fields = _pick_fields(cls, params)

    if entry_type == "learning":
        text = normalize_text(fields.get("text"))
        if text and any(normalize_text(l.text) == text for l in brain.materialize().learnings):
            return _fail(f"Duplicate learning, already stored: {fields['text']}")

    entry = entry_from_dict(
        {**fields, "id": _upsert_id(entry_type, fields), "type": entry_type, "created": iso(now)}
    )
    failure = _write(brain, entry)
    if failure:
        return failure
    return BrainActionResult(True, f"Added {entry_type} {entry.id}: {summarize(entry)}", entry.to_dict())


def _update(brain: Brain, params: dict[str, Any], now: datetime) -> BrainActionResult:
    entry_id = params.get("id")
    current = _active(brain, entry_id)
    if current is None:
        return _fail(f"No active entry with id {entry_id}")
    changes = _pick_fields(type(current), params)
    if not changes:
        return _fail(f"Nothing to update on {current.TYPE} {entry_id}")

    # created and managed carry over: a user edit must stay detectable.
    entry = entry_from_dict({**current.to_dict(), **changes})
    failure = _write(brain, entry)
    if failure:
        return failure
    return BrainActionResult(True, f"Updated {entry.TYPE} {entry.id}: {summarize(entry)}", entry.to_dict())


def _remove(brain: Brain, params: dict[str, Any], now: datetime) -> BrainActionResult:
    entry_id = params.get("id")
    if entry_id:
        target = _active(brain, entry_id)
        if target is None:
            return _fail(f"No active entry with id {entry_id}")
    else:
        entry_type, key = params.get("type"), params.get("key")
        if entry_type not in KEYED_TYPES or not isinstance(key, str):
            return _fail("remove needs an id, or a type (identity, user, meta) and a key")
        slots: dict[str, Entry] = getattr(brain.materialize(), entry_type)
        target = slots.get(key)
        if target is None:
            return _fail(f"No {entry_type} entry with key {key}")

    tombstone = TombstoneEntry(
        id=new_id(), created=iso(now), target=target.id, reason=params.get("reason") or "removed"
    )
    failure = _write(brain, tombstone)
    if failure:
        return failure
    return BrainActionResult(True, f"Removed {target.TYPE} {target.id}", {"target": target.id})


def _matches_filter(entry: Entry, flt: str) -> bool:
    if isinstance(entry, TaskEntry) and flt in ("pending", "done"):
        return entry.status == flt
    if isinstance(entry, ReminderEntry) and flt in ("enabled", "disabled"):
        return entry.enabled == (flt == "enabled")
    return False


def _list(brain: Brain, params: dict[str, Any], now: datetime) -> BrainActionResult:
    entry_type = params.get("type")
    if entry_type is not None and entry_type not in ADDABLE_TYPES:
        return _fail(f"Unknown entry type: {entry_type}. Valid types: {', '.join(ADDABLE_TYPES)}")
    flt = params.get("filter")
    if flt is not None and flt not in ("pending", "done", "enabled", "disabled"):
        return _fail(f"Unknown filter: {flt}. Valid filters: pending, done, enabled, disabled")
    query = normalize_text(params.get("query"))

    materialized: MaterializedBrain = brain.materialize()
    entries = [e for e in materialized.active() if entry_type is None or e.TYPE == entry_type]
    if flt is not None:
        entries = [e for e in entries if _matches_filter(e, flt)]
    if query:
        entries = [e for e in entries if query in summarize(e).lower()]

    if not entries:
        return BrainActionResult(True, "No entries found.", [])
    data = [e.to_dict() for e in entries]
    if params.get("verbose"):
        message = "\n".join(json.dumps(d, ensure_ascii=False, indent=2) for d in data)
    else:
        lines = [f"- [{e.TYPE}] {e.id}: {summarize(e)}" for e in entries]
        message = f"{len(entries)} entries:\n" + "\n".join(lines)
    return BrainActionResult(True, message, data)


def _reinforce(brain: Brain, params: dict[str, Any], now: datetime) -> BrainActionResult:
    current = _active(brain, params.get("id"), LearningEntry)
    if current is None:
        return _fail(f"No active learning with id {params.get('id')}")
    entry = current.replace(reinforced=current.reinforced + 1, last_used=iso(now))
    brain.append(entry)
    return BrainActionResult(True, f"Reinforced {entry.id} ({entry.reinforced})", entry.to_dict())


def _decay(brain: Brain, params: dict[str, Any], now: datetime) -> BrainActionResult:
    count = brain.decay(now, after_days=params.get("after_days"), min_score=params.get("min_score"))
    return BrainActionResult(True, f"Decayed {count} learnings", {"decayed": count})


def _task_done(brain: Brain, params: dict[str, Any], now: datetime) -> BrainActionResult:
    current = _active(brain, params.get("id"), TaskEntry)
    if current is None:
        return _fail(f"No active task with id {params.get('id')}")
    entry = current.replace(status="done", completed_at=iso(now))
    brain.append(entry)
    return BrainActionResult(True, f"Done: {entry.description}", entry.to_dict())


def _task_clear(brain: Brain, params: dict[str, Any], now: datetime) -> BrainActionResult:
    done = [t for t in brain.materialize().tasks if t.status == "done"]
    stamp = iso(now)
    tombstones = [
        TombstoneEntry(id=new_id(), created=stamp, target=t.id, reason="cleared") for t in done
    ]
    count = brain.store.append_many(tombstones)
    return BrainActionResult(True, f"Cleared {count} done tasks", {"cleared": count})


def _reminder_run(brain: Brain, params: dict[str, Any], now: datetime) -> BrainActionResult:
    current = _active(brain, params.get("id"), ReminderEntry)
    if current is None:
        return _fail(f"No active reminder with id {params.get('id')}")
    due = next_due_after(current.cadence, now)
    entry = current.replace(
        last_run=iso(now),
        last_result=params.get("result", "ok"),
        last_error=params.get("error"),
        next_due=iso(due) if due else None,
    )
    brain.append(entry)
    return BrainActionResult(
        True, f"Reminder {entry.id} ran; next due {entry.next_due}", entry.to_dict()
    )


_HANDLERS = {
    "add": _add,
    "update": _update,
    "remove": _remove,
    "list": _list,
    "reinforce": _reinforce,
    "decay": _decay,
    "task_done": _task_done,
    "task_clear": _task_clear,
    "reminder_run": _reminder_run,
}

ACTIONS = tuple(_HANDLERS)


def handle_brain_action(
    brain: Brain, params: dict[str, Any], now: datetime | None = None
) -> BrainActionResult:
    """Dispatch one tool call. Invalid input comes back as ``ok=False``."""
    action = params.get("action")
    handler = _HANDLERS.get(action)
    if handler is None:
        return _fail(f"Unknown action: {action}. Valid actions: {', '.join(ACTIONS)}")
    try:
        return handler(brain, params, now or utc_now())
    except SchemaViolation as exc:
        return _fail(f"Invalid entry: {exc}")


def get_brain_tools(brain: Brain) -> dict[str, callable]:
    """Return a dict of tool_name -> callable for brain operations.

    These can be registered as MCP tools or called directly.
    """

    def brain_action(action: str, **params: Any) -> str:
        """Run one brain action (add, update, remove, list, ...)."""
        result = handle_brain_action(brain, {"action": action, **params})
        if not result.ok:
            logger.info("brain %s rejected: %s", action, result.message)
        return result.message

    def brain_prompt(budget_tokens: int | None = None) -> str:
        """Render the brain as the prompt fragment the agent starts with."""
        return brain.build_prompt(budget_tokens) or "(empty brain)"

    def bootstrap_status() -> str:
        """Report bootstrap status: not_started, partial or completed."""
        state = brain.bootstrap_state()
        if state.version:
            return f"{state.status} (version {state.version})"
        return state.status

    return {
        "brain": brain_action,
        "brain_prompt": brain_prompt,
        "bootstrap_status": bootstrap_status,
    }
