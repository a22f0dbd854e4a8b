"""Brain entry model: one frozen dataclass per record kind.

Every line of ``brain.jsonl`` is one entry. Entries are never mutated: an
update is a new entry with the same ``id``, a delete is a ``tombstone``
naming the target ``id``. The set of kinds is closed (``ENTRY_TYPES``);
code that dispatches over kinds raises ``TypeError`` on anything else.

Deterministic ids
-----------------
``deterministic_id(namespace, key)`` is versioned (``DETERMINISTIC_ID_VERSION``).
Managed profile entries, bootstrap meta and upserting tool writes all rely on
it mapping the same slot to the same id across runs and machines. Changing
the algorithm is a breaking schema change: bump the version and migrate.
"""

from __future__ import annotations

import dataclasses
import hashlib
import json
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, ClassVar

from rho.brain.errors import SchemaViolation

DETERMINISTIC_ID_VERSION = 1
_ID_SEED = f"rho-id:v{DETERMINISTIC_ID_VERSION}"

ENTRY_TYPES = (
    "identity",
    "user",
    "behavior",
    "learning",
    "preference",
    "context",
    "task",
    "reminder",
    "tombstone",
    "meta",
)

BEHAVIOR_CATEGORIES = ("do", "dont", "value")
TASK_STATUSES = ("pending", "done")
PRIORITIES = ("low", "normal", "high", "urgent")
CADENCE_KINDS = ("interval", "daily")

_ISO_STRICT = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}(?:\.\d{1,6})?(?:Z|[+-]\d{2}:\d{2})$"
)
_INTERVAL = re.compile(r"^\d+[mhd]$")
_CLOCK = re.compile(r"^([01]\d|2[0-3]):[0-5]\d$")


def deterministic_id(namespace: str, key: str) -> str:
    """Stable 16-hex id for a (namespace, key) slot."""
    raw = f"{_ID_SEED}\0{namespace}\0{key}".encode("utf-8")
    return hashlib.sha256(raw).hexdigest()[:16]


def new_id() -> str:
    """Random 8-hex id for entries that have no natural slot."""
    return uuid.uuid4().hex[:8]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def iso(dt: datetime) -> str:
    """Machine timestamp: UTC, millisecond precision, ``Z`` suffix."""
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def parse_timestamp(value: Any) -> datetime | None:
    """Lenient ISO-8601 parse. Naive values are taken as UTC."""
    if not isinstance(value, str) or not value.strip():
        return None
    s = value.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"
    try:
        dt = datetime.fromisoformat(s)
    except ValueError:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


def is_iso_timestamp(value: Any) -> bool:
    """Strict check for machine-written timestamps (date, time and offset)."""
    return isinstance(value, str) and bool(_ISO_STRICT.match(value.strip())) and (
        parse_timestamp(value) is not None
    )


def normalize_text(text: Any) -> str:
    return text.strip().lower() if isinstance(text, str) else ""


def _is_blank(value: Any) -> bool:
    return not isinstance(value, str) or not value.strip()


# ── Provenance ────────────────────────────────────────────


@dataclass(frozen=True)
class ManagedInfo:
    """Provenance of an entry written by the merge engine.

    ``hash`` is the content hash of the value the engine itself wrote, kept
    apart from the entry's current value so later user edits show up as a
    mismatch.
    """

    pack: str
    version: str
    key: str
    hash: str

    def to_dict(self) -> dict[str, str]:
        return {"pack": self.pack, "version": self.version, "key": self.key, "hash": self.hash}

    @classmethod
    def from_dict(cls, data: Any) -> ManagedInfo:
        if not isinstance(data, dict):
            raise SchemaViolation(["managed must be an object"])
        return cls(
            pack=data.get("pack", ""),
            version=data.get("version", ""),
            key=data.get("key", ""),
            hash=data.get("hash", ""),
        )

    def errors(self) -> list[str]:
        return [
            f"managed.{name} must be a non-empty string"
            for name in ("pack", "version", "key", "hash")
            if _is_blank(getattr(self, name))
        ]


# ── Entry base ────────────────────────────────────────────

_BASE_FIELDS = frozenset({"id", "created", "managed", "extra"})
_RESERVED_WIRE = frozenset({"id", "type", "created", "managed"})


@dataclass(frozen=True, kw_only=True)
class Entry:
    """Common shape of every record. Subclasses set ``TYPE``."""

    TYPE: ClassVar[str] = ""
    # Attribute name -> on-disk name, where they differ.
    WIRE_NAMES: ClassVar[dict[str, str]] = {}
    # Wire fields that track usage rather than the entry's meaning.
    RUNTIME_FIELDS: ClassVar[frozenset[str]] = frozenset()

    id: str
    created: str
    managed: ManagedInfo | None = None
    extra: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def value_fields(cls) -> list[dataclasses.Field]:
        return [f for f in dataclasses.fields(cls) if f.name not in _BASE_FIELDS]

    @classmethod
    def wire_name(cls, attr: str) -> str:
        return cls.WIRE_NAMES.get(attr, attr)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Entry:
        values: dict[str, Any] = {}
        known = set(_RESERVED_WIRE)
        for f in cls.value_fields():
            wire = cls.wire_name(f.name)
            known.add(wire)
            if wire in data:
                values[f.name] = data[wire]
        managed = data.get("managed")
        return cls(
            id=data.get("id", ""),
            created=data.get("created", ""),
            managed=ManagedInfo.from_dict(managed) if managed is not None else None,
            extra={k: v for k, v in data.items() if k not in known},
            **values,
        )

    def payload(self) -> dict[str, Any]:
        """Type-specific fields, keyed by wire name."""
        return {self.wire_name(f.name): getattr(self, f.name) for f in self.value_fields()}

    def semantic_content(self) -> dict[str, Any]:
        """The semantic value of the entry: what a user edit can change."""
        return {k: v for k, v in self.payload().items() if k not in self.RUNTIME_FIELDS}

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"id": self.id, "type": self.TYPE, "created": self.created}
        out.update(self.payload())
        if self.managed is not None:
            out["managed"] = self.managed.to_dict()
        out.update(self.extra)
        return out

    def replace(self, **changes: Any) -> Entry:
        return dataclasses.replace(self, **changes)

    def natural_key(self) -> str | None:
        """Identity of the slot this entry occupies, independent of its id."""
        raise NotImplementedError

    def validate(self) -> list[str]:
        errors: list[str] = []
        if _is_blank(self.id):
            errors.append("id is required")
        if parse_timestamp(self.created) is None:
            errors.append("created must be an ISO-8601 timestamp")
        if self.managed is not None:
            errors.extend(self.managed.errors())
        errors.extend(self._validate())
        return [f"{self.TYPE}: {e}" for e in errors]

    def _validate(self) -> list[str]:
        raise NotImplementedError


def _keyed_errors(entry: IdentityEntry | UserEntry | MetaEntry) -> list[str]:
    errors = []
    if _is_blank(entry.key):
        errors.append("key is required")
    if entry.value is None:
        errors.append("value is required")
    return errors


def _optional_timestamp(name: str, value: Any) -> list[str]:
    if value is None or parse_timestamp(value) is not None:
        return []
    return [f"{name} must be an ISO-8601 timestamp or null"]


def _tags_errors(tags: Any) -> list[str]:
    if isinstance(tags, list) and all(isinstance(t, str) for t in tags):
        return []
    return ["tags must be a list of strings"]


# ── Entry kinds ───────────────────────────────────────────


@dataclass(frozen=True, kw_only=True)
class IdentityEntry(Entry):
    TYPE: ClassVar[str] = "identity"

    key: str = ""
    value: Any = None

    def natural_key(self) -> str | None:
        return self.key

    def _validate(self) -> list[str]:
        return _keyed_errors(self)


@dataclass(frozen=True, kw_only=True)
class UserEntry(Entry):
    TYPE: ClassVar[str] = "user"

    key: str = ""
    value: Any = None

    def natural_key(self) -> str | None:
        return self.key

    def _validate(self) -> list[str]:
        return _keyed_errors(self)


@dataclass(frozen=True, kw_only=True)
class BehaviorEntry(Entry):
    TYPE: ClassVar[str] = "behavior"

    category: str = ""
    text: str = ""

    def natural_key(self) -> str | None:
        return f"{self.category}:{normalize_text(self.text)}"

    def _validate(self) -> list[str]:
        errors = []
        if self.category not in BEHAVIOR_CATEGORIES:
            errors.append(f"category must be one of: {', '.join(BEHAVIOR_CATEGORIES)}")
        if _is_blank(self.text):
            errors.append("text is required")
        return errors


@dataclass(frozen=True, kw_only=True)
class LearningEntry(Entry):
    TYPE: ClassVar[str] = "learning"
    RUNTIME_FIELDS: ClassVar[frozenset[str]] = frozenset({"reinforced", "last_used"})

    text: str = ""
    category: str | None = None
    source: str = "auto"
    reinforced: int = 0
    last_used: str | None = None

    def natural_key(self) -> str | None:
        return normalize_text(self.text)

    def _validate(self) -> list[str]:
        errors = []
        if _is_blank(self.text):
            errors.append("text is required")
        if self.category is not None and not isinstance(self.category, str):
            errors.append("category must be a string")
        if not isinstance(self.source, str):
            errors.append("source must be a string")
        if (
            not isinstance(self.reinforced, int)
            or isinstance(self.reinforced, bool)
            or self.reinforced < 0
        ):
            errors.append("reinforced must be a non-negative integer")
        errors.extend(_optional_timestamp("last_used", self.last_used))
        return errors


@dataclass(frozen=True, kw_only=True)
class PreferenceEntry(Entry):
    TYPE: ClassVar[str] = "preference"

    category: str = "General"
    text: str = ""
    key: str | None = None
    value: Any = None

    def natural_key(self) -> str | None:
        if isinstance(self.key, str) and self.key.strip():
            return self.key.strip()
        return f"{self.category}:{normalize_text(self.text)}"

    def _validate(self) -> list[str]:
        errors = []
        if _is_blank(self.category):
            errors.append("category is required")
        if _is_blank(self.text):
            errors.append("text is required")
        if self.key is not None and not isinstance(self.key, str):
            errors.append("key must be a string")
        return errors


@dataclass(frozen=True, kw_only=True)
class ContextEntry(Entry):
    TYPE: ClassVar[str] = "context"

    project: str = ""
    path: str = ""
    content: str = ""

    def natural_key(self) -> str | None:
        return f"{self.project}:{self.path}"

    def _validate(self) -> list[str]:
        errors = []
        if _is_blank(self.project):
            errors.append("project is required")
        if _is_blank(self.path):
            errors.append("path is required")
        if not isinstance(self.content, str):
            errors.append("content must be a string")
        return errors


@dataclass(frozen=True, kw_only=True)
class TaskEntry(Entry):
    TYPE: ClassVar[str] = "task"
    WIRE_NAMES: ClassVar[dict[str, str]] = {"completed_at": "completedAt"}

    description: str = ""
    status: str = "pending"
    priority: str = "normal"
    tags: list[str] = field(default_factory=list)
    due: str | None = None
    completed_at: str | None = None

    def natural_key(self) -> str | None:
        return normalize_text(self.description)

    def _validate(self) -> list[str]:
        errors = []
        if _is_blank(self.description):
            errors.append("description is required")
        if self.status not in TASK_STATUSES:
            errors.append(f"status must be one of: {', '.join(TASK_STATUSES)}")
        if self.priority not in PRIORITIES:
            errors.append(f"priority must be one of: {', '.join(PRIORITIES)}")
        errors.extend(_tags_errors(self.tags))
        if self.due is not None and not isinstance(self.due, str):
            errors.append("due must be a string or null")
        errors.extend(_optional_timestamp("completedAt", self.completed_at))
        return errors


@dataclass(frozen=True, kw_only=True)
class ReminderEntry(Entry):
    TYPE: ClassVar[str] = "reminder"
    RUNTIME_FIELDS: ClassVar[frozenset[str]] = frozenset(
        {"last_run", "next_due", "last_result", "last_error"}
    )

    text: str = ""
    enabled: bool = True
    cadence: dict[str, Any] = field(default_factory=dict)
    priority: str = "normal"
    tags: list[str] = field(default_factory=list)
    last_run: str | None = None
    next_due: str | None = None
    last_result: str | None = None
    last_error: str | None = None

    def natural_key(self) -> str | None:
        return normalize_text(self.text)

    def _validate(self) -> list[str]:
        errors = []
        if _is_blank(self.text):
            errors.append("text is required")
        if not isinstance(self.enabled, bool):
            errors.append("enabled must be boolean")
        errors.extend(cadence_errors(self.cadence))
        if self.priority not in PRIORITIES:
            errors.append(f"priority must be one of: {', '.join(PRIORITIES)}")
        errors.extend(_tags_errors(self.tags))
        errors.extend(_optional_timestamp("last_run", self.last_run))
        errors.extend(_optional_timestamp("next_due", self.next_due))
        return errors


@dataclass(frozen=True, kw_only=True)
class TombstoneEntry(Entry):
    TYPE: ClassVar[str] = "tombstone"

    target: str = ""
    reason: str = "removed"

    def natural_key(self) -> str | None:
        return None

    def _validate(self) -> list[str]:
        errors = []
        if _is_blank(self.target):
            errors.append("target is required")
        if not isinstance(self.reason, str):
            errors.append("reason must be a string")
        return errors


@dataclass(frozen=True, kw_only=True)
class MetaEntry(Entry):
    TYPE: ClassVar[str] = "meta"

    key: str = ""
    value: Any = None

    def natural_key(self) -> str | None:
        return self.key

    def _validate(self) -> list[str]:
        return _keyed_errors(self)


ENTRY_CLASSES: dict[str, type[Entry]] = {
    cls.TYPE: cls
    for cls in (
        IdentityEntry,
        UserEntry,
        BehaviorEntry,
        LearningEntry,
        PreferenceEntry,
        ContextEntry,
        TaskEntry,
        ReminderEntry,
        TombstoneEntry,
        MetaEntry,
    )
}

if set(ENTRY_CLASSES) != set(ENTRY_TYPES):  # pragma: no cover
    raise TypeError(f"Entry registry out of sync: {sorted(set(ENTRY_TYPES) ^ set(ENTRY_CLASSES))}")


def cadence_errors(cadence: Any) -> list[str]:
    if not isinstance(cadence, dict):
        return ["cadence must be an object"]
    kind = cadence.get("kind")
    if kind == "interval":
        every = cadence.get("every")
        if not isinstance(every, str) or not _INTERVAL.match(every.strip()):
            return ["cadence.every must look like 30m, 2h or 1d"]
        return []
    if kind == "daily":
        at = cadence.get("at")
        if not isinstance(at, str) or not _CLOCK.match(at.strip()):
            return ["cadence.at must be HH:MM"]
        return []
    return [f"cadence.kind must be one of: {', '.join(CADENCE_KINDS)}"]


def entry_from_dict(data: Any) -> Entry:
    """Build the typed entry for a wire record. Does not validate values."""
    if not isinstance(data, dict):
        raise SchemaViolation(["entry must be a JSON object"])
    entry_type = data.get("type")
    cls = ENTRY_CLASSES.get(entry_type) if isinstance(entry_type, str) else None
    if cls is None:
        raise SchemaViolation([f"unknown entry type: {entry_type!r}"])
    return cls.from_dict(data)


def validate_entry(entry: Entry) -> list[str]:
    if not isinstance(entry, Entry) or type(entry) not in ENTRY_CLASSES.values():
        raise TypeError(f"Not a brain entry: {type(entry).__name__}")
    return entry.validate()


def canonical_json(value: Any) -> str:
    return json.dumps(value, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def content_hash(entry: Entry) -> str:
    """sha256 of the entry's type and semantic content."""
    body = canonical_json({"type": entry.TYPE, **entry.semantic_content()})
    return hashlib.sha256(body.encode("utf-8")).hexdigest()
