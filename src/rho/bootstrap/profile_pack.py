"""Versioned default profile packs.

A pack is an ordered list of target entries, each under a semantic key such
as ``behavior.do.ask-before-risky-external-actions``. The merge engine maps a
semantic key to one log id with ``deterministic_id(pack.id, semantic_key)``,
so every version of a pack writes the same slot for the same key.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any

from rho.brain.entries import Entry, ManagedInfo, entry_from_dict

PERSONAL_ASSISTANT_ID = "personal-assistant"
PROFILE_SOURCE_PREFIX = "profile:"

_VERSION_NUMBER = re.compile(r"^[a-z]+-v(\d+)$")


class UnknownProfilePack(KeyError):
    """No built-in pack matches the requested id/version."""


@dataclass(frozen=True)
class PackItem:
    """One target entry: wire fields (without id/created) under a semantic key."""

    semantic_key: str
    type: str
    fields: dict[str, Any] = field(default_factory=dict)

    def to_entry(self, entry_id: str, created: str, managed: ManagedInfo | None = None) -> Entry:
        data = {**self.fields, "id": entry_id, "type": self.type, "created": created}
        entry = entry_from_dict(data)
        return entry.replace(managed=managed) if managed is not None else entry


@dataclass(frozen=True)
class ProfilePack:
    id: str
    version: str
    items: tuple[PackItem, ...] = ()

    @property
    def source(self) -> str:
        return f"{PROFILE_SOURCE_PREFIX}{self.id}"

    def semantic_keys(self) -> list[str]:
        return [item.semantic_key for item in self.items]


def _communication_style() -> PackItem:
    return PackItem(
        "preference.communication.style",
        "preference",
        {
            "category": "communication",
            "key": "communication.style",
            "value": "balanced",
            "text": "response style: balanced",
        },
    )


def _approval_gate() -> PackItem:
    return PackItem(
        "context.workflow.approvalGate",
        "context",
        {
            "project": "rho",
            "path": "bootstrap/workflow.approvalGate",
            "content": "workflow: propose -> approve -> implement",
        },
    )


_BUILTIN_PACKS: dict[str, list[ProfilePack]] = {
    PERSONAL_ASSISTANT_ID: [
        ProfilePack(
            PERSONAL_ASSISTANT_ID,
            "pa-v1",
            (
                _communication_style(),
                PackItem(
                    "behavior.do.ask-before-risky-external-actions",
                    "behavior",
                    {"category": "do", "text": "Ask before risky external actions"},
                ),
                _approval_gate(),
            ),
        ),
        ProfilePack(
            PERSONAL_ASSISTANT_ID,
            "pa-v2",
            (
                _communication_style(),
                PackItem(
                    "behavior.do.ask-before-risky-external-actions",
                    "behavior",
                    {
                        "category": "do",
                        "text": "Ask before risky external actions and confirm irreversible operations",
                    },
                ),
                _approval_gate(),
                PackItem(
                    "context.proactiveCadence",
                    "context",
                    {
                        "project": "rho",
                        "path": "bootstrap/proactiveCadence",
                        "content": "proactive cadence: standard",
                    },
                ),
            ),
        ),
    ],
}


def _version_number(version: str) -> int:
    m = _VERSION_NUMBER.match(version.strip())
    return int(m.group(1)) if m else -1


def list_profile_versions(profile_id: str) -> list[str]:
    packs = _BUILTIN_PACKS.get(profile_id, [])
    return sorted((p.version for p in packs), key=_version_number)


def get_latest_profile_version(profile_id: str) -> str | None:
    versions = list_profile_versions(profile_id)
    return versions[-1] if versions else None


def get_profile_pack(profile_id: str, version: str | None = None) -> ProfilePack:
    """Built-in pack by id; latest version when ``version`` is None."""
    version = version or get_latest_profile_version(profile_id)
    for pack in _BUILTIN_PACKS.get(profile_id, []):
        if pack.version == version:
            return pack
    raise UnknownProfilePack(f"Unknown profile pack: {profile_id}@{version}")
