"""Onboarding answers: validation and mapping to a profile pack.

Answers go through the same plan/apply merge as the built-in packs, under
the pack id ``onboarding``. Re-running onboarding with a changed answer
updates only that key, and keys the user has since edited are left alone.
"""

from __future__ import annotations

import re
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from rho.bootstrap.profile_pack import PackItem, ProfilePack

ONBOARDING_PACK_ID = "onboarding"
DEFAULT_ONBOARDING_VERSION = "onboarding-v1"

RESPONSE_STYLES = ("concise", "balanced", "detailed")
EXTERNAL_ACTION_POLICIES = ("always-ask", "ask-risky-only")
PROACTIVE_CADENCE_PRESETS = ("off", "light", "standard")

MAX_NAME_LENGTH = 80

_QUIET_HOURS = re.compile(r"^([01]\d|2[0-3]):[0-5]\d-([01]\d|2[0-3]):[0-5]\d$")


def _text(value: Any) -> str:
    return value.strip() if isinstance(value, str) else ""


def is_valid_timezone(name: str) -> bool:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        return False
    return True


def validate_onboarding_answers(answers: Any) -> list[str]:
    """All problems with ``answers``; an empty list means valid."""
    if not isinstance(answers, dict):
        return ["answers must be an object"]

    errors = []
    name = _text(answers.get("name"))
    timezone = _text(answers.get("timezone"))
    style = _text(answers.get("style"))
    policy = _text(answers.get("externalActionPolicy"))

    if not name:
        errors.append("name is required")
    elif len(name) > MAX_NAME_LENGTH:
        errors.append(f"name must be <= {MAX_NAME_LENGTH} characters")

    if not timezone:
        errors.append("timezone is required")
    elif not is_valid_timezone(timezone):
        errors.append(f"invalid timezone: {timezone}")

    if not style:
        errors.append("style is required")
    elif style not in RESPONSE_STYLES:
        errors.append(f"style must be one of: {', '.join(RESPONSE_STYLES)}")

    if not policy:
        errors.append("externalActionPolicy is required")
    elif policy not in EXTERNAL_ACTION_POLICIES:
        errors.append(
            f"externalActionPolicy must be one of: {', '.join(EXTERNAL_ACTION_POLICIES)}"
        )

    coding_first = answers.get("codingTaskFirst")
    if coding_first is not None and not isinstance(coding_first, bool):
        errors.append("codingTaskFirst must be boolean when provided")

    quiet = answers.get("quietHours")
    if quiet is not None and (not isinstance(quiet, str) or not _QUIET_HOURS.match(quiet.strip())):
        errors.append("quietHours must match HH:mm-HH:mm when provided")

    cadence = answers.get("proactiveCadence")
    if cadence is not None and cadence not in PROACTIVE_CADENCE_PRESETS:
        errors.append(
            f"proactiveCadence must be one of: {', '.join(PROACTIVE_CADENCE_PRESETS)}"
        )

    return errors


def _reminders(cadence: str) -> list[PackItem]:
    if cadence == "light":
        slots = [("daily-review", "Review today and propose top priorities.", "09:00")]
    elif cadence == "standard":
        slots = [
            ("morning", "Morning planning check.", "09:00"),
            ("afternoon", "Afternoon progress review.", "16:00"),
        ]
    else:
        return []
    return [
        PackItem(
            f"reminder.cadence.{slot}",
            "reminder",
            {"text": text, "cadence": {"kind": "daily", "at": at}},
        )
        for slot, text, at in slots
    ]


def onboarding_pack(answers: dict[str, Any], version: str = DEFAULT_ONBOARDING_VERSION) -> ProfilePack:
    """Map validated answers to the ``onboarding`` pack. Pure."""
    name = _text(answers.get("name"))
    timezone = _text(answers.get("timezone"))
    style = _text(answers.get("style")) or "balanced"
    policy = _text(answers.get("externalActionPolicy")) or "ask-risky-only"
    coding_first = answers.get("codingTaskFirst") is True
    quiet = _text(answers.get("quietHours"))
    cadence = _text(answers.get("proactiveCadence"))
    if cadence not in PROACTIVE_CADENCE_PRESETS:
        cadence = "off"

    items = [
        PackItem("user.name", "user", {"key": "name", "value": name}),
        PackItem("user.timezone", "user", {"key": "timezone", "value": timezone}),
        PackItem(
            "preference.communication.style",
            "preference",
            {
                "category": "communication",
                "text": f"response style: {style}",
                "key": "communication.style",
                "value": style,
            },
        ),
        PackItem(
            "preference.risk.externalActions",
            "preference",
            {
                "category": "risk",
                "text": f"external actions policy: {policy}",
                "key": "risk.externalActions",
                "value": policy,
            },
        ),
    ]
    if coding_first:
        items.append(
            PackItem(
                "preference.coding.taskFirst",
                "preference",
                {
                    "category": "coding",
                    "text": "coding policy: propose code tasks before implementation",
                    "key": "coding.taskFirst",
                    "value": True,
                },
            )
        )

    items.append(
        PackItem(
            "context.workflow.approvalGate",
            "context",
            {
                "project": "rho",
                "path": "bootstrap/workflow.approvalGate",
                "content": (
                    "workflow: propose -> approve -> implement"
                    if coding_first
                    else "workflow: direct implementation allowed"
                ),
            },
        )
    )
    if quiet:
        items.append(
            PackItem(
                "context.quietHours",
                "context",
                {"project": "rho", "path": "bootstrap/quietHours", "content": f"quiet hours: {quiet}"},
            )
        )
    items.append(
        PackItem(
            "context.proactiveCadence",
            "context",
            {
                "project": "rho",
                "path": "bootstrap/proactiveCadence",
                "content": f"proactive cadence: {cadence}",
            },
        )
    )

    items.append(
        PackItem(
            "behavior.do.be-direct",
            "behavior",
            {"category": "do", "text": "Be direct and useful; avoid filler."},
        )
    )
    items.append(
        PackItem(
            "behavior.do.external-actions",
            "behavior",
            {
                "category": "do",
                "text": (
                    "Ask before external actions."
                    if policy == "always-ask"
                    else "Ask before risky external actions."
                ),
            },
        )
    )
    items.extend(_reminders(cadence))

    return ProfilePack(ONBOARDING_PACK_ID, version, tuple(items))
