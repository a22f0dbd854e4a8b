"""Learning ranking and token-budgeted prompt assembly.

Everything except learnings goes into the prompt in full. Learnings compete
for the token budget by score:

    score = 2 * reinforced
          + max(0, 30 - days_since_last_use) * 0.5
          + min(5, days_since_created / 30)

Days are fractional. ``last_used`` falls back to ``created`` when unset.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable
from datetime import datetime

from rho.brain.entries import LearningEntry, canonical_json, parse_timestamp
from rho.brain.fold import MaterializedBrain

logger = logging.getLogger(__name__)

DEFAULT_BUDGET_TOKENS = 2000

_SECONDS_PER_DAY = 86400.0


def _days_between(earlier: datetime | None, now: datetime) -> float:
    if earlier is None:
        return 0.0
    # Clock skew can put timestamps in the future; count that as zero days.
    return max(0.0, (now - earlier).total_seconds() / _SECONDS_PER_DAY)


def days_since_created(learning: LearningEntry, now: datetime) -> float:
    return _days_between(parse_timestamp(learning.created), now)


def days_since_last_use(learning: LearningEntry, now: datetime) -> float:
    last = parse_timestamp(learning.last_used) or parse_timestamp(learning.created)
    return _days_between(last, now)


def score_learning(learning: LearningEntry, now: datetime) -> float:
    recency = max(0.0, 30 - days_since_last_use(learning, now)) * 0.5
    age = min(5.0, days_since_created(learning, now) / 30)
    return 2 * learning.reinforced + recency + age


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text) / 4)


def select_learnings(
    learnings: Iterable[LearningEntry],
    now: datetime,
    budget_tokens: int,
) -> list[LearningEntry]:
    """Highest score first, earliest ``created`` on ties; greedy within budget."""
    ranked = sorted(
        learnings,
        key=lambda l: (-score_learning(l, now), parse_timestamp(l.created) or now),
    )
    selected: list[LearningEntry] = []
    used = 0
    for learning in ranked:
        cost = estimate_tokens(learning.text)
        if used + cost > budget_tokens:
            break
        selected.append(learning)
        used += cost
    return selected


# ── Rendering ─────────────────────────────────────────────


def _value(value: object) -> str:
    return value if isinstance(value, str) else canonical_json(value)


def _cadence(cadence: dict) -> str:
    if cadence.get("kind") == "interval":
        return f"every {cadence.get('every')}"
    if cadence.get("kind") == "daily":
        return f"daily at {cadence.get('at')}"
    return ""


def _fixed_sections(brain: MaterializedBrain) -> list[str]:
    sections: list[str] = []

    if brain.identity:
        lines = [f"- {k}: {_value(e.value)}" for k, e in sorted(brain.identity.items())]
        sections.append("## Identity\n" + "\n".join(lines))

    if brain.user:
        lines = [f"- {k}: {_value(e.value)}" for k, e in sorted(brain.user.items())]
        sections.append("## User\n" + "\n".join(lines))

    if brain.behaviors:
        parts = []
        for category, label in (("do", "Do"), ("dont", "Don't"), ("value", "Values")):
            items = [b.text for b in brain.behaviors if b.category == category]
            if items:
                parts.append(f"{label}:\n" + "\n".join(f"- {t}" for t in items))
        sections.append("## Behavior\n" + "\n".join(parts))

    if brain.preferences:
        by_category: dict[str, list[str]] = {}
        for p in brain.preferences:
            by_category.setdefault(p.category, []).append(p.text)
        parts = [
            f"### {category}\n" + "\n".join(f"- {t}" for t in texts)
            for category, texts in sorted(by_category.items())
        ]
        sections.append("## Preferences\n" + "\n".join(parts))

    if brain.contexts:
        lines = [f"- [{c.project}] {c.path}: {c.content}" for c in brain.contexts]
        sections.append("## Context\n" + "\n".join(lines))

    pending = [t for t in brain.tasks if t.status == "pending"]
    if pending:
        lines = []
        for t in pending:
            due = f" (due {t.due})" if t.due else ""
            lines.append(f"- [{t.priority}] {t.description}{due}")
        sections.append("## Tasks\n" + "\n".join(lines))

    enabled = [r for r in brain.reminders if r.enabled]
    if enabled:
        lines = [f"- {r.text} ({_cadence(r.cadence)})" for r in enabled]
        sections.append("## Reminders\n" + "\n".join(lines))

    return sections


def build_prompt(brain: MaterializedBrain, now: datetime, budget_tokens: int) -> str:
    """Render the brain as a prompt fragment. Learnings are capped by budget."""
    sections = _fixed_sections(brain)
    fixed_tokens = estimate_tokens("\n\n".join(sections))
    if fixed_tokens > budget_tokens:
        logger.warning(
            "Brain prompt without learnings is %d tokens (budget: %d)", fixed_tokens, budget_tokens
        )

    learnings = select_learnings(brain.learnings, now, budget_tokens)
    if learnings:
        sections.append("## Learnings\n" + "\n".join(f"- {l.text}" for l in learnings))
    if len(learnings) < len(brain.learnings):
        logger.debug("Prompt kept %d of %d learnings", len(learnings), len(brain.learnings))

    return "\n\n".join(sections)
