"""Non-destructive merge of a profile pack into the brain log.

Planning is pure: it compares the materialized brain against a pack and
classifies every semantic key. Applying turns the mutating actions into
appends, one locked append per action.

Per key, in order:

    no managed entry, its slot free                       ADD
    no managed entry, its slot held by another owner      SKIP_CONFLICT
    current content == pack content                       NOOP
    current content == provenance hash                    UPDATE
    otherwise (the user edited it)                        SKIP_USER_EDITED

Managed keys of the same pack that the pack no longer declares are
DEPRECATEd after the pack's own keys, sorted by semantic key.

A slot is (type, natural key). It is held by any active entry that no pack
manages or that a different pack manages, so two packs never write
competing entries for the same slot.
"""

from __future__ import annotations

import logging
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING

from rho.bootstrap import state as boot_state
from rho.brain.entries import (
    Entry,
    ManagedInfo,
    TombstoneEntry,
    content_hash,
    deterministic_id,
    iso,
    validate_entry,
)
from rho.brain.errors import BrainError, PartialApplyError, SchemaViolation
from rho.brain.fold import MaterializedBrain
from rho.brain.store import BrainStore

if TYPE_CHECKING:
    from rho.bootstrap.profile_pack import PackItem, ProfilePack

logger = logging.getLogger(__name__)


class MergeAction(str, Enum):
    ADD = "ADD"
    UPDATE = "UPDATE"
    NOOP = "NOOP"
    SKIP_USER_EDITED = "SKIP_USER_EDITED"
    SKIP_CONFLICT = "SKIP_CONFLICT"
    DEPRECATE = "DEPRECATE"


MUTATING_ACTIONS = frozenset({MergeAction.ADD, MergeAction.UPDATE, MergeAction.DEPRECATE})


@dataclass(frozen=True)
class PlannedAction:
    semantic_key: str
    action: MergeAction
    managed_id: str
    reason: str = ""
    current: Entry | None = None
    item: PackItem | None = None


@dataclass
class MergePlan:
    pack_id: str
    version: str
    actions: list[PlannedAction] = field(default_factory=list)

    @property
    def counts(self) -> dict[str, int]:
        counts = {action.value: 0 for action in MergeAction}
        for planned in self.actions:
            counts[planned.action.value] += 1
        return counts

    @property
    def mutating(self) -> list[PlannedAction]:
        return [a for a in self.actions if a.action in MUTATING_ACTIONS]

    def action_for(self, semantic_key: str) -> PlannedAction | None:
        for planned in self.actions:
            if planned.semantic_key == semantic_key:
                return planned
        return None


@dataclass
class ApplyResult:
    pack_id: str
    version: str
    committed: list[str] = field(default_factory=list)
    counts: dict[str, int] = field(default_factory=dict)


def managed_id_for(pack_id: str, semantic_key: str) -> str:
    return deterministic_id(pack_id, semantic_key)


def _slot_holders(materialized: MaterializedBrain) -> dict[tuple[str, str], list[Entry]]:
    """(type, natural key) -> active entries in that slot."""
    slots: dict[tuple[str, str], list[Entry]] = {}
    for entry in materialized.active():
        natural = entry.natural_key()
        if natural is not None:
            slots.setdefault((entry.TYPE, natural), []).append(entry)
    return slots


def _slot_conflict(holders: list[Entry], pack_id: str) -> Entry | None:
    for entry in holders:
        if entry.managed is None or entry.managed.pack != pack_id:
            return entry
    return None


def _conflict_reason(entry: Entry) -> str:
    if entry.managed is None:
        return f"user-authored {entry.TYPE} {entry.id} holds this slot"
    return f"{entry.TYPE} {entry.id} managed by pack {entry.managed.pack} holds this slot"


def _plan_item(
    materialized: MaterializedBrain,
    pack: ProfilePack,
    item: PackItem,
    slots: dict[tuple[str, str], list[Entry]],
) -> PlannedAction:
    managed_id = managed_id_for(pack.id, item.semantic_key)
    target = item.to_entry(managed_id, created="")
    target_hash = content_hash(target)

    current = materialized.get(managed_id)
    if current is None or current.managed is None or current.managed.pack != pack.id:
        conflict = current or _slot_conflict(
            slots.get((target.TYPE, target.natural_key() or ""), []), pack.id
        )
        if conflict is not None:
            return PlannedAction(
                item.semantic_key,
                MergeAction.SKIP_CONFLICT,
                managed_id,
                reason=_conflict_reason(conflict),
                current=conflict,
                item=item,
            )
        return PlannedAction(item.semantic_key, MergeAction.ADD, managed_id, item=item)

    current_hash = content_hash(current)
    if current_hash == target_hash:
        return PlannedAction(
            item.semantic_key, MergeAction.NOOP, managed_id, current=current, item=item
        )
    if current_hash == current.managed.hash:
        reason = "version-delta" if current.managed.version != pack.version else "reapply-delta"
        return PlannedAction(
            item.semantic_key, MergeAction.UPDATE, managed_id, reason, current=current, item=item
        )
    return PlannedAction(
        item.semantic_key,
        MergeAction.SKIP_USER_EDITED,
        managed_id,
        reason="managed-entry-modified-by-user",
        current=current,
        item=item,
    )


def plan(materialized: MaterializedBrain, pack: ProfilePack) -> MergePlan:
    """Classify every key of ``pack`` against ``materialized``. No I/O."""
    result = MergePlan(pack.id, pack.version)
    slots = _slot_holders(materialized)

    declared: set[str] = set()
    for item in pack.items:
        if item.semantic_key in declared:
            continue
        declared.add(item.semantic_key)
        result.actions.append(_plan_item(materialized, pack, item, slots))

    # Keys this pack used to manage but no longer declares.
    leftovers: dict[str, PlannedAction] = {}
    for entry in materialized.active():
        info = entry.managed
        if info is None or info.pack != pack.id or info.key in declared:
            continue
        leftovers[info.key] = PlannedAction(
            info.key,
            MergeAction.DEPRECATE,
            entry.id,
            reason="removed-in-target-version",
            current=entry,
        )
    for entry_id, entry in materialized.retired.items():
        info = entry.managed
        if info is None or info.pack != pack.id or info.key in declared:
            continue
        leftovers.setdefault(
            info.key,
            PlannedAction(info.key, MergeAction.NOOP, entry_id, reason="already-removed"),
        )
    result.actions.extend(leftovers[key] for key in sorted(leftovers))
    return result


def _carry_runtime_fields(entry: Entry, current: Entry | None) -> Entry:
    """Keep usage counters (reinforcements, reminder runs) across an UPDATE."""
    if current is None or type(current) is not type(entry):
        return entry
    carried = {
        f.name: getattr(current, f.name)
        for f in entry.value_fields()
        if entry.wire_name(f.name) in entry.RUNTIME_FIELDS
    }
    return entry.replace(**carried) if carried else entry


def _entry_for(planned: PlannedAction, merge_plan: MergePlan, stamp: str) -> Entry:
    if planned.action is MergeAction.DEPRECATE:
        return TombstoneEntry(
            id=deterministic_id("deprecate", f"{planned.managed_id}:{merge_plan.version}"),
            created=stamp,
            target=planned.managed_id,
            reason="deprecated",
        )
    if planned.item is None:
        raise ValueError(f"{planned.action.value} for {planned.semantic_key} has no pack item")
    entry = planned.item.to_entry(planned.managed_id, created=stamp)
    entry = _carry_runtime_fields(entry, planned.current)
    info = ManagedInfo(
        pack=merge_plan.pack_id,
        version=merge_plan.version,
        key=planned.semantic_key,
        hash=content_hash(entry),
    )
    return entry.replace(managed=info)


def apply(merge_plan: MergePlan, store: BrainStore, now: datetime) -> ApplyResult:
    """Append the plan's ADD/UPDATE/DEPRECATE actions in plan order.

    Every entry is built and validated before the first write. If an append
    fails partway, ``PartialApplyError`` reports which keys landed; running
    plan + apply again finishes the job.

    When anything was written, bootstrap meta is left at ``partial`` for the
    plan's version until ``state.mark_completed`` confirms it.
    """
    stamp = iso(now)
    mutating = merge_plan.mutating
    staged = [(planned, _entry_for(planned, merge_plan, stamp)) for planned in mutating]
    for planned, entry in staged:
        errors = validate_entry(entry)
        if errors:
            raise SchemaViolation([f"{planned.semantic_key}: {e}" for e in errors])

    result = ApplyResult(merge_plan.pack_id, merge_plan.version)
    applied: Counter[str] = Counter()
    for index, (planned, entry) in enumerate(staged):
        try:
            store.append(entry)
        except (BrainError, OSError) as exc:
            pending = [p.semantic_key for p, _ in staged[index:]]
            logger.error(
                "Apply of %s@%s stopped at %s: %s",
                merge_plan.pack_id,
                merge_plan.version,
                planned.semantic_key,
                exc,
            )
            raise PartialApplyError(result.committed, pending) from exc
        result.committed.append(planned.semantic_key)
        applied[planned.action.value] += 1

    if staged:
        try:
            store.append_many(boot_state.mark_applied(merge_plan.version, now))
        except (BrainError, OSError) as exc:
            logger.error("Recording %s as applied failed: %s", merge_plan.version, exc)
            raise PartialApplyError(result.committed, [boot_state.META_VERSION]) from exc

    result.counts = {action.value: applied.get(action.value, 0) for action in MUTATING_ACTIONS}
    logger.info(
        "Applied %s@%s: %d added, %d updated, %d deprecated",
        merge_plan.pack_id,
        merge_plan.version,
        applied["ADD"],
        applied["UPDATE"],
        applied["DEPRECATE"],
    )
    return result
