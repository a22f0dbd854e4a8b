"""``Brain``: the brain log plus the engines that read and write it.

Every call re-reads the log; there is no cached state to go stale when
another process appends.
"""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Any

# Module imports only: rho.bootstrap imports rho.brain in turn.
from rho.bootstrap import merge_policy, profile_pack
from rho.bootstrap import state as boot_state
from rho.brain import decay as decay_engine
from rho.brain import migration
from rho.brain.entries import Entry, entry_from_dict, utc_now
from rho.brain.fold import MaterializedBrain, fold
from rho.brain.lock import DEFAULT_TIMEOUT
from rho.brain.migration import MigrationPaths, MigrationStats
from rho.brain.prompt import DEFAULT_BUDGET_TOKENS, build_prompt
from rho.brain.store import BrainStore

logger = logging.getLogger(__name__)


class Brain:
    def __init__(
        self,
        path: Path,
        lock_timeout: float = DEFAULT_TIMEOUT,
        prompt_budget_tokens: int = DEFAULT_BUDGET_TOKENS,
        decay_after_days: float = decay_engine.DEFAULT_AFTER_DAYS,
        decay_min_score: float = decay_engine.DEFAULT_MIN_SCORE,
    ) -> None:
        self.store = BrainStore(path, lock_timeout=lock_timeout)
        self.prompt_budget_tokens = prompt_budget_tokens
        self.decay_after_days = decay_after_days
        self.decay_min_score = decay_min_score

    @classmethod
    def from_config(cls, config: Any) -> Brain:
        """Build from a ``BrainConfig``."""
        return cls(
            config.path,
            lock_timeout=config.lock_timeout,
            prompt_budget_tokens=config.prompt_budget_tokens,
            decay_after_days=config.decay_after_days,
            decay_min_score=config.decay_min_score,
        )

    @property
    def path(self) -> Path:
        return self.store.path

    # ── Log ───────────────────────────────────────────────────

    def append(self, entry: Entry | dict[str, Any]) -> Entry:
        if isinstance(entry, dict):
            entry = entry_from_dict(entry)
        self.store.append(entry)
        return entry

    def entries(self) -> list[Entry]:
        return self.store.entries()

    def materialize(self) -> MaterializedBrain:
        return fold(self.store.entries())

    def build_prompt(self, budget_tokens: int | None = None, now: datetime | None = None) -> str:
        budget = self.prompt_budget_tokens if budget_tokens is None else budget_tokens
        return build_prompt(self.materialize(), now or utc_now(), budget)

    # ── Bootstrap ─────────────────────────────────────────────

    def bootstrap_state(self) -> boot_state.BootstrapState:
        return boot_state.get_state(self.store.entries())

    def plan(
        self, pack: profile_pack.ProfilePack | str, version: str | None = None
    ) -> merge_policy.MergePlan:
        """Merge plan for ``pack`` (or a built-in pack id, latest if no version)."""
        if not isinstance(pack, profile_pack.ProfilePack):
            pack = profile_pack.get_profile_pack(pack, version)
        return merge_policy.plan(self.materialize(), pack)

    def apply(
        self, plan: merge_policy.MergePlan, now: datetime | None = None
    ) -> merge_policy.ApplyResult:
        return merge_policy.apply(plan, self.store, now or utc_now())

    def mark_completed(
        self, version: str, now: datetime | None = None
    ) -> boot_state.BootstrapState:
        entries = boot_state.mark_completed(self.store.entries(), version, now or utc_now())
        self.store.append_many(entries)
        return self.bootstrap_state()

    def reset_bootstrap(self, now: datetime | None = None) -> int:
        tombstones = boot_state.reset_entries(self.store.entries(), now or utc_now())
        return self.store.append_many(tombstones)

    # ── Maintenance ───────────────────────────────────────────

    def decay(
        self,
        now: datetime | None = None,
        after_days: float | None = None,
        min_score: float | None = None,
    ) -> int:
        """Tombstone stale learnings; returns how many were removed."""
        tombstones = decay_engine.decay(
            self.store.entries(),
            now or utc_now(),
            after_days=self.decay_after_days if after_days is None else after_days,
            min_score=self.decay_min_score if min_score is None else min_score,
        )
        count = self.store.append_many(tombstones)
        if count:
            logger.info("Decayed %d learnings in %s", count, self.path)
        return count

    def run_migration(
        self, paths: MigrationPaths | None = None, now: datetime | None = None
    ) -> MigrationStats:
        """Import legacy files; by default the ones next to this brain log."""
        paths = paths or MigrationPaths.under(self.path.parent)
        return migration.run(paths, store=self.store, now=now)
