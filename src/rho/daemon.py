"""Daemon process: always-on brain maintenance.

Usage: python -m rho serve

Manages:
- Legacy import on startup (once; a marker in the log prevents re-runs)
- Scheduler (daily decay)
- PID file (prevent duplicate instances)
- Graceful shutdown (SIGTERM/SIGINT)
"""

from __future__ import annotations

import asyncio
import logging
import os
import signal
import sys

from rho.brain import Brain
from rho.brain.migration import MigrationPaths, detect
from rho.config import RhoConfig, load_config
from rho.scheduler.jobs import MaintenanceScheduler

logger = logging.getLogger(__name__)


class RhoDaemon:
    """Always-on daemon process."""

    def __init__(self, config: RhoConfig | None = None) -> None:
        self.config = config or load_config()
        self.brain = Brain.from_config(self.config.brain)
        self._shutdown_event = asyncio.Event()

    # ── PID file management ──────────────────────────────────

    def _write_pid(self) -> None:
        self.config.pid_file.parent.mkdir(parents=True, exist_ok=True)
        self.config.pid_file.write_text(str(os.getpid()))
        logger.info("PID file written: %s (pid=%d)", self.config.pid_file, os.getpid())

    def _remove_pid(self) -> None:
        if self.config.pid_file.exists():
            self.config.pid_file.unlink()

    def _check_existing(self) -> None:
        if not self.config.pid_file.exists():
            return
        try:
            pid = int(self.config.pid_file.read_text().strip())
            os.kill(pid, 0)  # Check if process exists
            print(f"rho daemon already running (pid={pid}). Exiting.", file=sys.stderr)
            sys.exit(1)
        except (ProcessLookupError, ValueError):
            # Stale PID file, remove it
            self._remove_pid()

    # ── Signal handling ──────────────────────────────────────

    def _setup_signals(self) -> None:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, self._handle_signal, sig)

    def _handle_signal(self, sig: signal.Signals) -> None:
        logger.info("Received %s, shutting down...", sig.name)
        self._shutdown_event.set()

    def request_shutdown(self) -> None:
        self._shutdown_event.set()

    # ── Startup jobs ─────────────────────────────────────────

    def _migrate_legacy(self) -> None:
        paths = MigrationPaths.under(self.brain.path.parent)
        status = detect(paths, self.brain.store)
        if not status.has_legacy or status.already_migrated:
            return
        logger.info("Found %d legacy brain files, migrating", len(status.legacy_files))
        self.brain.run_migration(paths)

    # ── Main run loop ────────────────────────────────────────

    async def run(self) -> None:
        self._check_existing()
        self._write_pid()
        self._setup_signals()

        scheduler = MaintenanceScheduler(self.brain, self.config)
        logger.info("rho daemon starting (brain=%s)", self.brain.path)

        try:
            await asyncio.to_thread(self._migrate_legacy)
            await scheduler.start(self._shutdown_event)
        except asyncio.CancelledError:
            pass
        finally:
            self._remove_pid()
            logger.info("rho daemon stopped.")
