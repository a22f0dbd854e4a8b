"""Configuration loading from environment variables and rho.toml."""

from __future__ import annotations

import os
import sys
from dataclasses import dataclass, field

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib
from pathlib import Path

_DEFAULT_RHO_DIR = Path.home() / ".rho"
_DEFAULT_BRAIN_PATH = _DEFAULT_RHO_DIR / "brain" / "brain.jsonl"
_CONFIG_FILENAME = "rho.toml"


@dataclass
class BrainConfig:
    """Brain log location and engine tuning."""

    path: Path = _DEFAULT_BRAIN_PATH
    lock_timeout: float = 5.0
    prompt_budget_tokens: int = 2000
    decay_after_days: float = 90
    decay_min_score: float = 3


@dataclass
class SchedulerConfig:
    """Background maintenance configuration."""

    decay_cron: str = "0 4 * * *"
    interval: int = 300


@dataclass
class RhoConfig:
    """Top-level rho configuration."""

    brain: BrainConfig = field(default_factory=BrainConfig)
    scheduler: SchedulerConfig = field(default_factory=SchedulerConfig)
    rho_dir: Path = _DEFAULT_RHO_DIR
    pid_file: Path = _DEFAULT_RHO_DIR / "rho.pid"
    log_level: str = "INFO"


def load_config(config_path: Path | None = None) -> RhoConfig:
    """Load configuration from environment variables and optional rho.toml.

    Priority: environment variables > rho.toml > defaults.
    """
    file_data: dict = {}
    if config_path and config_path.exists():
        file_data = tomllib.loads(config_path.read_text())
    else:
        # Search current dir and ~/.rho/
        for candidate in [Path.cwd() / _CONFIG_FILENAME, _DEFAULT_RHO_DIR / _CONFIG_FILENAME]:
            if candidate.exists():
                file_data = tomllib.loads(candidate.read_text())
                break

    brain_data = file_data.get("brain", {})
    scheduler_data = file_data.get("scheduler", {})
    rho_dir = Path(file_data.get("rho_dir", str(_DEFAULT_RHO_DIR))).expanduser()

    config = RhoConfig(
        brain=BrainConfig(
            path=Path(
                os.getenv("RHO_BRAIN_PATH", brain_data.get("path", str(_DEFAULT_BRAIN_PATH)))
            ).expanduser(),
            lock_timeout=float(os.getenv("RHO_LOCK_TIMEOUT", brain_data.get("lock_timeout", 5.0))),
            prompt_budget_tokens=int(
                os.getenv("RHO_PROMPT_BUDGET", brain_data.get("prompt_budget_tokens", 2000))
            ),
            decay_after_days=float(
                os.getenv("RHO_DECAY_AFTER_DAYS", brain_data.get("decay_after_days", 90))
            ),
            decay_min_score=float(
                os.getenv("RHO_DECAY_MIN_SCORE", brain_data.get("decay_min_score", 3))
            ),
        ),
        scheduler=SchedulerConfig(
            decay_cron=scheduler_data.get("decay_cron", "0 4 * * *"),
            interval=int(os.getenv("RHO_DECAY_INTERVAL", scheduler_data.get("interval", 300))),
        ),
        rho_dir=rho_dir,
        pid_file=rho_dir / "rho.pid",
        log_level=os.getenv("RHO_LOG_LEVEL", file_data.get("log_level", "INFO")),
    )
    return config
