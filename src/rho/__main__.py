"""Entry point: python -m rho [prompt|serve]

- No args / "prompt": Print the brain prompt fragment to stdout
- "serve":            Daemon mode (legacy import + scheduled decay)
"""

from __future__ import annotations

import asyncio
import logging
import sys

from rho.config import load_config


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def _run_prompt() -> None:
    """Render the brain for injection into an agent's system prompt."""
    config = load_config()
    _setup_logging(config.log_level)

    from rho.brain import Brain

    brain = Brain.from_config(config.brain)
    print(brain.build_prompt())


def _run_serve() -> None:
    """Daemon mode: legacy import, then the maintenance scheduler."""
    config = load_config()
    _setup_logging(config.log_level)

    from rho.daemon import RhoDaemon

    daemon = RhoDaemon(config)
    asyncio.run(daemon.run())


def main() -> None:
    cmd = sys.argv[1] if len(sys.argv) > 1 else "prompt"

    if cmd == "prompt":
        _run_prompt()
    elif cmd == "serve":
        _run_serve()
    else:
        print("Usage: python -m rho [prompt|serve]")
        print("  prompt  Print the brain prompt fragment (default)")
        print("  serve   Daemon mode with scheduled maintenance")
        sys.exit(1)


if __name__ == "__main__":
    main()
