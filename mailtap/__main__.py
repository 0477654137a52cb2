"""Entry point for the mail poller.

Usage::

    python -m mailtap                 # configuration from environment only
    python -m mailtap config.yaml     # YAML file, environment as fallback
"""

from __future__ import annotations

import asyncio
import sys
from pathlib import Path

import structlog
from pydantic import ValidationError

from .config import load_config
from .logging import setup_logging
from .supervisor import AccountSupervisor

logger = structlog.get_logger()


def main() -> None:
    if len(sys.argv) > 2:
        print("Usage: python -m mailtap [config.yaml]", file=sys.stderr)
        sys.exit(1)

    setup_logging()
    path = Path(sys.argv[1]) if len(sys.argv) == 2 else None
    try:
        config = load_config(path)
    except (FileNotFoundError, ValueError, ValidationError) as exc:
        logger.error("config_invalid", path=str(path) if path else None, error=str(exc))
        sys.exit(1)

    setup_logging(json=config.log.json_output, level=config.log.level)
    supervisor = AccountSupervisor(config)
    asyncio.run(supervisor.run())


if __name__ == "__main__":
    main()
