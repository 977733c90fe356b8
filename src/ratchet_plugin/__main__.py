"""Run the security self-audit and print the report as JSON.

    python -m ratchet_plugin [--config PATH]

Exits 0 when the audit ran, 1 if the plugin could not start.
"""

import argparse
import asyncio
import logging
import os
import sys

from .audit import AuditReport
from .config import SettingsLoader
from .context import plugin_lifespan
from .exceptions import RatchetError

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    valid_log_levels = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
    log_level_str = os.getenv("RATCHET_LOG_LEVEL", "INFO").upper()

    if log_level_str not in valid_log_levels:
        print(
            f"Warning: Invalid RATCHET_LOG_LEVEL '{log_level_str}'. "
            f"Valid levels: {', '.join(sorted(valid_log_levels))}. "
            "Using INFO.",
            file=sys.stderr,
        )
        log_level_str = "INFO"

    # stdout carries the report
    logging.basicConfig(
        level=getattr(logging, log_level_str),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )


async def run_audit(config_path: str | None = None) -> AuditReport:
    settings = SettingsLoader(config_path).load()
    async with plugin_lifespan(settings) as ctx:
        return await ctx.auditor.run_all()


def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="ratchet-plugin", description=__doc__.splitlines()[0])
    parser.add_argument("--config", help="Path to a YAML settings file")
    args = parser.parse_args(argv)

    configure_logging()

    try:
        report = asyncio.run(run_audit(args.config))
    except (RatchetError, ValueError) as e:
        logger.error(f"Security audit failed: {e}")
        sys.exit(1)

    print(report.model_dump_json(indent=2))


if __name__ == "__main__":
    main()
