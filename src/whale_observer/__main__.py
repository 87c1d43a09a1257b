"""Command line entry point: `python -m whale_observer` / `whale-observer`."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import signal
import sys

from pydantic import ValidationError

from whale_observer import __version__
from whale_observer.config import ConfigurationError, Settings, get_settings
from whale_observer.logging_config import setup_logging
from whale_observer.pipeline import Pipeline

logger = logging.getLogger("whale_observer")

EXIT_OK = 0
EXIT_RUNTIME_ERROR = 1
EXIT_CONFIG_ERROR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="whale-observer",
        description="Watch a Uniswap V3 pool and alert on whale swaps",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command")

    run = sub.add_parser("run", help="Stream swaps and send whale alerts (default)")
    run.add_argument("--dry-run", action="store_true", help="Log alerts instead of sending them")

    sub.add_parser("check-config", help="Validate configuration and print a redacted summary")

    return parser


async def _run_pipeline(settings: Settings, *, dry_run: bool | None) -> None:
    pipeline = Pipeline(settings, dry_run=dry_run)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, pipeline.request_stop)
        except NotImplementedError:  # pragma: no cover - Windows
            pass

    await pipeline.run()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    command = args.command or "run"
    dry_run = True if getattr(args, "dry_run", False) else None

    try:
        settings = get_settings()
    except ValidationError as e:
        setup_logging()
        logger.error("Invalid configuration:\n%s", e)
        return EXIT_CONFIG_ERROR

    setup_logging(settings.log_level, json_output=settings.log_json)

    if command == "check-config":
        print(json.dumps(settings.redacted_summary(), indent=2))
        return EXIT_OK

    if dry_run:
        settings = settings.model_copy(update={"dry_run": True})
    try:
        settings.validate_requirements(command="run")
    except ConfigurationError as e:
        logger.error("Configuration error: %s", e)
        return EXIT_CONFIG_ERROR

    logger.info("whale-observer %s starting (dry_run=%s)", __version__, settings.dry_run)
    try:
        asyncio.run(_run_pipeline(settings, dry_run=dry_run))
    except KeyboardInterrupt:
        pass
    except Exception as e:
        logger.error("Fatal error: %s", e, exc_info=True)
        return EXIT_RUNTIME_ERROR
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
