"""Logging setup for the command line entry point.

Human-readable lines by default; one JSON object per line when
LOG_JSON is enabled so the output can be shipped to a log collector.
"""

from __future__ import annotations

import json
import logging
import time

_TEXT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# Third-party loggers capped at WARNING. httpx logs request URLs, which carry the bot token.
_NOISY_LOGGERS = ("websockets", "httpx", "httpcore", "aiosqlite", "asyncio")


class JsonFormatter(logging.Formatter):
    """JSONL formatter for structured logs."""

    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "level": record.levelname,
            "name": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload)


def setup_logging(level: int | str = logging.INFO, *, json_output: bool = False) -> None:
    """Configure root logging with optional JSONL output."""
    handler = logging.StreamHandler()
    handler.setFormatter(JsonFormatter() if json_output else logging.Formatter(_TEXT_FORMAT))
    if isinstance(level, str):
        level = level.upper()
    logging.basicConfig(level=level, handlers=[handler], force=True)

    for name in _NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
