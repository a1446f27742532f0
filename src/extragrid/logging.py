"""Logging configuration.

Configures loguru: one JSON object per line in production, human-readable
coloured output otherwise. Both go to stderr so command output on stdout
stays machine-readable.
"""

import json
import logging
import sys
import traceback
from typing import Any

from loguru import logger


def _serialize(record: dict[str, Any]) -> str:
    """Serialize a loguru record to a flat JSON object."""
    entry: dict[str, Any] = {
        "time": record["time"].isoformat(),
        "level": record["level"].name,
        "logger": record["name"],
        "message": record["message"],
    }
    if record["level"].no >= logging.ERROR:
        entry["location"] = f"{record['file'].path}:{record['line']}:{record['function']}"

    exception = record["exception"]
    if exception is not None:
        entry["exception"] = {
            "type": exception.type.__name__ if exception.type else None,
            "value": str(exception.value) if exception.value else None,
            "traceback": "".join(
                traceback.format_exception(exception.type, exception.value, exception.traceback)
            )
            if exception.traceback
            else None,
        }

    for key, value in record.get("extra", {}).items():
        if not key.startswith("_"):
            entry[key] = value
    return json.dumps(entry, default=str, ensure_ascii=False)


def _json_sink(message: Any) -> None:
    sys.stderr.write(_serialize(message.record) + "\n")
    sys.stderr.flush()


def configure_logging(*, is_production: bool, log_level: str = "INFO") -> None:
    """Configure loguru for extragrid.

    Args:
        is_production: JSON lines if True, coloured text otherwise
        log_level: Minimum log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    """
    logger.remove()

    if is_production:
        logger.add(
            _json_sink,
            level=log_level,
            format="{message}",
            backtrace=False,
            diagnose=False,
        )
    else:
        logger.add(
            sys.stderr,
            level=log_level,
            format=(
                "<green>{time:HH:mm:ss}</green> | "
                "<level>{level: <8}</level> | "
                "<cyan>{name}</cyan>:<cyan>{line}</cyan> | "
                "<level>{message}</level>"
                "{exception}"
            ),
            colorize=True,
            backtrace=True,
            diagnose=False,
        )

    _intercept_standard_logging(log_level)


class InterceptHandler(logging.Handler):
    """Route standard library log records (httpx, httpcore) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level: str | int = logger.level(record.levelname).name
        except ValueError:
            level = record.levelno

        frame, depth = logging.currentframe(), 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(level, record.getMessage())


def _intercept_standard_logging(log_level: str) -> None:
    # loguru applies the level; the root logger passes everything through.
    logging.basicConfig(handlers=[InterceptHandler()], level=0, force=True)

    # httpx logs every request at INFO
    quiet = logging.DEBUG if log_level in ("TRACE", "DEBUG") else logging.WARNING
    for name in ("httpx", "httpcore"):
        library_logger = logging.getLogger(name)
        library_logger.handlers = [InterceptHandler()]
        library_logger.propagate = False
        library_logger.setLevel(quiet)
