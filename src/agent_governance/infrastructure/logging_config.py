"""structlog setup for the governance core."""

import logging
import sys
from typing import Any, TextIO

import structlog

from .config import LoggingConfig


def configure_logging(
    level: str = "INFO", json_logs: bool = True, stream: TextIO = sys.stderr
) -> None:
    """Configure structlog and the stdlib root logger.

    Hook commands talk to the agent over stdout, so logs default to stderr.

    Args:
        level: Log level name (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        json_logs: Render JSON lines instead of the console format
        stream: Destination stream
    """
    numeric_level = getattr(logging, level.upper())

    logging.basicConfig(
        level=numeric_level,
        stream=stream,
        format="%(message)s"
        if json_logs
        else "%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        force=True,
    )

    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
    ]
    if json_logs:
        processors.extend(
            [
                structlog.processors.TimeStamper(fmt="iso", utc=True),
                structlog.processors.format_exc_info,
                structlog.processors.JSONRenderer(),
            ]
        )
    else:
        processors.extend(
            [
                structlog.processors.TimeStamper(fmt="ISO"),
                structlog.dev.ConsoleRenderer(),
            ]
        )

    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(numeric_level),
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=True,
    )


def configure_stderr_logging(level: str = "WARNING", json_logs: bool = False) -> None:
    """Quiet console logging on stderr, for hook commands that answer on stdout."""
    configure_logging(level=level, json_logs=json_logs, stream=sys.stderr)


def configure_logging_from_config(config: LoggingConfig, stream: TextIO = sys.stderr) -> None:
    """Apply the ``logging`` section of a GovernanceConfig."""
    configure_logging(level=config.level, json_logs=config.json_logs, stream=stream)


def get_telemetry_logger() -> Any:
    """Logger used for per-hook telemetry records"""
    return structlog.get_logger("telemetry")
