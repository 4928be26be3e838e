"""Structured logging for the mail triage pipeline.

Level and output format come from the `logging` section of config.yaml; the
CLI's --debug flag overrides the level. Logs go to stdout through the stdlib
root logger, rendered by structlog either as console lines or as one JSON
object per line.

Everything logged inside `run_context()` carries the pipeline_run_id and the
run fields bound with it, so the lines of one pipeline run can be pulled out
of a shared log.

Usage:
    from mailtriage.core.logging import configure_logging, get_logger, run_context

    configure_logging(config.logging)
    logger = get_logger(__name__)

    with run_context(run_id, fetch_source="backend"):
        logger.info("email_routed", key="2024.01.05_clerk_court_gov_uk_10:00")
"""

from __future__ import annotations

import logging
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

import structlog

if TYPE_CHECKING:
    from mailtriage.config_schema import LoggingConfig

RUN_ID_FIELD = "pipeline_run_id"


def _renderer(output_format: str) -> list[structlog.types.Processor]:
    if output_format == "json":
        return [structlog.processors.format_exc_info, structlog.processors.JSONRenderer()]
    return [structlog.dev.ConsoleRenderer(colors=sys.stdout.isatty())]


def configure_logging(config: LoggingConfig | None = None, debug: bool = False) -> None:
    """Configure structlog and the stdlib root logger.

    Safe to call more than once: the CLI configures defaults before the
    config file is read, then again with the loaded `logging` section.

    Args:
        config: Logging section of the app config (defaults when None)
        debug: Force DEBUG level regardless of config
    """
    level_name = "DEBUG" if debug else (config.level if config else "INFO")
    output_format = config.format if config else "console"
    quiet = config.quiet_loggers if config else ["aiosqlite", "urllib3"]

    # basicConfig only installs a handler the first time; the level is reset every call
    logging.basicConfig(format="%(message)s", stream=sys.stdout)
    logging.getLogger().setLevel(getattr(logging, level_name))
    for name in quiet:
        logging.getLogger(name).setLevel(max(logging.WARNING, getattr(logging, level_name)))

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.UnicodeDecoder(),
            *_renderer(output_format),
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        cache_logger_on_first_use=False,
    )


@contextmanager
def run_context(run_id: str, **fields: Any) -> Iterator[None]:
    """Bind the run id and extra run fields to every log line in the block.

    Bindings made here are removed on exit, including on error, so a later
    run in the same process starts clean.
    """
    tokens = structlog.contextvars.bind_contextvars(**{RUN_ID_FIELD: run_id}, **fields)
    try:
        yield
    finally:
        structlog.contextvars.reset_contextvars(**tokens)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    """Get a structured logger instance.

    Args:
        name: Logger name (typically __name__ of the calling module)
    """
    return structlog.get_logger(name)
