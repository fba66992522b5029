"""Structured logging setup using structlog."""

from __future__ import annotations

import logging
import sys
from pathlib import Path

import structlog

from src.core.config import get_settings

DECISION_LOGGER_NAME = "decision_log"

# Third-party loggers that are chatty at INFO (one line per HTTP request).
_QUIET_LOGGERS = ("httpx", "httpcore", "aiohttp.access")


def _formatter(renderer: structlog.types.Processor) -> structlog.stdlib.ProcessorFormatter:
    return structlog.stdlib.ProcessorFormatter(
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )


def _json_renderer() -> structlog.types.Processor:
    return structlog.processors.JSONRenderer(ensure_ascii=False)


def setup_logging(
    level: str | None = None,
    fmt: str | None = None,
    decision_log_path: str | Path | None = None,
) -> None:
    """Configure structlog with JSON or console renderer.

    Args:
        level: Log level override (e.g. "DEBUG"). Uses config if None.
        fmt: Renderer format override ("json" or "console"). Uses config if None.
        decision_log_path: File that additionally receives every
            ``decision_log`` record as one JSON line. Uses config if None;
            an empty value disables the file.
    """
    settings = get_settings()
    log_level = getattr(logging, (level or settings.logging.level).upper(), logging.INFO)
    log_format = fmt or settings.logging.format
    if decision_log_path is None:
        decision_log_path = settings.logging.decision_log_path

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
    ]

    if log_format == "json":
        renderer = _json_renderer()
    else:
        renderer = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            *shared_processors,
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(_formatter(renderer))

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.addHandler(handler)
    root_logger.setLevel(log_level)

    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(max(log_level, logging.WARNING))

    _setup_decision_log(decision_log_path)


def _setup_decision_log(path: str | Path) -> None:
    decision_logger = logging.getLogger(DECISION_LOGGER_NAME)
    for old in list(decision_logger.handlers):
        decision_logger.removeHandler(old)
        old.close()

    if not path:
        decision_logger.setLevel(logging.NOTSET)
        return

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    file_handler = logging.FileHandler(path, encoding="utf-8")
    file_handler.setFormatter(_formatter(_json_renderer()))
    decision_logger.addHandler(file_handler)
    # Alert decisions are kept even when the console level is raised.
    decision_logger.setLevel(logging.INFO)
