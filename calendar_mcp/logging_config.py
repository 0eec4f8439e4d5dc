"""
Structured logging configuration using structlog wrapping stdlib.

Modules log through logging.getLogger(__name__); those records are rendered
by the same structlog processor chain as structlog loggers. Console output
is human-readable by default and JSON with CALENDAR_MCP_LOG_FORMAT=json.

Usage:
    from calendar_mcp.logging_config import setup_logging
    setup_logging(log_file=get_log_directory() / "calendar-mcp.log")
"""

from __future__ import annotations

import logging
import os
import sys
from pathlib import Path

import structlog


def setup_logging(
    level: str | None = None,
    json_output: bool | None = None,
    log_file: Path | str | None = None,
) -> None:
    if level is None:
        level = os.environ.get("CALENDAR_MCP_LOG_LEVEL", "INFO")

    if json_output is None:
        json_output = os.environ.get("CALENDAR_MCP_LOG_FORMAT", "").lower() == "json"

    numeric_level = getattr(logging, level.upper(), logging.INFO)

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.UnicodeDecoder(),
    ]

    if json_output:
        renderer: structlog.types.Processor = structlog.processors.JSONRenderer()
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

    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=shared_processors,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            renderer,
        ],
    )

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(formatter)

    root = logging.getLogger()
    root.handlers.clear()
    root.addHandler(handler)
    root.setLevel(numeric_level)

    if log_file is not None:
        # Files always get JSON
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_path, encoding="utf-8")
        file_handler.setFormatter(
            structlog.stdlib.ProcessorFormatter(
                foreign_pre_chain=shared_processors,
                processors=[
                    structlog.stdlib.ProcessorFormatter.remove_processors_meta,
                    structlog.processors.JSONRenderer(),
                ],
            )
        )
        root.addHandler(file_handler)

    # MSAL and aiohttp are chatty at DEBUG and may echo request details
    for noisy in ("msal", "aiohttp.access"):
        logging.getLogger(noisy).setLevel(max(numeric_level, logging.WARNING))


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


__all__ = ["get_logger", "setup_logging"]
