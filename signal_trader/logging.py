"""
Centralized structured logging configuration.
Import and call `setup_logging()` once at process startup (app.py or
scripts/run_trader.py); every module logs through `structlog.get_logger`.
"""

import logging

import structlog


def resolve_level(level: int | str) -> int:
    """Accept either a numeric level or a name such as ``"INFO"``."""
    if isinstance(level, int):
        return level
    resolved = logging.getLevelName(level.strip().upper())
    return resolved if isinstance(resolved, int) else logging.INFO


def setup_logging(level: int | str = 20, json_output: bool = False) -> None:
    """
    Configure structlog for the entire process.

    Args:
        level: Minimum log level (10=DEBUG, 20=INFO, 30=WARNING) or its name.
        json_output: If True, emit machine-readable JSON logs (for production).
                     If False, emit human-readable colored console logs.
    """
    shared_processors = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.dev.set_exc_info,
        structlog.processors.TimeStamper(fmt="iso"),
    ]

    if json_output:
        shared_processors.append(structlog.processors.format_exc_info)
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(structlog.dev.ConsoleRenderer(colors=True))

    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.make_filtering_bound_logger(resolve_level(level)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
    )
