"""
structlog configuration for the API process and the background worker.

JSON lines by default; a readable console renderer when running with
debug enabled locally.
"""

import logging
import sys

import structlog

NOISY_LOGGERS = ("httpx", "httpcore", "openai", "psycopg.pool", "uvicorn.access")


def setup_logging(log_level: str = "INFO", json_output: bool = True) -> None:
    """Route structlog through stdlib logging at the given level."""
    renderer = structlog.processors.JSONRenderer() if json_output else structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.stdlib.add_log_level,
            structlog.stdlib.add_logger_name,
            structlog.processors.TimeStamper(fmt="iso", utc=True),
            structlog.processors.format_exc_info,
            renderer,
        ],
        wrapper_class=structlog.stdlib.BoundLogger,
        logger_factory=structlog.stdlib.LoggerFactory(),
        context_class=dict,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(format="%(message)s", stream=sys.stdout, level=log_level.upper())
    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def get_logger(name: str | None = None) -> structlog.stdlib.BoundLogger:
    return structlog.get_logger(name)


def log_request(method: str, path: str, status_code: int, duration_ms: float) -> None:
    """One line per HTTP request; 4xx/5xx at warning level."""
    level = "warning" if status_code >= 400 else "info"
    getattr(get_logger("dealboard.http"), level)(
        "HTTP request",
        method=method,
        path=path,
        status_code=status_code,
        duration_ms=duration_ms,
    )
