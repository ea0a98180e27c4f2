"""
Logging configuration for the API.

Every record, whether it comes from structlog or from a plain stdlib logger,
goes through one ProcessorFormatter. Values bound with
structlog.contextvars (request_id, client_id, cache_key, stage) are merged
into each record, so render logs can be followed per request and per stage.

Usage:
    # Request-scoped code:
    from render_api.middleware.logging_middleware import get_logger
    logger = get_logger(__name__)
    logger.info("Generating render")  # {"event": "Generating render", "request_id": "1a2b3c4d", "stage": ...}

    # Module-level code uses standard logging and still gets the bound context:
    import logging
    logger = logging.getLogger(__name__)
"""
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

import structlog

from render_api.core.config import Settings, settings as default_settings

NOISY_LOGGERS = ("uvicorn.access", "uvicorn.error", "aiohttp.access", "redis", "PIL")

# Applied to records before rendering, for structlog and stdlib records alike
PRE_CHAIN = [
    structlog.contextvars.merge_contextvars,
    structlog.stdlib.add_logger_name,
    structlog.stdlib.add_log_level,
    structlog.stdlib.PositionalArgumentsFormatter(),
    structlog.processors.TimeStamper(fmt="iso"),
]


def _renderer(log_format: str):
    if log_format == "json":
        return structlog.processors.JSONRenderer(ensure_ascii=False)
    return structlog.dev.ConsoleRenderer(colors=False, exception_formatter=structlog.dev.plain_traceback)


def build_formatter(log_format: str) -> structlog.stdlib.ProcessorFormatter:
    """Formatter that renders stdlib and structlog records the same way."""
    return structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=PRE_CHAIN,
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            _renderer(log_format),
        ],
    )


def setup_logging(settings: Optional[Settings] = None):
    """Configure structlog and route the stdlib root logger through it."""
    settings = settings or default_settings
    log_level = getattr(logging, settings.log_level.upper(), logging.INFO)

    structlog.configure(
        processors=[structlog.stdlib.filter_by_level, *PRE_CHAIN, structlog.stdlib.ProcessorFormatter.wrap_for_formatter],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    formatter = build_formatter(settings.log_format)
    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)

    if settings.environment == "production":
        log_dir = Path("logs")
        log_dir.mkdir(exist_ok=True)
        # Warnings only: upstream failures, skipped refinements, degraded cache/job writes
        warning_handler = RotatingFileHandler(log_dir / "render_api_warnings.log", maxBytes=10 * 1024 * 1024, backupCount=5)
        warning_handler.setLevel(logging.WARNING)
        warning_handler.setFormatter(build_formatter("json"))
        root_logger.addHandler(warning_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured: level={settings.log_level}, format={settings.log_format}, env={settings.environment}"
    )
