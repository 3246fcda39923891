"""Observability helpers: structured logging and CloudWatch Embedded Metrics.

Import `init_observability` and call it once before the FastAPI app is created.
"""
from __future__ import annotations

import logging
import os

from aws_embedded_metrics import metric_scope
from aws_embedded_metrics.config import get_config
import structlog

__all__ = [
    "init_observability",
    "metric_scope",  # re-export for convenience
    "METRICS_NAMESPACE",
]

METRICS_NAMESPACE = "TalentHub"


def _setup_logging() -> None:
    """Configure structlog for structured logging (JSON or console)."""

    log_format = os.getenv("LOG_FORMAT", "json").lower()
    log_level = os.getenv("LOG_LEVEL", "INFO").upper()

    shared_processors: list[structlog.types.Processor] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.UnicodeDecoder(),
    ]

    if log_format == "json":
        final_processor = structlog.processors.JSONRenderer()
    else:
        final_processor = structlog.dev.ConsoleRenderer()

    structlog.configure(
        processors=shared_processors + [final_processor],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    root_logger = logging.getLogger()
    if not root_logger.handlers:
        # No formatter needed here, structlog handles it via processors
        root_logger.addHandler(logging.StreamHandler())
    root_logger.setLevel(log_level)

    # Silence noisy loggers
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)


def _setup_metrics() -> None:
    """Name the EMF service; the sink is picked from AWS_EMF_ENVIRONMENT."""
    config = get_config()
    config.service_name = os.getenv("AWS_EMF_SERVICE_NAME", "talenthub-api")
    config.namespace = os.getenv("AWS_EMF_NAMESPACE", METRICS_NAMESPACE)


def init_observability() -> None:
    """Setup logging & metrics. Call once at process start."""

    _setup_logging()
    _setup_metrics()

    structlog.get_logger(__name__).info("Observability initialized")
