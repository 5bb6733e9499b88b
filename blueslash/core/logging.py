"""Logging and observability built on Pydantic Logfire.

Modules log through the standard library (``logging.getLogger(__name__)``) and
pass structured fields via ``extra``. Once ``configure_logfire`` has run, the
Logfire handler on the root logger ships those records along with the spans
opened by the service layer:

    with span("task_service.claim_task", task_id=task_id):
        ...
"""

import logging

import logfire
from fastapi import FastAPI

from blueslash.core.config import Settings, settings as default_settings

logger = logging.getLogger(__name__)


def configure_logfire(app_settings: Settings | None = None) -> None:
    """Configure Logfire and route stdlib logging through it.

    Nothing leaves the process unless ``LOGFIRE_TOKEN`` is set.
    """
    config = app_settings or default_settings
    logfire.configure(
        token=config.logfire_token,
        service_name="blueslash",
        service_version="0.1.0",
        send_to_logfire="if-token-present",
    )
    logging.basicConfig(handlers=[logfire.LogfireLoggingHandler()], level=logging.INFO)
    logger.info("Logfire configured", extra={"token_present": config.logfire_token is not None})


def instrument_fastapi(app: FastAPI) -> None:
    logfire.instrument_fastapi(app)
    logger.info("FastAPI instrumentation configured")


def span(name: str, **attributes: object) -> logfire.LogfireSpan:
    """Open a Logfire span named ``<service>.<operation>`` with optional attributes."""
    return logfire.span(name, **attributes)


def log_with_context(logger: logging.Logger, level: str, message: str, **context: object) -> None:
    """Log ``message`` at ``level`` with ``context`` attached as structured fields.

    Usage:
        log_with_context(logger, "info", "Task claimed", task_id="abc", user_id="123")
    """
    getattr(logger, level.lower())(message, extra=context)
