"""Logfire observability for the circulation engine."""

import logging
import os
from collections.abc import Generator
from contextlib import contextmanager

import logfire
from pydantic import BaseModel, Field

logger = logging.getLogger(__name__)


class ObservabilityConfig(BaseModel):
    """Configuration for Logfire observability."""

    token: str = Field(default_factory=lambda: os.getenv("LOGFIRE_TOKEN", ""))
    project_name: str = "library-circulation"
    environment: str = Field(default_factory=lambda: os.getenv("ENVIRONMENT", "development"))

    enabled: bool = Field(
        default_factory=lambda: os.getenv("LOGFIRE_ENABLED", "true").lower() == "true"
    )
    console_output: bool = Field(
        default_factory=lambda: os.getenv("LOGFIRE_CONSOLE", "false").lower() == "true"
    )
    send_to_logfire: bool = Field(
        default_factory=lambda: os.getenv("LOGFIRE_SEND", "false").lower() == "true"
    )


def initialize_observability(config: ObservabilityConfig | None = None) -> None:
    """Configure Logfire once at process start."""
    config = config or ObservabilityConfig()

    if not config.enabled:
        logger.debug("Observability disabled via configuration")
        return

    logfire.configure(
        token=config.token or None,
        service_name=config.project_name,
        environment=config.environment,
        send_to_logfire=config.send_to_logfire,
        console=None if config.console_output else False,
    )


@contextmanager
def trace_operation(operation: str, **attributes) -> Generator:
    """Span around one circulation transaction attempt."""
    with logfire.span(
        "circulation.{operation}",
        operation=operation,
        db_system="sqlalchemy",
        **attributes,
    ) as span:
        try:
            yield span
        except Exception as e:
            span.set_attribute("circulation.error", type(e).__name__)
            raise
