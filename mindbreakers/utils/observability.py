"""Observability configuration with Pydantic Logfire."""

import logging
from typing import Any

from mindbreakers.config import Settings

logger = logging.getLogger(__name__)


def setup_logfire(settings: Settings, app: Any | None = None) -> bool:
    """Configure Logfire tracing for outgoing HTTP and the dashboard API.

    Only activates if LOGFIRE_TOKEN is set. Call once at startup.

    Args:
        settings: Application settings.
        app: Optional FastAPI application to instrument.

    Returns:
        True if Logfire was configured.
    """
    if not settings.logfire_token:
        return False

    try:
        import logfire

        logfire.configure(token=settings.logfire_token, send_to_logfire="if-token-present")
        logfire.instrument_httpx(capture_all=True)
        if app is not None:
            logfire.instrument_fastapi(app)
        return True
    except Exception as e:
        # Observability is optional
        logger.warning("Failed to configure Logfire: %s", str(e))
        return False
