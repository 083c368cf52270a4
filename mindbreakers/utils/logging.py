# mindbreakers/utils/logging.py
"""Structured logging with JSON format and correlation context.

Provides:
- JSON-formatted log output for structured logging
- Request correlation ID and acting user ID via ContextVar
- Centralized logger configuration (JSON or plain text)
"""

import json
import logging
from contextvars import ContextVar
from typing import Any

request_id_var: ContextVar[str] = ContextVar("request_id", default="")
user_id_var: ContextVar[str] = ContextVar("user_id", default="")


def set_request_id(request_id: str) -> None:
    """Set the request correlation ID for the current context.

    Args:
        request_id: Unique identifier for the request.
    """
    request_id_var.set(request_id)


def get_request_id() -> str:
    """Get the request correlation ID for the current context."""
    return request_id_var.get()


def set_user_id(user_id: str) -> None:
    """Bind the acting user to log records emitted in this context."""
    user_id_var.set(user_id)


class StructuredFormatter(logging.Formatter):
    """JSON formatter for structured logging.

    Outputs log records as JSON with timestamp, level, logger name,
    message, and the correlation fields that are set.
    """

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": self.formatTime(record),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }

        request_id = request_id_var.get()
        if request_id:
            log_data["request_id"] = request_id

        user_id = user_id_var.get()
        if user_id:
            log_data["user_id"] = user_id

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data)


def configure_logging(level: int = logging.INFO, json_output: bool = False) -> None:
    """Configure root logging for the service.

    Args:
        level: Logging level (default: logging.INFO).
        json_output: Emit one JSON object per line instead of plain text.
    """
    handler = logging.StreamHandler()
    if json_output:
        handler.setFormatter(StructuredFormatter())
    else:
        handler.setFormatter(
            logging.Formatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
        )
    logging.root.addHandler(handler)
    logging.root.setLevel(level)
