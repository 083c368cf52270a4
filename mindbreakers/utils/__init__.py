# mindbreakers/utils/__init__.py
"""Utility functions for the MindBreakers service."""

from mindbreakers.utils.logging import (
    StructuredFormatter,
    configure_logging,
    get_request_id,
    set_request_id,
    set_user_id,
)
from mindbreakers.utils.observability import setup_logfire

__all__ = [
    "StructuredFormatter",
    "configure_logging",
    "get_request_id",
    "set_request_id",
    "set_user_id",
    "setup_logfire",
]
