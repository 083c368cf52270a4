"""Backend adapters for the hosted database, auth and realtime service.

This module provides:
- Backend / AuthBackend: protocols every adapter implements
- SupabaseBackend: the real hosted backend over httpx and websockets
- NullBackend: used when credentials are missing; reads return nothing
- InMemoryBackend: local development and test double
- create_backend: picks the adapter from settings
"""

import logging

from mindbreakers.config import Settings
from mindbreakers.core.backend.base import (
    SIGNED_IN,
    SIGNED_OUT,
    TOKEN_REFRESHED,
    AuthBackend,
    AuthUser,
    Backend,
    BackendError,
    ChangeEvent,
    Session,
    Subscription,
)
from mindbreakers.core.backend.memory import InMemoryBackend
from mindbreakers.core.backend.null import NullBackend
from mindbreakers.core.backend.supabase import SupabaseBackend

logger = logging.getLogger(__name__)


def create_backend(settings: Settings, session_path: str | None = None) -> Backend:
    """Create the backend adapter for the given settings.

    Args:
        settings: Application settings.
        session_path: File used to persist the auth session, overriding
            settings.session_path.

    Returns:
        SupabaseBackend when both credentials are set, NullBackend otherwise.
    """
    if not settings.backend_configured:
        logger.warning(
            "SUPABASE_URL / SUPABASE_ANON_KEY not set - running without backend features"
        )
        return NullBackend()

    logger.info("Backend client initialized for %s", settings.supabase_url)
    return SupabaseBackend(
        settings.supabase_url,
        settings.supabase_anon_key,
        session_path=session_path or settings.session_path or None,
    )


__all__ = [
    "SIGNED_IN",
    "SIGNED_OUT",
    "TOKEN_REFRESHED",
    "AuthBackend",
    "AuthUser",
    "Backend",
    "BackendError",
    "ChangeEvent",
    "InMemoryBackend",
    "NullBackend",
    "Session",
    "Subscription",
    "SupabaseBackend",
    "create_backend",
]
