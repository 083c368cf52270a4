# mindbreakers/core/backend/null.py
"""Null-object backend used when no credentials are configured.

Every read returns an empty result, every subscription is inert and
the auth service never has a session. Write paths above this layer
check ``configured`` and raise NotConfiguredError instead of calling in.
"""

import logging
from typing import Any

from mindbreakers.core.backend.base import (
    AuthCallback,
    AuthUser,
    BackendError,
    ChangeCallback,
    Session,
    Subscription,
)

logger = logging.getLogger(__name__)

NOT_CONFIGURED = "Supabase not configured"


class NullAuth:
    """Auth service stand-in with no session and no sign-in."""

    async def get_session(self) -> Session | None:
        return None

    async def get_user(self, access_token: str) -> AuthUser | None:
        return None

    async def refresh_session(self) -> Session | None:
        return None

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        raise BackendError(NOT_CONFIGURED)

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> AuthUser | None:
        raise BackendError(NOT_CONFIGURED)

    def oauth_url(self, provider: str, redirect_to: str) -> str:
        raise BackendError(NOT_CONFIGURED)

    async def sign_out(self) -> None:
        return None

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        return Subscription("auth-state")


class NullBackend:
    """Backend used when SUPABASE_URL / SUPABASE_ANON_KEY are missing."""

    configured = False

    def __init__(self) -> None:
        self.auth = NullAuth()

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order: tuple[str, bool] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        logger.debug("Backend not configured, select on %s returns nothing", table)
        return []

    async def select_one(self, table: str, filters: dict[str, Any]) -> dict[str, Any] | None:
        return None

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        raise BackendError(NOT_CONFIGURED)

    async def update(
        self, table: str, values: dict[str, Any], filters: dict[str, Any]
    ) -> list[dict[str, Any]]:
        raise BackendError(NOT_CONFIGURED)

    async def rpc(self, name: str, params: dict[str, Any] | None = None) -> Any:
        return None

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        event: str = "*",
        filters: dict[str, Any] | None = None,
    ) -> Subscription:
        return Subscription(f"{table}-unconfigured")

    async def aclose(self) -> None:
        return None
