# mindbreakers/core/backend/base.py
"""Backend protocol and the value types that cross it.

The backend is a hosted relational store with row-level security,
realtime change notification and session management. Everything above
this module talks to it only through the Backend protocol, so the real
Supabase client, the unconfigured null object and the in-memory double
are interchangeable.
"""

from __future__ import annotations

import inspect
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

# Auth state change events, mirrored from the hosted auth service
SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"
TOKEN_REFRESHED = "TOKEN_REFRESHED"
USER_UPDATED = "USER_UPDATED"


class BackendError(Exception):
    """A backend call was rejected.

    Attributes:
        message: Message reported by the backend.
        code: Backend error code (e.g. PGRST116 for "no rows").
        details: Raw error payload, if any.
    """

    def __init__(self, message: str, code: str | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details


@dataclass
class AuthUser:
    """Identity issued by the auth service."""

    id: str
    email: str | None = None
    user_metadata: dict[str, Any] = field(default_factory=dict)
    app_metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> AuthUser:
        return cls(
            id=data["id"],
            email=data.get("email"),
            user_metadata=data.get("user_metadata") or {},
            app_metadata=data.get("app_metadata") or {},
        )


@dataclass
class Session:
    """Credential bundle for the current user.

    Attributes:
        access_token: Bearer token for backend and API calls.
        refresh_token: Token used to obtain a new access token.
        expires_at: Expiry as a Unix timestamp, if known.
        user: The authenticated identity.
    """

    access_token: str
    refresh_token: str
    user: AuthUser
    expires_at: int | None = None

    def is_expired(self, now: float | None = None) -> bool:
        if self.expires_at is None:
            return False
        return self.expires_at < (time.time() if now is None else now)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Session:
        expires_at = data.get("expires_at")
        if expires_at is None and data.get("expires_in") is not None:
            expires_at = int(time.time()) + int(data["expires_in"])
        return cls(
            access_token=data["access_token"],
            refresh_token=data.get("refresh_token", ""),
            user=AuthUser.from_dict(data["user"]),
            expires_at=expires_at,
        )


@dataclass(frozen=True)
class ChangeEvent:
    """A realtime row change delivered by a subscription.

    Attributes:
        event: INSERT, UPDATE or DELETE.
        table: Table the row belongs to.
        new: Row after the change (empty for DELETE).
        old: Row before the change, when the backend sends it.
    """

    event: str
    table: str
    new: dict[str, Any]
    old: dict[str, Any] = field(default_factory=dict)


ChangeCallback = Callable[[ChangeEvent], None]
AuthCallback = Callable[[str, "Session | None"], "Awaitable[None] | None"]


class Subscription:
    """Cancellation handle for a realtime channel or listener.

    unsubscribe() is idempotent and never raises; a handle created
    without a release function (backend unavailable) is inert.
    """

    def __init__(self, name: str, release: Callable[[], None] | None = None) -> None:
        self.name = name
        self._release = release
        self._active = release is not None

    @property
    def active(self) -> bool:
        return self._active

    def unsubscribe(self) -> None:
        if not self._active:
            return
        self._active = False
        release, self._release = self._release, None
        try:
            release()
        except Exception as e:
            logger.warning("Error releasing subscription %s: %s", self.name, e)


def matches(row: dict[str, Any], filters: dict[str, Any] | None) -> bool:
    """Check a row against equality filters."""
    if not filters:
        return True
    return all(row.get(column) == value for column, value in filters.items())


async def notify_auth_listeners(
    listeners: list[AuthCallback], event: str, session: Session | None
) -> None:
    """Deliver an auth event to every listener, awaiting coroutine listeners."""
    for listener in list(listeners):
        result = listener(event, session)
        if inspect.isawaitable(result):
            await result


@runtime_checkable
class AuthBackend(Protocol):
    """Session issuance and identity operations of the hosted auth service."""

    async def get_session(self) -> Session | None: ...

    async def get_user(self, access_token: str) -> AuthUser | None: ...

    async def refresh_session(self) -> Session | None: ...

    async def sign_in_with_password(self, email: str, password: str) -> Session: ...

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> AuthUser | None: ...

    def oauth_url(self, provider: str, redirect_to: str) -> str: ...

    async def sign_out(self) -> None: ...

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription: ...


@runtime_checkable
class Backend(Protocol):
    """Table, RPC and realtime access to the hosted store."""

    configured: bool
    auth: AuthBackend

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order: tuple[str, bool] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]: ...

    async def select_one(
        self, table: str, filters: dict[str, Any]
    ) -> dict[str, Any] | None: ...

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]: ...

    async def update(
        self, table: str, values: dict[str, Any], filters: dict[str, Any]
    ) -> list[dict[str, Any]]: ...

    async def rpc(self, name: str, params: dict[str, Any] | None = None) -> Any: ...

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        event: str = "*",
        filters: dict[str, Any] | None = None,
    ) -> Subscription: ...

    async def aclose(self) -> None: ...
