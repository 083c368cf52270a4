# mindbreakers/core/backend/memory.py
"""In-process backend for local development and tests.

Tables live in dictionaries, realtime events are delivered synchronously
to matching subscribers on every write, and the auth service keeps users
and tokens in memory. Faults can be injected per operation so callers can
exercise the "configured but request failed" path.
"""

from __future__ import annotations

import asyncio
import copy
import logging
import time
import uuid
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any

from mindbreakers.core.backend.base import (
    SIGNED_IN,
    SIGNED_OUT,
    TOKEN_REFRESHED,
    AuthCallback,
    AuthUser,
    BackendError,
    ChangeCallback,
    ChangeEvent,
    Session,
    Subscription,
    matches,
    notify_auth_listeners,
)

logger = logging.getLogger(__name__)


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class InMemoryAuth:
    """Auth service double.

    Attributes:
        session_error: When set, get_session() raises it.
        hang_get_session: When True, get_session() never returns.
        refresh_fails: When True, refresh_session() returns None.
        calls: Names of the auth operations invoked, in order.
    """

    def __init__(self, session_ttl: int = 3600) -> None:
        self.session_ttl = session_ttl
        self.session_error: BackendError | None = None
        self.hang_get_session = False
        self.refresh_fails = False
        self.calls: list[str] = []
        self.storage_cleared = False
        self._users: dict[str, tuple[str, AuthUser]] = {}
        self._tokens: dict[str, str] = {}
        self._refresh_tokens: dict[str, str] = {}
        self._session: Session | None = None
        self._listeners: list[AuthCallback] = []

    def add_user(
        self,
        email: str,
        password: str,
        metadata: dict[str, Any] | None = None,
        app_metadata: dict[str, Any] | None = None,
    ) -> AuthUser:
        user = AuthUser(
            id=str(uuid.uuid4()),
            email=email,
            user_metadata=dict(metadata or {}),
            app_metadata=dict(app_metadata or {}),
        )
        self._users[email] = (password, user)
        return user

    def issue_session(self, user: AuthUser) -> Session:
        """Create a valid session for a user and make it current."""
        access_token = f"access-{uuid.uuid4().hex}"
        refresh_token = f"refresh-{uuid.uuid4().hex}"
        self._tokens[access_token] = user.id
        self._refresh_tokens[refresh_token] = user.id
        self._session = Session(
            access_token=access_token,
            refresh_token=refresh_token,
            user=user,
            expires_at=int(time.time()) + self.session_ttl,
        )
        return self._session

    def revoke(self, access_token: str) -> None:
        """Invalidate an access token so get_user() rejects it."""
        self._tokens.pop(access_token, None)

    def _find_user(self, user_id: str) -> AuthUser | None:
        for _, user in self._users.values():
            if user.id == user_id:
                return user
        return None

    async def get_session(self) -> Session | None:
        self.calls.append("get_session")
        if self.hang_get_session:
            await asyncio.Event().wait()
        if self.session_error is not None:
            raise self.session_error
        return self._session

    async def get_user(self, access_token: str) -> AuthUser | None:
        self.calls.append("get_user")
        user_id = self._tokens.get(access_token)
        if user_id is None:
            raise BackendError("Invalid JWT: token is expired", code="401")
        return self._find_user(user_id)

    async def refresh_session(self) -> Session | None:
        self.calls.append("refresh_session")
        if self.refresh_fails or self._session is None:
            return None
        user_id = self._refresh_tokens.pop(self._session.refresh_token, None)
        user = self._find_user(user_id) if user_id else None
        if user is None:
            return None
        session = self.issue_session(user)
        await notify_auth_listeners(self._listeners, TOKEN_REFRESHED, session)
        return session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        self.calls.append("sign_in_with_password")
        entry = self._users.get(email)
        if entry is None or entry[0] != password:
            raise BackendError("Invalid login credentials", code="400")
        session = self.issue_session(entry[1])
        await notify_auth_listeners(self._listeners, SIGNED_IN, session)
        return session

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> AuthUser | None:
        self.calls.append("sign_up")
        if email in self._users:
            raise BackendError("User already registered", code="422")
        return self.add_user(email, password, metadata)

    def oauth_url(self, provider: str, redirect_to: str) -> str:
        self.calls.append("oauth_url")
        return f"memory://auth/authorize?provider={provider}&redirect_to={redirect_to}"

    async def sign_out(self) -> None:
        self.calls.append("sign_out")
        if self._session is not None:
            self.revoke(self._session.access_token)
        self._session = None
        await notify_auth_listeners(self._listeners, SIGNED_OUT, None)

    def clear_storage(self) -> None:
        self.storage_cleared = True
        self._session = None

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        self._listeners.append(callback)

        def release() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return Subscription("auth-state", release)


class InMemoryBackend:
    """Dictionary-backed implementation of the Backend protocol.

    Example:
        >>> backend = InMemoryBackend()
        >>> row = await backend.insert("server_commands", {"server_id": "srv1"})
        >>> await backend.update("server_commands", {"status": "completed"}, {"id": row["id"]})
    """

    configured = True

    def __init__(self) -> None:
        self.auth = InMemoryAuth()
        self.tables: dict[str, list[dict[str, Any]]] = {}
        self.calls: list[tuple[str, str]] = []
        self._subscribers: list[tuple[str, str, dict[str, Any] | None, ChangeCallback]] = []
        self._rpcs: dict[str, Callable[[dict[str, Any]], Any]] = {}
        self._faults: dict[str, BackendError] = {}

    # ------------------------------------------------------------------
    # Test helpers
    # ------------------------------------------------------------------

    def fail_next(self, operation: str, message: str, code: str | None = None) -> None:
        """Make the next call of an operation raise BackendError."""
        self._faults[operation] = BackendError(message, code=code)

    def register_rpc(self, name: str, handler: Callable[[dict[str, Any]], Any]) -> None:
        self._rpcs[name] = handler

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def _check_fault(self, operation: str, target: str) -> None:
        self.calls.append((operation, target))
        fault = self._faults.pop(operation, None)
        if fault is not None:
            raise fault

    def _publish(self, table: str, event: str, new: dict[str, Any], old: dict[str, Any]) -> None:
        for sub_table, sub_event, sub_filters, callback in list(self._subscribers):
            if sub_table != table or sub_event not in ("*", event):
                continue
            if not matches(new or old, sub_filters):
                continue
            callback(ChangeEvent(event=event, table=table, new=copy.deepcopy(new), old=old))

    # ------------------------------------------------------------------
    # Backend protocol
    # ------------------------------------------------------------------

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order: tuple[str, bool] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        self._check_fault("select", table)
        rows = [copy.deepcopy(r) for r in self.tables.get(table, []) if matches(r, filters)]
        if order is not None:
            column, ascending = order
            rows.sort(key=lambda r: (r.get(column) is None, r.get(column)), reverse=not ascending)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def select_one(self, table: str, filters: dict[str, Any]) -> dict[str, Any] | None:
        rows = await self.select(table, filters=filters, limit=1)
        return rows[0] if rows else None

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        self._check_fault("insert", table)
        stored = copy.deepcopy(row)
        stored.setdefault("id", str(uuid.uuid4()))
        stored.setdefault("created_at", utc_now_iso())
        self.tables.setdefault(table, []).append(stored)
        self._publish(table, "INSERT", stored, {})
        return copy.deepcopy(stored)

    async def update(
        self, table: str, values: dict[str, Any], filters: dict[str, Any]
    ) -> list[dict[str, Any]]:
        self._check_fault("update", table)
        updated = []
        for stored in self.tables.get(table, []):
            if not matches(stored, filters):
                continue
            old = copy.deepcopy(stored)
            stored.update(copy.deepcopy(values))
            updated.append(copy.deepcopy(stored))
            self._publish(table, "UPDATE", stored, old)
        return updated

    async def rpc(self, name: str, params: dict[str, Any] | None = None) -> Any:
        self._check_fault("rpc", name)
        handler = self._rpcs.get(name)
        if handler is None:
            raise BackendError(f"Could not find the function public.{name}", code="PGRST202")
        return handler(params or {})

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        event: str = "*",
        filters: dict[str, Any] | None = None,
    ) -> Subscription:
        entry = (table, event, filters, callback)
        self._subscribers.append(entry)

        def release() -> None:
            if entry in self._subscribers:
                self._subscribers.remove(entry)

        return Subscription(f"{table}-{uuid.uuid4().hex[:8]}", release)

    async def aclose(self) -> None:
        self._subscribers.clear()
