# mindbreakers/core/backend/supabase.py
"""Supabase implementation of the Backend protocol.

Table reads and writes go through PostgREST, sessions through GoTrue,
both over a shared httpx.AsyncClient. Realtime goes through
RealtimeClient. Network failures and non-2xx responses are raised as
BackendError with the server-supplied message.
"""

from __future__ import annotations

import json
import logging
import os
import uuid
from typing import Any
from urllib.parse import urlencode

import httpx

from mindbreakers.core.backend.base import (
    SIGNED_IN,
    SIGNED_OUT,
    TOKEN_REFRESHED,
    AuthCallback,
    AuthUser,
    BackendError,
    ChangeCallback,
    Session,
    Subscription,
    notify_auth_listeners,
)
from mindbreakers.core.backend.realtime import RealtimeClient

logger = logging.getLogger(__name__)

NO_ROWS_CODE = "PGRST116"


def _raise_for_response(response: httpx.Response) -> None:
    if response.is_success:
        return
    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}
    message = (
        body.get("message")
        or body.get("msg")
        or body.get("error_description")
        or body.get("error")
        or f"{response.status_code} {response.reason_phrase}"
    )
    code = body.get("code") or body.get("error_code") or str(response.status_code)
    raise BackendError(str(message), code=str(code), details=body or None)


def _eq_params(filters: dict[str, Any] | None) -> dict[str, str]:
    return {column: f"eq.{value}" for column, value in (filters or {}).items()}


class SessionStore:
    """Persists the current session as JSON, like browser local storage.

    With no path the session only lives in memory.
    """

    def __init__(self, path: str | None = None) -> None:
        self.path = path

    def load(self) -> dict[str, Any] | None:
        if not self.path or not os.path.exists(self.path):
            return None
        with open(self.path, encoding="utf-8") as f:
            return json.load(f)

    def save(self, session: Session | None) -> None:
        if not self.path:
            return
        if session is None:
            self.clear()
            return
        db_dir = os.path.dirname(self.path)
        if db_dir:
            os.makedirs(db_dir, exist_ok=True)
        data = {
            "access_token": session.access_token,
            "refresh_token": session.refresh_token,
            "expires_at": session.expires_at,
            "user": {
                "id": session.user.id,
                "email": session.user.email,
                "user_metadata": session.user.user_metadata,
                "app_metadata": session.user.app_metadata,
            },
        }
        with open(self.path, "w", encoding="utf-8") as f:
            json.dump(data, f)

    def clear(self) -> None:
        if self.path and os.path.exists(self.path):
            os.unlink(self.path)


class SupabaseAuth:
    """GoTrue client holding the current session for this process."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        url: str,
        api_key: str,
        store: SessionStore | None = None,
        realtime: RealtimeClient | None = None,
    ) -> None:
        self._client = client
        self._url = url.rstrip("/")
        self._api_key = api_key
        self._store = store or SessionStore()
        self._realtime = realtime
        self._session: Session | None = None
        self._loaded = False
        self._listeners: list[AuthCallback] = []

    @property
    def current(self) -> Session | None:
        return self._session

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json_body: dict[str, Any] | None = None,
        token: str | None = None,
    ) -> dict[str, Any]:
        headers = {"apikey": self._api_key, "Authorization": f"Bearer {token or self._api_key}"}
        try:
            response = await self._client.request(
                method, f"{self._url}/auth/v1{path}", json=json_body, headers=headers
            )
        except httpx.HTTPError as e:
            raise BackendError(f"Auth request failed: {e}") from e
        _raise_for_response(response)
        if not response.content:
            return {}
        return response.json()

    async def _set_session(self, session: Session | None, event: str | None) -> None:
        self._session = session
        self._store.save(session)
        if self._realtime is not None:
            self._realtime.set_access_token(session.access_token if session else None)
        if event:
            await notify_auth_listeners(self._listeners, event, session)

    async def get_session(self) -> Session | None:
        if not self._loaded:
            self._loaded = True
            try:
                stored = self._store.load()
                if stored:
                    self._session = Session.from_dict(stored)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                raise BackendError(f"Invalid session in storage: {e}") from e
        if self._session is not None and self._session.is_expired():
            return await self.refresh_session()
        return self._session

    async def get_user(self, access_token: str) -> AuthUser | None:
        data = await self._request("GET", "/user", token=access_token)
        return AuthUser.from_dict(data) if data.get("id") else None

    async def refresh_session(self) -> Session | None:
        if self._session is None or not self._session.refresh_token:
            return None
        data = await self._request(
            "POST",
            "/token?grant_type=refresh_token",
            json_body={"refresh_token": self._session.refresh_token},
        )
        session = Session.from_dict(data)
        await self._set_session(session, TOKEN_REFRESHED)
        return session

    async def sign_in_with_password(self, email: str, password: str) -> Session:
        data = await self._request(
            "POST",
            "/token?grant_type=password",
            json_body={"email": email, "password": password},
        )
        session = Session.from_dict(data)
        await self._set_session(session, SIGNED_IN)
        return session

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> AuthUser | None:
        data = await self._request(
            "POST",
            "/signup",
            json_body={"email": email, "password": password, "data": metadata or {}},
        )
        if data.get("access_token"):
            session = Session.from_dict(data)
            await self._set_session(session, SIGNED_IN)
            return session.user
        user = data.get("user") or data
        return AuthUser.from_dict(user) if user.get("id") else None

    def oauth_url(self, provider: str, redirect_to: str) -> str:
        query = urlencode({"provider": provider, "redirect_to": redirect_to})
        return f"{self._url}/auth/v1/authorize?{query}"

    async def sign_out(self) -> None:
        session = self._session
        try:
            if session is not None:
                await self._request("POST", "/logout?scope=global", token=session.access_token)
        finally:
            await self._set_session(None, SIGNED_OUT)

    def clear_storage(self) -> None:
        self._session = None
        self._store.clear()

    def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        self._listeners.append(callback)

        def release() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return Subscription("auth-state", release)


class SupabaseBackend:
    """Backend over a Supabase project (PostgREST, GoTrue, Realtime).

    Example:
        >>> backend = SupabaseBackend("https://xyz.supabase.co", "anon-key")
        >>> rows = await backend.select("server_stats", order=("server_name", True))
        >>> await backend.aclose()
    """

    configured = True

    def __init__(
        self,
        url: str,
        api_key: str,
        *,
        client: httpx.AsyncClient | None = None,
        realtime: RealtimeClient | None = None,
        session_path: str | None = None,
        timeout: float = 20.0,
    ) -> None:
        self.url = url.rstrip("/")
        self.api_key = api_key
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None
        self.realtime = realtime or RealtimeClient(self.url, api_key)
        self.auth = SupabaseAuth(
            self._client, self.url, api_key, SessionStore(session_path), self.realtime
        )

    def _headers(self, extra: dict[str, str] | None = None) -> dict[str, str]:
        session = self.auth.current
        token = session.access_token if session else self.api_key
        headers = {"apikey": self.api_key, "Authorization": f"Bearer {token}"}
        if extra:
            headers.update(extra)
        return headers

    async def _rest(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json_body: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        try:
            response = await self._client.request(
                method,
                f"{self.url}/rest/v1/{path}",
                params=params,
                json=json_body,
                headers=self._headers(headers),
            )
        except httpx.HTTPError as e:
            raise BackendError(f"Request to {path} failed: {e}") from e
        _raise_for_response(response)
        return response

    async def select(
        self,
        table: str,
        *,
        filters: dict[str, Any] | None = None,
        order: tuple[str, bool] | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        params: dict[str, Any] = {"select": "*", **_eq_params(filters)}
        if order is not None:
            column, ascending = order
            params["order"] = f"{column}.{'asc' if ascending else 'desc'}"
        if limit is not None:
            params["limit"] = str(limit)
        response = await self._rest("GET", table, params=params)
        return response.json() or []

    async def select_one(self, table: str, filters: dict[str, Any]) -> dict[str, Any] | None:
        try:
            response = await self._rest(
                "GET",
                table,
                params={"select": "*", **_eq_params(filters)},
                headers={"Accept": "application/vnd.pgrst.object+json"},
            )
        except BackendError as e:
            if e.code == NO_ROWS_CODE:
                return None
            raise
        return response.json()

    async def insert(self, table: str, row: dict[str, Any]) -> dict[str, Any]:
        response = await self._rest(
            "POST",
            table,
            params={"select": "*"},
            json_body=row,
            headers={"Prefer": "return=representation"},
        )
        rows = response.json() or []
        if not rows:
            raise BackendError(f"No data returned from insert into {table}")
        return rows[0]

    async def update(
        self, table: str, values: dict[str, Any], filters: dict[str, Any]
    ) -> list[dict[str, Any]]:
        response = await self._rest(
            "PATCH",
            table,
            params={"select": "*", **_eq_params(filters)},
            json_body=values,
            headers={"Prefer": "return=representation"},
        )
        return response.json() or []

    async def rpc(self, name: str, params: dict[str, Any] | None = None) -> Any:
        response = await self._rest("POST", f"rpc/{name}", json_body=params or {})
        if not response.content:
            return None
        return response.json()

    def subscribe(
        self,
        table: str,
        callback: ChangeCallback,
        *,
        event: str = "*",
        filters: dict[str, Any] | None = None,
    ) -> Subscription:
        row_filter = None
        if filters:
            row_filter = ",".join(f"{column}=eq.{value}" for column, value in filters.items())
        name = f"{table}-{uuid.uuid4().hex[:8]}"
        return self.realtime.subscribe(name, table, callback, event=event, filter=row_filter)

    async def aclose(self) -> None:
        await self.realtime.close()
        if self._owns_client:
            await self._client.aclose()
