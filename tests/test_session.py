# tests/test_session.py
"""Tests for session startup, auth events and user sync."""

import asyncio
import time
from unittest.mock import AsyncMock, Mock

import httpx
import pytest

from mindbreakers.core.backend import SIGNED_IN, BackendError, NullBackend, SupabaseBackend
from mindbreakers.core.session import (
    AUTH_UNAVAILABLE,
    STEAM_REQUIRES_ACCOUNT,
    UNEXPECTED_AUTH_ERROR,
    SessionHolder,
    SessionManager,
    never_admin,
    role_is_admin,
)

ADMIN_EMAIL = "admin@mindbreakers.gg"
ADMIN_PASSWORD = "hunter22"


def make_manager(backend, holder, **kwargs) -> SessionManager:
    kwargs.setdefault("sync_backoff", 0)
    return SessionManager(backend, holder, **kwargs)


class TestSessionHolder:
    def test_empty(self):
        holder = SessionHolder()

        assert holder.user_id is None
        assert holder.access_token is None

    def test_clear_drops_user_data(self, signed_in_holder):
        signed_in_holder.api_user_data = {"id": 1}

        signed_in_holder.clear()

        assert signed_in_holder.session is None
        assert signed_in_holder.api_user_data is None


class TestInitialize:
    """Tests for startup session validation."""

    @pytest.mark.asyncio
    async def test_no_session(self, backend, holder):
        manager = make_manager(backend, holder)

        await manager.initialize()

        assert manager.loading is False
        assert holder.session is None
        await manager.close()

    @pytest.mark.asyncio
    async def test_valid_session_is_kept_and_synced(self, backend, holder, admin_session):
        """Test a valid stored session is installed and the user synced."""
        sync = AsyncMock(return_value={"id": 42, "discord_username": "admin"})
        manager = make_manager(backend, holder, sync_user=sync)

        await manager.initialize()
        await manager.sync_task

        assert holder.session is admin_session
        assert holder.api_user_data == {"id": 42, "discord_username": "admin"}
        sync.assert_awaited_once_with(admin_session)
        await manager.close()

    @pytest.mark.asyncio
    async def test_invalid_token_is_refreshed(self, backend, holder, admin_session):
        """Test a rejected token triggers exactly one refresh."""
        backend.auth.revoke(admin_session.access_token)
        manager = make_manager(backend, holder)

        await manager.initialize()

        assert holder.session is not None
        assert holder.access_token != admin_session.access_token
        assert backend.auth.calls.count("refresh_session") == 1
        assert manager.reset_count == 0
        await manager.close()

    @pytest.mark.asyncio
    async def test_failed_refresh_resets_state(self, backend, holder, admin_session):
        """Test an unrecoverable session clears every piece of auth state."""
        backend.auth.revoke(admin_session.access_token)
        backend.auth.refresh_fails = True
        on_reset = AsyncMock()
        manager = make_manager(backend, holder, on_reset=on_reset)

        await manager.initialize()

        assert holder.session is None
        assert manager.reset_count == 1
        assert backend.auth.storage_cleared
        assert "sign_out" in backend.auth.calls
        on_reset.assert_awaited_once()
        await manager.close()

    @pytest.mark.asyncio
    async def test_corrupted_session_error_resets(self, backend, holder):
        backend.auth.session_error = BackendError("Invalid Refresh Token: Refresh Token Not Found")
        manager = make_manager(backend, holder)

        await manager.initialize()

        assert manager.reset_count == 1
        assert holder.session is None
        await manager.close()

    @pytest.mark.asyncio
    async def test_other_session_error_does_not_reset(self, backend, holder):
        backend.auth.session_error = BackendError("Failed to fetch")
        manager = make_manager(backend, holder)

        await manager.initialize()

        assert manager.reset_count == 0
        assert manager.loading is False
        await manager.close()

    @pytest.mark.asyncio
    async def test_timeout_forces_loading_false(self, backend, holder):
        """Test a hanging session check cannot keep the app loading."""
        backend.auth.hang_get_session = True
        manager = make_manager(backend, holder, init_timeout=0.05)

        start = time.monotonic()
        await manager.initialize()
        elapsed = time.monotonic() - start

        assert manager.loading is False
        assert elapsed < 1.0
        assert holder.session is None
        await manager.close()

    @pytest.mark.asyncio
    async def test_late_session_is_ignored(self, backend, holder, admin_session, monkeypatch):
        """Test a session that arrives after the timeout is not installed."""

        async def slow_get_session():
            await asyncio.sleep(0.1)
            return admin_session

        monkeypatch.setattr(backend.auth, "get_session", slow_get_session)
        manager = make_manager(backend, holder, init_timeout=0.02)

        await manager.initialize()
        await asyncio.sleep(0.2)

        assert holder.session is None
        await manager.close()

    @pytest.mark.asyncio
    async def test_unconfigured_backend(self, holder):
        manager = make_manager(NullBackend(), holder)

        await manager.initialize()

        assert manager.loading is False
        assert holder.session is None

    @pytest.mark.asyncio
    async def test_garbage_session_file_resets(self, holder, tmp_path):
        """Test an unreadable stored session clears state instead of raising."""
        path = tmp_path / "session.json"
        path.write_text("{not json")
        client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
        backend = SupabaseBackend("https://xyz.supabase.co", "anon-key", client=client, session_path=str(path))
        manager = make_manager(backend, holder)

        await manager.initialize()
        await manager.close()
        await client.aclose()

        assert manager.reset_count == 1
        assert manager.loading is False
        assert holder.session is None
        assert not path.exists()

    @pytest.mark.asyncio
    async def test_unexpected_error_resets(self, backend, holder, monkeypatch):
        """Test an unexpected startup failure is treated as a corrupted session."""
        monkeypatch.setattr(backend.auth, "get_session", AsyncMock(side_effect=RuntimeError("boom")))
        manager = make_manager(backend, holder)

        await manager.initialize()

        assert manager.reset_count == 1
        assert manager.loading is False
        await manager.close()

    @pytest.mark.asyncio
    async def test_failing_reset_hook_does_not_escape(self, backend, holder, admin_session):
        backend.auth.revoke(admin_session.access_token)
        backend.auth.refresh_fails = True
        on_reset = Mock(side_effect=RuntimeError("reload failed"))
        manager = make_manager(backend, holder, on_reset=on_reset)

        await manager.initialize()

        assert manager.reset_count == 1
        assert holder.session is None
        on_reset.assert_called_once()
        await manager.close()


class TestAuthEvents:
    """Tests for SIGNED_IN handling and the critical-error reset."""

    @pytest.mark.asyncio
    async def test_signed_in_with_invalid_token_refreshes(self, backend, holder, admin_session):
        """Test a rejected token on SIGNED_IN is refreshed once and installed."""
        backend.auth.revoke(admin_session.access_token)
        manager = make_manager(backend, holder)

        await manager.on_auth_state_change(SIGNED_IN, admin_session)

        assert holder.session is not None
        assert holder.access_token != admin_session.access_token
        assert backend.auth.calls.count("refresh_session") == 1
        assert manager.reset_count == 0
        assert manager.loading is False

    @pytest.mark.asyncio
    async def test_signed_in_with_invalid_token_and_failed_refresh_resets(
        self, backend, holder, admin_session
    ):
        backend.auth.revoke(admin_session.access_token)
        backend.auth.refresh_fails = True
        on_reset = AsyncMock()
        manager = make_manager(backend, holder, on_reset=on_reset)

        await manager.on_auth_state_change(SIGNED_IN, admin_session)

        assert holder.session is None
        assert manager.reset_count == 1
        assert backend.auth.storage_cleared
        on_reset.assert_awaited_once()
        assert manager.loading is False

    @pytest.mark.asyncio
    async def test_unexpected_error_in_handler_resets(self, backend, holder, admin_session, monkeypatch):
        """Test a non-backend failure while handling an event clears the session."""
        monkeypatch.setattr(backend.auth, "get_user", AsyncMock(side_effect=KeyError("id")))
        manager = make_manager(backend, holder)

        await manager.on_auth_state_change(SIGNED_IN, admin_session)

        assert holder.session is None
        assert manager.reset_count == 1
        assert manager.loading is False

    @pytest.mark.asyncio
    async def test_sign_in_survives_handler_failure(self, backend, holder, admin, monkeypatch):
        monkeypatch.setattr(backend.auth, "get_user", AsyncMock(side_effect=KeyError("id")))
        manager = make_manager(backend, holder)
        await manager.initialize()

        result = await manager.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)

        assert result.error is None
        assert holder.session is None
        assert manager.reset_count == 1
        await manager.close()


class TestUserSync:
    """Tests for the post-login user sync."""

    @pytest.mark.asyncio
    async def test_retries_then_succeeds(self, backend, holder, admin_session):
        sync = AsyncMock(side_effect=[ConnectionError("down"), ConnectionError("down"), {"id": 1}])
        manager = make_manager(backend, holder, sync_user=sync, sync_retries=2)

        data = await manager.sync_user(admin_session)

        assert data == {"id": 1}
        assert sync.await_count == 3
        assert holder.api_user_data == {"id": 1}

    @pytest.mark.asyncio
    async def test_final_failure_keeps_session(self, backend, signed_in_holder, admin_session):
        """Test a sync that never succeeds leaves the user signed in."""
        sync = AsyncMock(side_effect=ConnectionError("down"))
        manager = make_manager(backend, signed_in_holder, sync_user=sync, sync_retries=2)

        data = await manager.sync_user(admin_session)

        assert data is None
        assert sync.await_count == 3
        assert signed_in_holder.session is admin_session
        assert signed_in_holder.api_user_data is None


class TestSignIn:
    """Tests for the auth pass-throughs."""

    @pytest.mark.asyncio
    async def test_sign_in_installs_session(self, backend, holder, admin):
        sync = AsyncMock(return_value={"id": 1})
        manager = make_manager(backend, holder, sync_user=sync)
        await manager.initialize()

        result = await manager.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)
        await manager.sync_task

        assert result.ok
        assert holder.user_id == admin.id
        assert holder.api_user_data == {"id": 1}
        await manager.close()

    @pytest.mark.asyncio
    async def test_wrong_password(self, backend, holder, admin):
        manager = make_manager(backend, holder)

        result = await manager.sign_in(ADMIN_EMAIL, "wrong")

        assert result.error == "Invalid login credentials"
        assert holder.session is None

    @pytest.mark.asyncio
    async def test_sign_up_existing_user(self, backend, holder, admin):
        manager = make_manager(backend, holder)

        result = await manager.sign_up(ADMIN_EMAIL, "pw", {"username": "admin"})

        assert result.error == "User already registered"

    @pytest.mark.asyncio
    async def test_unexpected_errors_become_generic_message(self, backend, holder, monkeypatch):
        """Test errors outside the auth service's own are reported, not raised."""
        monkeypatch.setattr(
            backend.auth, "sign_in_with_password", AsyncMock(side_effect=KeyError("user"))
        )
        monkeypatch.setattr(backend.auth, "sign_up", AsyncMock(side_effect=TypeError("bad body")))
        manager = make_manager(backend, holder)

        signed_in = await manager.sign_in(ADMIN_EMAIL, ADMIN_PASSWORD)
        signed_up = await manager.sign_up(ADMIN_EMAIL, ADMIN_PASSWORD)

        assert signed_in.error == UNEXPECTED_AUTH_ERROR
        assert signed_up.error == UNEXPECTED_AUTH_ERROR
        assert holder.session is None

    @pytest.mark.asyncio
    async def test_unconfigured_returns_error_without_calls(self, holder):
        manager = make_manager(NullBackend(), holder)

        assert (await manager.sign_in("a@b.c", "pw")).error == AUTH_UNAVAILABLE
        assert (await manager.sign_up("a@b.c", "pw")).error == AUTH_UNAVAILABLE
        assert manager.sign_in_with_discord().error == AUTH_UNAVAILABLE

    def test_discord_oauth_url(self, backend, holder):
        manager = make_manager(backend, holder, frontend_url="https://mindbreakers.gg/")

        result = manager.sign_in_with_discord()

        assert result.ok
        assert "provider=discord" in result.url
        assert "redirect_to=https://mindbreakers.gg/auth/callback" in result.url

    def test_steam_requires_local_backend(self, backend, holder):
        manager = make_manager(backend, holder)

        assert manager.sign_in_with_steam().error == STEAM_REQUIRES_ACCOUNT

    def test_steam_sign_in_url(self, backend, holder):
        manager = make_manager(backend, holder, steam_sign_in_url="/auth/steam/login")

        result = manager.sign_in_with_steam("http://localhost:5173/auth/steam-callback")

        assert result.url.startswith("/auth/steam/login?return_to=")
        assert "steam-callback" in result.url

    @pytest.mark.asyncio
    async def test_sign_out_clears_holder(self, backend, signed_in_holder):
        manager = make_manager(backend, signed_in_holder)

        await manager.sign_out()

        assert signed_in_holder.session is None
        assert "sign_out" in backend.auth.calls

    @pytest.mark.asyncio
    async def test_close_stops_listening(self, backend, holder, admin):
        manager = make_manager(backend, holder)
        await manager.initialize()
        await manager.close()

        await backend.auth.sign_in_with_password(ADMIN_EMAIL, ADMIN_PASSWORD)

        assert holder.session is None


class TestAdminPredicate:
    def test_default_is_never_admin(self, backend, signed_in_holder):
        manager = make_manager(backend, signed_in_holder)

        assert manager.is_admin is False
        assert never_admin(signed_in_holder.session) is False

    def test_role_is_admin(self, backend, signed_in_holder):
        manager = make_manager(backend, signed_in_holder, is_admin=role_is_admin)

        assert manager.is_admin is True
        assert role_is_admin(None) is False
