# tests/test_dashboard.py
"""Tests for dashboard toasts, quick actions and live views."""

import asyncio
from unittest.mock import AsyncMock

import pytest

from mindbreakers.core.commands import ServerCommandsAPI
from mindbreakers.core.dashboard import (
    CommandHistoryView,
    QuickActions,
    ServerStatsView,
    ToastBoard,
)
from mindbreakers.core.session import SessionHolder


class TestToastBoard:
    """Tests for auto-dismissing toasts."""

    @pytest.mark.asyncio
    async def test_toast_expires(self):
        toasts = ToastBoard(timeout=0.05)

        toasts.success("Saved")
        assert toasts.current.message == "Saved"

        await asyncio.sleep(0.1)
        assert toasts.current is None

    @pytest.mark.asyncio
    async def test_new_toast_restarts_timer(self):
        toasts = ToastBoard(timeout=0.2)

        toasts.success("first")
        await asyncio.sleep(0.15)
        toasts.error("second")
        await asyncio.sleep(0.1)

        assert toasts.current.message == "second"
        assert toasts.current.kind == "error"
        assert [t.message for t in toasts.history] == ["first", "second"]
        toasts.close()

    @pytest.mark.asyncio
    async def test_close_cancels_dismissal(self):
        toasts = ToastBoard(timeout=0.05)

        toasts.success("Saved")
        toasts.close()
        await asyncio.sleep(0.1)

        assert toasts.current.message == "Saved"

    def test_without_event_loop(self):
        toasts = ToastBoard()

        toasts.error("offline")

        assert toasts.current.message == "offline"

    def test_history_is_bounded(self):
        toasts = ToastBoard(history_size=3)

        for i in range(10):
            toasts.success(f"toast {i}")

        assert [t.message for t in toasts.history] == ["toast 7", "toast 8", "toast 9"]


class TestQuickActions:
    """Tests for the quick action builders."""

    @pytest.mark.asyncio
    async def test_announce(self, api, backend):
        """Test an announcement is queued with its message parameter."""
        created = AsyncMock()
        actions = QuickActions(api, "srv1", ToastBoard(), on_command_created=created)

        command = await actions.announce("Restart in 5 minutes")

        row = backend.tables["server_commands"][0]
        assert row["command_type"] == "announce"
        assert row["rcon_command"] == "announce Restart in 5 minutes"
        assert row["params"] == {"message": "Restart in 5 minutes"}
        assert row["description"] == "Send announcement"
        assert actions.toasts.current.message == 'Command "Send announcement" queued successfully'
        created.assert_awaited_once_with(command)
        actions.toasts.close()

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "call,message",
        [
            (lambda a: a.announce("   "), "Announcement message cannot be empty"),
            (lambda a: a.kick(""), "Player name cannot be empty"),
            (lambda a: a.ban("", "cheating", confirmed=True), "Player name cannot be empty"),
            (lambda a: a.custom(""), "Command cannot be empty"),
            (lambda a: a.restart(), "Restart not confirmed"),
            (lambda a: a.ban("griefer", "cheating"), "Ban not confirmed"),
        ],
    )
    async def test_rejected_without_backend_call(self, api, backend, call, message):
        actions = QuickActions(api, "srv1", ToastBoard())

        result = await call(actions)

        assert result is None
        assert actions.toasts.current.kind == "error"
        assert actions.toasts.current.message == message
        assert backend.calls == []
        actions.toasts.close()

    @pytest.mark.asyncio
    async def test_kick_with_reason(self, api, backend):
        actions = QuickActions(api, "srv1", ToastBoard())

        await actions.kick("griefer", "spawn camping")

        row = backend.tables["server_commands"][0]
        assert row["command_type"] == "kick_player"
        assert row["rcon_command"] == "kick griefer spawn camping"
        assert row["description"] == "Kick player: griefer"
        actions.toasts.close()

    @pytest.mark.asyncio
    async def test_confirmed_restart(self, api, backend):
        actions = QuickActions(api, "srv1", ToastBoard())

        command = await actions.restart(confirmed=True)

        assert command is not None
        assert command.command_type == "restart"
        assert not actions.is_loading("restart")
        actions.toasts.close()

    @pytest.mark.asyncio
    async def test_custom_default_description(self, api):
        actions = QuickActions(api, "srv1", ToastBoard())

        command = await actions.custom("save")

        assert command.description == "Custom command: save"
        actions.toasts.close()

    @pytest.mark.asyncio
    async def test_failure_becomes_error_toast(self, backend, holder):
        """Test a failed queue is reported, not raised."""
        actions = QuickActions(ServerCommandsAPI(backend, holder), "srv1", ToastBoard())

        result = await actions.restart(confirmed=True)

        assert result is None
        assert actions.toasts.current.kind == "error"
        assert actions.toasts.current.message == "Not authenticated"
        actions.toasts.close()


class TestCommandHistoryView:
    """Tests for the live command history."""

    @pytest.mark.asyncio
    async def test_loads_and_follows_realtime(self, api, backend):
        existing = await api.create_server_command("srv1", "info", "info")

        async with CommandHistoryView(api, "srv1") as view:
            assert [c.id for c in view.commands] == [existing.id]
            assert view.loading is False

            new = await api.create_server_command("srv1", "restart", "restart")
            await backend.update("server_commands", {"status": "completed"}, {"id": existing.id})

            assert [c.id for c in view.commands] == [new.id, existing.id]
            assert view.commands[1].status == "completed"
            assert [c.id for c in view.filtered("completed")] == [existing.id]
            assert len(view.filtered("all")) == 2

        assert backend.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_unsubscribes_on_error_exit(self, api, backend):
        """Test the subscription is released when the body raises."""
        with pytest.raises(RuntimeError):
            async with CommandHistoryView(api, "srv1"):
                assert backend.subscriber_count == 1
                raise RuntimeError("render failed")

        assert backend.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_events_after_close_are_ignored(self, api, backend):
        view = CommandHistoryView(api, "srv1")
        await view.open()
        await view.close()

        await api.create_server_command("srv1", "info", "info")

        assert view.commands == []

    @pytest.mark.asyncio
    async def test_load_failure_sets_error(self, api, backend):
        backend.fail_next("select", "connection reset")

        async with CommandHistoryView(api, "srv1") as view:
            assert view.error == "Failed to fetch command history: connection reset"
            assert view.commands == []
            assert view.loading is False

    @pytest.mark.asyncio
    async def test_cancelled_refresh_keeps_following_realtime(self, api, backend, monkeypatch):
        """Test a reload cancelled mid-flight does not leave events buffered forever."""
        async with CommandHistoryView(api, "srv1") as view:

            async def never_returns(filters):
                await asyncio.Event().wait()

            monkeypatch.setattr(api, "get_command_history", never_returns)
            task = asyncio.create_task(view.refresh())
            await asyncio.sleep(0)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

            command = await api.create_server_command("srv1", "info", "info")

            assert [c.id for c in view.commands] == [command.id]
            assert view.loading is False


class TestServerStatsView:
    """Tests for the live stats card."""

    @pytest.mark.asyncio
    async def test_loads_and_follows_realtime(self, api, backend):
        row = await backend.insert("server_stats", {"server_id": "srv1", "current_players": 3})

        async with ServerStatsView(api, "srv1") as view:
            assert view.stats.current_players == 3

            await backend.update("server_stats", {"current_players": 9}, {"id": row["id"]})

            assert view.stats.current_players == 9

        assert backend.subscriber_count == 0

    @pytest.mark.asyncio
    async def test_missing_stats(self, backend):
        async with ServerStatsView(ServerCommandsAPI(backend, SessionHolder()), "srv9") as view:
            assert view.stats is None
            assert view.error is None
