# mindbreakers/core/dashboard/views.py
"""Live dashboard views over command history and server stats.

Both views are async context managers: entering subscribes to realtime
changes and loads the initial data, leaving releases the subscription
on every exit path. Realtime events that arrive while the initial load
is in flight are buffered and replayed on top of the loaded data.
"""

from __future__ import annotations

import asyncio
import logging
from types import TracebackType

from mindbreakers.core.backend import Subscription
from mindbreakers.core.commands import (
    Command,
    CommandHistoryFilters,
    ServerCommandsAPI,
    ServerStats,
    apply_events,
    upsert_command,
)
from mindbreakers.core.errors import MindbreakersError

logger = logging.getLogger(__name__)


async def _wait(event: asyncio.Event, timeout: float) -> bool:
    try:
        await asyncio.wait_for(event.wait(), timeout)
    except asyncio.TimeoutError:
        return False
    return True


class CommandHistoryView:
    """Command list for one server (or all servers) kept live by realtime.

    Attributes:
        commands: Most recent first; updated in place by id.
        loading: True until the first load finishes.
        error: Load failure message, None when the last load succeeded.
        changed: Set whenever a realtime event lands after the view opened.
    """

    def __init__(
        self, api: ServerCommandsAPI, server_id: str | None = None, limit: int = 50
    ) -> None:
        self.api = api
        self.server_id = server_id
        self.limit = limit
        self.commands: list[Command] = []
        self.loading = True
        self.error: str | None = None
        self.changed = asyncio.Event()
        self._subscription: Subscription | None = None
        self._pending: list[Command] | None = None
        self._mounted = False

    def _on_command(self, command: Command) -> None:
        if not self._mounted:
            return
        if self._pending is not None:
            self._pending.append(command)
            return
        self.commands = upsert_command(self.commands, command)
        self.changed.set()

    async def wait_for_change(self, timeout: float) -> bool:
        """Wait up to timeout seconds for a realtime change.

        Returns:
            True if the view changed, False on timeout.
        """
        return await _wait(self.changed, timeout)

    async def refresh(self) -> None:
        """Reload the list from the backend, keeping realtime events."""
        self.loading = True
        self.error = None
        self._pending = []
        loaded = self.commands
        try:
            loaded = await self.api.get_command_history(
                CommandHistoryFilters(server_id=self.server_id, limit=self.limit)
            )
        except MindbreakersError as e:
            self.error = str(e) or "Failed to load command history"
            logger.error("Failed to load command history: %s", self.error)
        finally:
            # replay buffered events even when the load was cancelled
            self.loading = False
            pending, self._pending = self._pending or [], None
            self.commands = apply_events(loaded, pending)

    def filtered(self, status: str | None = None) -> list[Command]:
        """Commands in a status, or all of them for None / "all"."""
        if status in (None, "all"):
            return list(self.commands)
        return [c for c in self.commands if c.status == status]

    async def open(self) -> CommandHistoryView:
        self._mounted = True
        try:
            self._subscription = self.api.subscribe_to_server_commands(
                self.server_id, self._on_command
            )
            await self.refresh()
        except BaseException:
            await self.close()
            raise
        return self

    async def close(self) -> None:
        self._mounted = False
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def __aenter__(self) -> CommandHistoryView:
        return await self.open()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()


class ServerStatsView:
    """Stats card for one server kept live by realtime."""

    def __init__(self, api: ServerCommandsAPI, server_id: str) -> None:
        self.api = api
        self.server_id = server_id
        self.stats: ServerStats | None = None
        self.loading = True
        self.error: str | None = None
        self.changed = asyncio.Event()
        self._subscription: Subscription | None = None
        self._mounted = False

    def _on_stats(self, stats: ServerStats) -> None:
        if self._mounted:
            self.stats = stats
            if not self.loading:
                self.changed.set()

    async def wait_for_change(self, timeout: float) -> bool:
        return await _wait(self.changed, timeout)

    async def refresh(self) -> None:
        self.loading = True
        self.error = None
        try:
            stats = await self.api.get_server_stats(self.server_id)
        except MindbreakersError as e:
            self.error = str(e) or "Failed to load server stats"
            logger.error("Failed to load server stats for %s: %s", self.server_id, self.error)
        else:
            # a realtime update may have landed while the read was in flight
            if stats is not None or self.stats is None:
                self.stats = stats
        finally:
            self.loading = False

    async def open(self) -> ServerStatsView:
        self._mounted = True
        try:
            self._subscription = self.api.subscribe_to_server_stats(self.server_id, self._on_stats)
            await self.refresh()
        except BaseException:
            await self.close()
            raise
        return self

    async def close(self) -> None:
        self._mounted = False
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None

    async def __aenter__(self) -> ServerStatsView:
        return await self.open()

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        await self.close()
