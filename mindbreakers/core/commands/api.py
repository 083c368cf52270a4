# mindbreakers/core/commands/api.py
"""Data access for the RCON command queue and server stats.

Wraps backend table reads, writes and realtime subscriptions for the
``server_commands`` and ``server_stats`` tables.

Error contract:
- Backend not configured: reads return None / [] and subscriptions are
  inert; writes raise NotConfiguredError.
- Configured backend rejects a call: ApiError with the backend message.
- Empty identifiers: ValidationError before any backend round-trip.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from mindbreakers.core.backend import Backend, BackendError, ChangeEvent, Subscription
from mindbreakers.core.commands.models import Command, CommandStatus, ServerStats
from mindbreakers.core.errors import (
    ApiError,
    NotAuthenticatedError,
    NotConfiguredError,
    ValidationError,
)
from mindbreakers.core.session import SessionHolder

logger = logging.getLogger(__name__)

COMMANDS_TABLE = "server_commands"
STATS_TABLE = "server_stats"

DEFAULT_HISTORY_LIMIT = 50
MAX_HISTORY_LIMIT = 200
DEFAULT_MAX_ATTEMPTS = 3
COMMAND_NOT_FOUND = "Command not found"


@dataclass
class CommandHistoryFilters:
    """Filters for querying command history.

    Attributes:
        server_id: Only commands for this server.
        status: Only commands in this status.
        limit: Maximum rows, default 50, capped at 200.
    """

    server_id: str | None = None
    status: str | None = None
    limit: int | None = None

    @property
    def effective_limit(self) -> int:
        return min(self.limit or DEFAULT_HISTORY_LIMIT, MAX_HISTORY_LIMIT)


def validate_non_empty(value: str | None, field_name: str) -> None:
    """Reject empty or whitespace-only values.

    Raises:
        ValidationError: "<field_name> cannot be empty".
    """
    if not value or not str(value).strip():
        raise ValidationError(f"{field_name} cannot be empty")


class ServerCommandsAPI:
    """Typed access to server commands and stats.

    Attributes:
        backend: Backend adapter (real, null or in-memory).
        holder: Session holder read for the acting user.

    Example:
        >>> api = ServerCommandsAPI(backend, holder)
        >>> command = await api.create_server_command(
        ...     "srv1", "restart", "restart", description="Scheduled maintenance"
        ... )
        >>> history = await api.get_command_history(CommandHistoryFilters(server_id="srv1"))
    """

    def __init__(self, backend: Backend, holder: SessionHolder) -> None:
        self.backend = backend
        self.holder = holder

    @property
    def configured(self) -> bool:
        return self.backend.configured

    def _require_backend(self) -> None:
        if not self.backend.configured:
            raise NotConfiguredError()

    # ========================================================================
    # Commands
    # ========================================================================

    async def create_server_command(
        self,
        server_id: str,
        command_type: str,
        rcon_command: str,
        params: dict[str, Any] | None = None,
        description: str | None = None,
    ) -> Command:
        """Queue an RCON command for the external worker.

        Args:
            server_id: Target server.
            command_type: Command type tag (see CommandType).
            rcon_command: Literal console command.
            params: Structured parameters stored alongside the command.
            description: Human-readable summary.

        Returns:
            The inserted command with its backend-assigned id and timestamp.

        Raises:
            NotConfiguredError: Backend credentials are missing.
            ValidationError: A required field is empty.
            NotAuthenticatedError: No active session.
            ApiError: The backend rejected the insert.
        """
        self._require_backend()
        validate_non_empty(server_id, "Server ID")
        validate_non_empty(command_type, "Command type")
        validate_non_empty(rcon_command, "RCON command")

        user_id = self.holder.user_id
        if user_id is None:
            raise NotAuthenticatedError()

        row = {
            "server_id": server_id,
            "command_type": command_type,
            "rcon_command": rcon_command,
            "params": params or None,
            "description": description or None,
            "status": CommandStatus.PENDING.value,
            "created_by": user_id,
            "attempt_count": 0,
            "max_attempts": DEFAULT_MAX_ATTEMPTS,
            "started_at": None,
            "completed_at": None,
        }
        try:
            data = await self.backend.insert(COMMANDS_TABLE, row)
        except BackendError as e:
            logger.error("Error creating server command: %s", e.message)
            raise ApiError("Failed to create server command", details=e) from e

        command = Command.from_row(data)
        logger.info(
            "Command %s queued for server %s: %s", command.id, server_id, command_type
        )
        return command

    async def get_command_status(self, command_id: str) -> Command | None:
        """Fetch a single command by id.

        Returns:
            The command, or None when the backend is not configured.

        Raises:
            ApiError: "Command not found" or the backend's failure.
        """
        validate_non_empty(command_id, "Command ID")
        if not self.backend.configured:
            return None
        try:
            row = await self.backend.select_one(COMMANDS_TABLE, {"id": command_id})
        except BackendError as e:
            logger.error("Error fetching command status: %s", e.message)
            raise ApiError("Failed to fetch command status", details=e) from e
        if row is None:
            raise ApiError(COMMAND_NOT_FOUND)
        return Command.from_row(row)

    async def get_command_history(
        self, filters: CommandHistoryFilters | None = None
    ) -> list[Command]:
        """List commands, most recent first.

        Args:
            filters: Optional server, status and limit filters.

        Returns:
            Commands ordered by created_at descending; [] when unconfigured.
        """
        filters = filters or CommandHistoryFilters()
        if not self.backend.configured:
            return []

        eq: dict[str, Any] = {}
        if filters.server_id:
            eq["server_id"] = filters.server_id
        if filters.status:
            eq["status"] = filters.status

        try:
            rows = await self.backend.select(
                COMMANDS_TABLE,
                filters=eq,
                order=("created_at", False),
                limit=filters.effective_limit,
            )
        except BackendError as e:
            logger.error("Error fetching command history: %s", e.message)
            raise ApiError("Failed to fetch command history", details=e) from e
        return [Command.from_row(row) for row in rows]

    async def cancel_command(self, command_id: str) -> bool:
        """Cancel a command that is still pending.

        Returns:
            True if a pending command was cancelled, False if none matched.
        """
        self._require_backend()
        validate_non_empty(command_id, "Command ID")
        if self.holder.session is None:
            raise NotAuthenticatedError()
        try:
            rows = await self.backend.update(
                COMMANDS_TABLE,
                {"status": CommandStatus.CANCELLED.value},
                {"id": command_id, "status": CommandStatus.PENDING.value},
            )
        except BackendError as e:
            logger.error("Error cancelling command: %s", e.message)
            raise ApiError("Failed to cancel command", details=e) from e
        if rows:
            logger.info("Command %s cancelled", command_id)
        return bool(rows)

    # ========================================================================
    # Server stats
    # ========================================================================

    async def get_server_stats(self, server_id: str) -> ServerStats | None:
        """Fetch the cached stats row for one server, None if absent."""
        validate_non_empty(server_id, "Server ID")
        if not self.backend.configured:
            return None
        try:
            row = await self.backend.select_one(STATS_TABLE, {"server_id": server_id})
        except BackendError as e:
            logger.error("Error fetching server stats: %s", e.message)
            raise ApiError("Failed to fetch server stats", details=e) from e
        return ServerStats.from_row(row) if row else None

    async def get_all_servers_stats(self) -> list[ServerStats]:
        if not self.backend.configured:
            return []
        try:
            rows = await self.backend.select(STATS_TABLE, order=("server_name", True))
        except BackendError as e:
            logger.error("Error fetching all server stats: %s", e.message)
            raise ApiError("Failed to fetch all server stats", details=e) from e
        return [ServerStats.from_row(row) for row in rows]

    # ========================================================================
    # Realtime
    # ========================================================================

    def subscribe_to_server_stats(
        self, server_id: str, callback: Callable[[ServerStats], None]
    ) -> Subscription:
        """Receive the new stats row on every change for one server."""
        validate_non_empty(server_id, "Server ID")

        def on_change(event: ChangeEvent) -> None:
            if event.new:
                callback(ServerStats.from_row(event.new))

        return self.backend.subscribe(
            STATS_TABLE, on_change, filters={"server_id": server_id}
        )

    def subscribe_to_command_status(
        self, command_id: str, callback: Callable[[Command], None]
    ) -> Subscription:
        """Receive updates of a single command as the worker moves it along."""
        validate_non_empty(command_id, "Command ID")

        def on_change(event: ChangeEvent) -> None:
            if event.new:
                callback(Command.from_row(event.new))

        return self.backend.subscribe(
            COMMANDS_TABLE, on_change, event="UPDATE", filters={"id": command_id}
        )

    def subscribe_to_server_commands(
        self, server_id: str | None, callback: Callable[[Command], None]
    ) -> Subscription:
        """Receive every command change for one server, or all servers for None."""
        filters = {"server_id": server_id} if server_id else None

        def on_change(event: ChangeEvent) -> None:
            if event.new:
                callback(Command.from_row(event.new))

        return self.backend.subscribe(COMMANDS_TABLE, on_change, filters=filters)
