# mindbreakers/core/dashboard/actions.py
"""Quick admin actions that queue RCON commands.

Every action follows one shape: collect parameters, validate them
locally, queue the command through ServerCommandsAPI.create_server_command,
report the outcome as a toast, then notify the caller so it can refresh.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from mindbreakers.core.commands import Command, CommandType, ServerCommandsAPI
from mindbreakers.core.dashboard.toasts import ToastBoard
from mindbreakers.core.errors import MindbreakersError

logger = logging.getLogger(__name__)

OnCommandCreated = Callable[[Command], "Awaitable[None] | None"]


class QuickActions:
    """Command builders bound to one server.

    Attributes:
        server_id: Server the actions target.
        toasts: Where outcomes are reported.
        in_flight: Command types currently being queued; drives
            per-button loading spinners.

    Example:
        >>> actions = QuickActions(api, "srv1")
        >>> await actions.announce("Restart in 5 minutes")
        >>> actions.toasts.current.message
        'Command "Send announcement" queued successfully'
    """

    def __init__(
        self,
        api: ServerCommandsAPI,
        server_id: str,
        toasts: ToastBoard | None = None,
        on_command_created: OnCommandCreated | None = None,
    ) -> None:
        self.api = api
        self.server_id = server_id
        self.toasts = toasts or ToastBoard()
        self.on_command_created = on_command_created
        self.in_flight: set[str] = set()

    def is_loading(self, command_type: str) -> bool:
        return command_type in self.in_flight

    async def execute(
        self,
        command_type: str,
        rcon_command: str,
        description: str,
        params: dict[str, Any] | None = None,
    ) -> Command | None:
        """Queue a command and report the outcome.

        Returns:
            The queued command, or None if queuing failed.
        """
        self.in_flight.add(command_type)
        try:
            command = await self.api.create_server_command(
                self.server_id,
                command_type,
                rcon_command,
                params=params,
                description=description,
            )
        except MindbreakersError as e:
            self.toasts.error(str(e) or "Failed to queue command")
            return None
        finally:
            self.in_flight.discard(command_type)

        self.toasts.success(f'Command "{description}" queued successfully')
        if self.on_command_created is not None:
            result = self.on_command_created(command)
            if inspect.isawaitable(result):
                await result
        return command

    def _reject(self, message: str) -> None:
        self.toasts.error(message)

    async def restart(self, confirmed: bool = False) -> Command | None:
        """Restart the server. Destructive: requires explicit confirmation."""
        if not confirmed:
            self._reject("Restart not confirmed")
            return None
        return await self.execute(CommandType.RESTART.value, "restart", "Restart server")

    async def announce(self, message: str) -> Command | None:
        if not message or not message.strip():
            self._reject("Announcement message cannot be empty")
            return None
        return await self.execute(
            CommandType.ANNOUNCE.value,
            f"announce {message}",
            "Send announcement",
            {"message": message},
        )

    async def kick(self, player: str, reason: str | None = None) -> Command | None:
        if not player or not player.strip():
            self._reject("Player name cannot be empty")
            return None
        rcon_command = f"kick {player} {reason}" if reason else f"kick {player}"
        return await self.execute(
            CommandType.KICK_PLAYER.value,
            rcon_command,
            f"Kick player: {player}",
            {"player": player, "reason": reason},
        )

    async def ban(
        self, player: str, reason: str | None = None, confirmed: bool = False
    ) -> Command | None:
        if not player or not player.strip():
            self._reject("Player name cannot be empty")
            return None
        if not confirmed:
            self._reject("Ban not confirmed")
            return None
        rcon_command = f"ban {player} {reason}" if reason else f"ban {player}"
        return await self.execute(
            CommandType.BAN_PLAYER.value,
            rcon_command,
            f"Ban player: {player}",
            {"player": player, "reason": reason},
        )

    async def custom(self, command: str, description: str | None = None) -> Command | None:
        if not command or not command.strip():
            self._reject("Command cannot be empty")
            return None
        return await self.execute(
            CommandType.CUSTOM.value,
            command,
            description or f"Custom command: {command[:50]}",
        )
