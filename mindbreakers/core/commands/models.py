# mindbreakers/core/commands/models.py
"""Data models for the server command queue.

This module defines the Command and ServerStats records as stored in the
``server_commands`` and ``server_stats`` tables, the status and type
vocabularies, and the display helpers derived from them.

Commands are written once by the dashboard and then mutated only by the
external RCON worker, which moves them through::

    pending -> processing -> completed | failed | cancelled

Transitions are not enforced here. Any status string read from the
backend is kept as-is and rendered defensively.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any


class CommandStatus(str, Enum):
    """Lifecycle states of a queued command."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @classmethod
    def parse(cls, value: str | None) -> CommandStatus | None:
        """Map a raw status string to a member, None if unknown."""
        try:
            return cls(value)
        except ValueError:
            return None


TERMINAL_STATUSES = frozenset(
    {CommandStatus.COMPLETED, CommandStatus.FAILED, CommandStatus.CANCELLED}
)


class CommandType(str, Enum):
    """Command types understood by the RCON worker."""

    RESTART = "restart"
    START = "start"
    STOP = "stop"
    SHUTDOWN = "shutdown"
    INFO = "info"
    ANNOUNCE = "announce"
    MESSAGE = "message"
    KICK_PLAYER = "kick_player"
    BAN_PLAYER = "ban_player"
    UNBAN_PLAYER = "unban_player"
    TELEPORT = "teleport"
    GIVE_ITEM = "give_item"
    CUSTOM = "custom"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp from the backend.

    Naive values are assumed to be UTC.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


@dataclass
class Command:
    """A queued request to run an RCON command against a game server.

    Attributes:
        id: Unique identifier assigned by the backend on insert.
        server_id: Target game server.
        command_type: Raw command type tag (see CommandType).
        rcon_command: Literal console command sent by the worker.
        status: Raw status string (see CommandStatus).
        created_by: User id of the admin who queued the command.
        created_at: Insert timestamp.
        description: Human-readable summary.
        params: Structured parameters (player name, reason, message text).
        result: Worker output on success.
        error_message: Worker error on failure.
        started_at: Set when a worker claims the command.
        completed_at: Set when the command reaches a terminal state.
        attempt_count: Attempts made so far.
        max_attempts: Attempts allowed before the worker gives up.
        executor_hostname: Host of the worker that claimed the command.
        executor_pid: Process id of that worker.
    """

    id: str
    server_id: str
    command_type: str
    rcon_command: str
    status: str
    created_by: str | None = None
    created_at: datetime | None = None
    description: str | None = None
    params: dict[str, Any] = field(default_factory=dict)
    result: str | None = None
    error_message: str | None = None
    started_at: datetime | None = None
    completed_at: datetime | None = None
    attempt_count: int = 0
    max_attempts: int = 3
    executor_hostname: str | None = None
    executor_pid: int | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> Command:
        """Build a Command from a ``server_commands`` row."""
        return cls(
            id=str(row["id"]),
            server_id=str(row.get("server_id", "")),
            command_type=row.get("command_type") or "",
            rcon_command=row.get("rcon_command") or "",
            status=row.get("status") or "",
            created_by=row.get("created_by"),
            created_at=parse_timestamp(row.get("created_at")),
            description=row.get("description"),
            params=row.get("params") or {},
            result=row.get("result"),
            error_message=row.get("error_message"),
            started_at=parse_timestamp(row.get("started_at")),
            completed_at=parse_timestamp(row.get("completed_at")),
            attempt_count=row.get("attempt_count") or 0,
            max_attempts=row.get("max_attempts") or 3,
            executor_hostname=row.get("executor_hostname"),
            executor_pid=row.get("executor_pid"),
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["created_at"] = _iso(self.created_at)
        data["started_at"] = _iso(self.started_at)
        data["completed_at"] = _iso(self.completed_at)
        return data


@dataclass
class ServerStats:
    """Live snapshot of a game server, written by the sync worker."""

    server_id: str
    id: str | None = None
    server_name: str | None = None
    map_name: str | None = None
    game_mode: str | None = None
    version: str | None = None
    current_players: int = 0
    max_players: int = 0
    player_list: list[Any] = field(default_factory=list)
    game_data: dict[str, Any] = field(default_factory=dict)
    last_updated: datetime | None = None
    rcon_available: bool = False
    last_rcon_error: str | None = None
    sync_interval_seconds: int = 900

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> ServerStats:
        return cls(
            server_id=str(row.get("server_id", "")),
            id=row.get("id"),
            server_name=row.get("server_name"),
            map_name=row.get("map_name"),
            game_mode=row.get("game_mode"),
            version=row.get("version"),
            current_players=row.get("current_players") or 0,
            max_players=row.get("max_players") or 0,
            player_list=row.get("player_list") or [],
            game_data=row.get("game_data") or {},
            last_updated=parse_timestamp(row.get("last_updated")),
            rcon_available=bool(row.get("rcon_available")),
            last_rcon_error=row.get("last_rcon_error"),
            sync_interval_seconds=row.get("sync_interval_seconds") or 900,
        )

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        data["last_updated"] = _iso(self.last_updated)
        return data


# ============================================================================
# Status helpers
# ============================================================================

_STATUS_LABELS = {
    CommandStatus.PENDING: "Pending",
    CommandStatus.PROCESSING: "Processing",
    CommandStatus.COMPLETED: "Completed",
    CommandStatus.FAILED: "Failed",
    CommandStatus.CANCELLED: "Cancelled",
}

_STATUS_COLORS = {
    CommandStatus.COMPLETED: "success",
    CommandStatus.FAILED: "error",
    CommandStatus.PROCESSING: "warning",
    CommandStatus.PENDING: "info",
    CommandStatus.CANCELLED: "default",
}


def is_command_finished(command: Command) -> bool:
    """Check if a command reached a terminal state."""
    return CommandStatus.parse(command.status) in TERMINAL_STATUSES


def is_command_executing(command: Command) -> bool:
    return command.status == CommandStatus.PROCESSING.value


def command_duration(command: Command, now: datetime | None = None) -> timedelta | None:
    """Elapsed run time of a command.

    Computed on every call: an in-flight command measures against the
    current clock, so repeated calls tick forward.

    Args:
        command: Command to measure.
        now: Clock override, defaults to the current UTC time.

    Returns:
        completed_at (or now) minus started_at, None if not started.
    """
    if command.started_at is None:
        return None
    end = command.completed_at or now or datetime.now(timezone.utc)
    return end - command.started_at


def format_command_status(status: str | None) -> str:
    """Human-readable label, "Unknown" for values outside the enum."""
    parsed = CommandStatus.parse(status)
    return _STATUS_LABELS[parsed] if parsed else "Unknown"


def status_color(status: str | None) -> str:
    """Badge colour: success, error, warning, info or default."""
    parsed = CommandStatus.parse(status)
    return _STATUS_COLORS[parsed] if parsed else "default"


def format_duration(duration: timedelta | None) -> str:
    if duration is None:
        return "-"
    total_ms = int(duration.total_seconds() * 1000)
    if total_ms < 1000:
        return f"{total_ms}ms"
    seconds = total_ms / 1000
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(seconds), 60)
    return f"{minutes}m {secs}s"


def format_relative_time(timestamp: datetime | None, now: datetime | None = None) -> str:
    """Render a timestamp as "Just now", "5m ago", "3h ago", "2d ago" or a date."""
    if timestamp is None:
        return "-"
    now = now or datetime.now(timezone.utc)
    minutes = int((now - timestamp).total_seconds() // 60)
    if minutes < 1:
        return "Just now"
    if minutes < 60:
        return f"{minutes}m ago"
    hours = minutes // 60
    if hours < 24:
        return f"{hours}h ago"
    days = hours // 24
    if days < 7:
        return f"{days}d ago"
    return timestamp.date().isoformat()
