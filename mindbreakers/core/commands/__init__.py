"""Command queue module for RCON server administration.

This module provides:
- Command, ServerStats: records of the server_commands / server_stats tables
- CommandStatus, CommandType: status and type vocabularies
- ServerCommandsAPI: data access for commands, stats and realtime updates
- upsert_command / apply_events: realtime reconciliation by command id
- Display helpers: format_command_status, status_color, command_duration
"""

from mindbreakers.core.commands.api import (
    CommandHistoryFilters,
    ServerCommandsAPI,
    validate_non_empty,
)
from mindbreakers.core.commands.models import (
    Command,
    CommandStatus,
    CommandType,
    ServerStats,
    command_duration,
    format_command_status,
    format_duration,
    format_relative_time,
    is_command_executing,
    is_command_finished,
    status_color,
)
from mindbreakers.core.commands.reconcile import apply_events, upsert_command

__all__ = [
    "Command",
    "CommandHistoryFilters",
    "CommandStatus",
    "CommandType",
    "ServerCommandsAPI",
    "ServerStats",
    "apply_events",
    "command_duration",
    "format_command_status",
    "format_duration",
    "format_relative_time",
    "is_command_executing",
    "is_command_finished",
    "status_color",
    "upsert_command",
    "validate_non_empty",
]
