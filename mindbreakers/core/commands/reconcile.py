# mindbreakers/core/commands/reconcile.py
"""Upsert-by-id reconciliation of realtime command events.

A local command list is kept as a replace/prepend log keyed by command
id: an event for a known id replaces that entry in place, an event for
a new id is prepended. Re-applying an event is a no-op and events for
different ids commute, so the list converges whatever the arrival order.
"""

from collections.abc import Iterable

from mindbreakers.core.commands.models import Command


def upsert_command(commands: list[Command], updated: Command) -> list[Command]:
    """Return a new list with ``updated`` merged in by id.

    Args:
        commands: Current local list, most recent first.
        updated: Command row delivered by a realtime event.

    Returns:
        A new list; the input list is not modified.
    """
    for index, existing in enumerate(commands):
        if existing.id == updated.id:
            merged = list(commands)
            merged[index] = updated
            return merged
    return [updated, *commands]


def apply_events(commands: list[Command], events: Iterable[Command]) -> list[Command]:
    """Fold a sequence of command events into a list."""
    result = commands
    for event in events:
        result = upsert_command(result, event)
    return result
