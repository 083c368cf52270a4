"""Dashboard building blocks: live views, quick actions and toasts."""

from mindbreakers.core.dashboard.actions import QuickActions
from mindbreakers.core.dashboard.toasts import Toast, ToastBoard
from mindbreakers.core.dashboard.views import CommandHistoryView, ServerStatsView

__all__ = [
    "CommandHistoryView",
    "QuickActions",
    "ServerStatsView",
    "Toast",
    "ToastBoard",
]
