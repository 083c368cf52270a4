# mindbreakers/core/lifecycle.py
"""Lifecycle management for long-lived dashboard components.

Components are started in registration order and stopped in reverse.
Both sync and async start/shutdown hooks are accepted, so the session
manager, the live-status poller and the backend client can share one
manager.

Example:
    >>> lm = get_lifecycle_manager()
    >>> lm.register("backend", backend)
    >>> lm.register("poller", poller)
    >>> await lm.startup()
    >>> await lm.shutdown()
"""

import inspect
import logging
from typing import Any

logger = logging.getLogger(__name__)

START_HOOKS = ("start", "startup", "initialize")
STOP_HOOKS = ("shutdown", "aclose", "close")


async def _call(component: Any, names: tuple[str, ...]) -> bool:
    for name in names:
        hook = getattr(component, name, None)
        if callable(hook):
            result = hook()
            if inspect.isawaitable(result):
                await result
            return True
    return False


class LifecycleManager:
    """Starts and stops registered components."""

    def __init__(self) -> None:
        self._components: list[tuple[str, Any]] = []
        self._started = False

    def register(self, name: str, component: Any) -> None:
        """Register a component exposing start()/startup()/initialize()
        and shutdown()/aclose()/close()."""
        self._components.append((name, component))
        logger.debug("Registered lifecycle component: %s", name)

    async def startup(self) -> None:
        """Start all registered components in order. No-op if already started."""
        if self._started:
            logger.debug("Lifecycle manager already started")
            return

        for name, component in self._components:
            logger.info("Starting %s", name)
            await _call(component, START_HOOKS)

        self._started = True
        logger.info("All lifecycle components started (%d total)", len(self._components))

    async def shutdown(self) -> None:
        """Shut down all registered components in reverse order.

        A failing component is logged and does not stop the others.
        """
        if not self._started:
            logger.debug("Lifecycle manager not started, skipping shutdown")
            return

        for name, component in reversed(self._components):
            logger.info("Stopping %s", name)
            try:
                await _call(component, STOP_HOOKS)
            except Exception as e:
                logger.error("Error shutting down %s: %s", name, e)

        self._started = False
        logger.info("All lifecycle components stopped")

    @property
    def is_started(self) -> bool:
        return self._started

    @property
    def component_count(self) -> int:
        return len(self._components)


_lifecycle_manager: LifecycleManager | None = None


def get_lifecycle_manager() -> LifecycleManager:
    """Get the global lifecycle manager singleton."""
    global _lifecycle_manager
    if _lifecycle_manager is None:
        _lifecycle_manager = LifecycleManager()
    return _lifecycle_manager


def reset_lifecycle_manager() -> None:
    """Drop the global lifecycle manager (for testing)."""
    global _lifecycle_manager
    _lifecycle_manager = None
