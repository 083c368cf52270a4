# mindbreakers/interfaces/api/services.py
"""Wiring of the dashboard components behind the API.

One DashboardServices instance lives on ``app.state.services``. It owns
the shared httpx client and registers every long-lived component with
the lifecycle manager so startup and shutdown run in a fixed order.
"""

import logging
from dataclasses import dataclass

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from mindbreakers.config import Settings
from mindbreakers.core.backend import Backend, create_backend
from mindbreakers.core.commands import ServerCommandsAPI
from mindbreakers.core.dashboard import ToastBoard
from mindbreakers.core.lifecycle import LifecycleManager
from mindbreakers.core.profile import ProfileClient
from mindbreakers.core.session import SessionHolder, SessionManager, role_is_admin
from mindbreakers.core.steam import SteamOpenID
from mindbreakers.core.streams import KickStatusPoller
from mindbreakers.core.whitelist import WhitelistAPI

logger = logging.getLogger(__name__)

STEAM_LOGIN_PATH = "/auth/steam/login"


@dataclass
class DashboardServices:
    """Every component an API request may touch."""

    settings: Settings
    backend: Backend
    holder: SessionHolder
    http: httpx.AsyncClient
    profile: ProfileClient
    sessions: SessionManager
    commands: ServerCommandsAPI
    steam: SteamOpenID
    poller: KickStatusPoller
    toasts: ToastBoard
    whitelist: WhitelistAPI

    @classmethod
    def build(
        cls,
        settings: Settings,
        backend: Backend | None = None,
        http_client: httpx.AsyncClient | None = None,
        scheduler: AsyncIOScheduler | None = None,
    ) -> "DashboardServices":
        """Assemble the components from settings.

        Args:
            settings: Application settings.
            backend: Adapter to use instead of the one settings select.
            http_client: Shared client for the REST API, Steam and Kick.
            scheduler: Scheduler for the live-status job.

        Returns:
            The wired services, not yet started.
        """
        backend = backend or create_backend(settings)
        http = http_client or httpx.AsyncClient(timeout=20.0)
        holder = SessionHolder()
        profile = ProfileClient(settings.api_base_url, holder, client=http)

        # Steam sign-in is only offered against a local development backend
        steam_sign_in_url = STEAM_LOGIN_PATH if settings.backend_is_local else None

        sessions = SessionManager(
            backend,
            holder,
            sync_user=profile.sync_user,
            is_admin=role_is_admin,
            init_timeout=settings.session_init_timeout,
            sync_retries=settings.user_sync_retries,
            sync_backoff=settings.user_sync_backoff,
            frontend_url=settings.frontend_url,
            steam_sign_in_url=steam_sign_in_url,
        )
        return cls(
            settings=settings,
            backend=backend,
            holder=holder,
            http=http,
            profile=profile,
            sessions=sessions,
            commands=ServerCommandsAPI(backend, holder),
            steam=SteamOpenID(http, api_key=settings.steam_api_key),
            poller=KickStatusPoller(
                backend, http, interval=settings.live_status_interval, scheduler=scheduler
            ),
            toasts=ToastBoard(timeout=settings.toast_timeout),
            whitelist=WhitelistAPI(backend, holder, game_slug=settings.game_slug),
        )

    def register(self, lifecycle: LifecycleManager) -> None:
        """Register components in startup order; shutdown runs in reverse."""
        lifecycle.register("http", self.http)
        lifecycle.register("backend", self.backend)
        lifecycle.register("sessions", self.sessions)
        lifecycle.register("toasts", self.toasts)
        if self.backend.configured:
            lifecycle.register("live-status", self.poller)
        else:
            logger.warning("Backend not configured - live stream status polling disabled")
