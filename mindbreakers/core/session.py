# mindbreakers/core/session.py
"""Session management for the dashboard.

Provides:
- SessionHolder: the single in-memory session, injected into every
  component that needs the current user
- SessionManager: startup validation, auth event handling, sign-in /
  sign-up / OAuth / sign-out pass-throughs and the post-login user sync

Failure policy: a session that cannot be validated or refreshed is
treated as corrupted. All local auth state is cleared and the reset hook
runs; there is no partial recovery path.
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any
from urllib.parse import urlencode

from tenacity import AsyncRetrying, RetryError, stop_after_attempt, wait_fixed

from mindbreakers.core.backend import (
    SIGNED_IN,
    SIGNED_OUT,
    Backend,
    BackendError,
    Session,
    Subscription,
)
from mindbreakers.utils.logging import set_user_id

logger = logging.getLogger(__name__)

AUTH_UNAVAILABLE = "Authentication is not available. Please configure Supabase."
STEAM_REQUIRES_ACCOUNT = (
    "Steam authentication requires an existing account. Please sign in with "
    "email or Discord first, then link your Steam account from your profile."
)
UNEXPECTED_AUTH_ERROR = "An unexpected error occurred"
CORRUPTION_MARKERS = ("Invalid", "expired")

UserSync = Callable[[Session], Awaitable[Any]]
ResetHook = Callable[[], "Awaitable[None] | None"]
AdminPredicate = Callable[["Session | None"], bool]


@dataclass
class AuthResult:
    """Outcome of an auth operation: an error message or nothing.

    Attributes:
        error: Human-readable failure, None on success.
        url: Redirect target for OAuth / OpenID flows.
    """

    error: str | None = None
    url: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


class SessionHolder:
    """Owns the current session and the user record synced for it.

    Written only by SessionManager; read synchronously by the data layer.
    """

    def __init__(self, session: Session | None = None) -> None:
        self.session = session
        self.api_user_data: Any = None

    @property
    def user_id(self) -> str | None:
        return self.session.user.id if self.session else None

    @property
    def access_token(self) -> str | None:
        return self.session.access_token if self.session else None

    def set(self, session: Session | None) -> None:
        self.session = session
        set_user_id(session.user.id if session else "")

    def clear(self) -> None:
        self.set(None)
        self.api_user_data = None


def never_admin(session: Session | None) -> bool:
    """Default admin predicate: admin features are disabled."""
    return False


def role_is_admin(session: Session | None) -> bool:
    """Admin predicate reading ``app_metadata.role`` set by the backend."""
    if session is None:
        return False
    return session.user.app_metadata.get("role") == "admin"


class SessionManager:
    """Keeps SessionHolder in line with the backend's auth service.

    Example:
        >>> manager = SessionManager(backend, holder, sync_user=profile.sync_user)
        >>> await manager.initialize()
        >>> result = await manager.sign_in("admin@example.com", "secret")
        >>> if result.error:
        ...     print(result.error)
    """

    def __init__(
        self,
        backend: Backend,
        holder: SessionHolder,
        *,
        sync_user: UserSync | None = None,
        on_reset: ResetHook | None = None,
        is_admin: AdminPredicate = never_admin,
        init_timeout: float = 5.0,
        sync_retries: int = 2,
        sync_backoff: float = 2.0,
        frontend_url: str = "http://localhost:5173",
        steam_sign_in_url: str | None = None,
    ) -> None:
        self.backend = backend
        self.holder = holder
        self._sync = sync_user
        self._on_reset = on_reset
        self._is_admin = is_admin
        self.init_timeout = init_timeout
        self.sync_retries = sync_retries
        self.sync_backoff = sync_backoff
        self.frontend_url = frontend_url.rstrip("/")
        self.steam_sign_in_url = steam_sign_in_url
        self.loading = True
        self.reset_count = 0
        self.sync_task: asyncio.Task | None = None
        self._init_task: asyncio.Task | None = None
        self._init_abandoned = False
        self._resetting = False
        self._auth_subscription: Subscription | None = None

    @property
    def session(self) -> Session | None:
        return self.holder.session

    @property
    def is_admin(self) -> bool:
        return self._is_admin(self.holder.session)

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def initialize(self) -> None:
        """Load and validate the stored session, bounded by init_timeout.

        When the timeout elapses, loading is forced to False and the
        in-flight work is left to finish; its result is ignored.
        """
        logger.info("Initializing auth state...")
        if self.backend.configured and self._auth_subscription is None:
            self._auth_subscription = self.backend.auth.on_auth_state_change(
                self.on_auth_state_change
            )

        self._init_abandoned = False
        self._init_task = asyncio.ensure_future(self._guarded(self._initialize()))
        try:
            await asyncio.wait_for(asyncio.shield(self._init_task), timeout=self.init_timeout)
        except TimeoutError:
            self._init_abandoned = True
            logger.warning("Auth initialization taking too long, forcing completion...")
        finally:
            self.loading = False

    async def _guarded(self, work: Awaitable[None]) -> None:
        """Run auth work, resetting all local state on any unexpected error."""
        try:
            await work
        except Exception:
            logger.exception("Critical auth error, clearing session...")
            if not self._resetting:
                await self.reset()

    async def _initialize(self) -> None:
        if not self.backend.configured:
            logger.warning("Supabase not configured - running without authentication features")
            return

        try:
            session = await self.backend.auth.get_session()
        except BackendError as e:
            logger.error("Error getting initial session: %s", e.message)
            if any(marker in e.message for marker in CORRUPTION_MARKERS):
                logger.info("Detected corrupted/expired session, clearing auth state...")
                await self.reset()
            return

        if self._init_abandoned:
            logger.debug("Initial session arrived after timeout, ignoring")
            return

        if session is None:
            logger.info("Initial session check: no session")
            self.holder.clear()
            return

        logger.info("Initial session check: found session for %s", session.user.id)
        valid = await self._validate_or_reset(session)
        if valid is not None:
            self._start_sync(valid)
        logger.info("Initial auth setup complete")

    async def _validate_or_reset(self, session: Session) -> Session | None:
        """Validate a token with the auth service, refreshing once if needed.

        Returns:
            The usable session, or None after the state was reset.
        """
        try:
            user = await self.backend.auth.get_user(session.access_token)
        except BackendError as e:
            logger.info("Token validation failed (%s), attempting refresh...", e.message)
            user = None

        if user is not None:
            logger.info("Token is valid")
            self.holder.set(session)
            return session

        try:
            refreshed = await self.backend.auth.refresh_session()
        except BackendError as e:
            logger.error("Session refresh failed: %s", e.message)
            refreshed = None

        if refreshed is None:
            logger.info("Clearing corrupted session")
            await self.reset()
            return None

        logger.info("Session refreshed successfully")
        self.holder.set(refreshed)
        return refreshed

    async def reset(self) -> None:
        """Clear every piece of local auth state and run the reset hook."""
        self.reset_count += 1
        self._resetting = True
        try:
            try:
                await self.backend.auth.sign_out()
            except BackendError as e:
                logger.error("Sign-out during reset failed: %s", e.message)
            clear_storage = getattr(self.backend.auth, "clear_storage", None)
            if clear_storage is not None:
                clear_storage()
            self.holder.clear()
            logger.warning("Auth state cleared")
            if self._on_reset is not None:
                try:
                    result = self._on_reset()
                    if inspect.isawaitable(result):
                        await result
                except Exception:
                    logger.exception("Reset hook failed")
        finally:
            self._resetting = False

    # ------------------------------------------------------------------
    # Auth events
    # ------------------------------------------------------------------

    async def on_auth_state_change(self, event: str, session: Session | None) -> None:
        """Handle an auth event pushed by the backend."""
        logger.info("Auth state change: %s (%s)", event, "with session" if session else "no session")
        if event in (SIGNED_IN, SIGNED_OUT):
            self.loading = True
        try:
            await self._guarded(self._apply_auth_event(event, session))
        finally:
            self.loading = False

    async def _apply_auth_event(self, event: str, session: Session | None) -> None:
        if event == SIGNED_IN and session is not None:
            valid = await self._validate_or_reset(session)
            if valid is not None:
                self._start_sync(valid)
        elif event == SIGNED_OUT:
            self.holder.clear()
        else:
            self.holder.set(session)

    # ------------------------------------------------------------------
    # User sync
    # ------------------------------------------------------------------

    def _start_sync(self, session: Session) -> None:
        if self._sync is None:
            return
        if self.sync_task is not None and not self.sync_task.done():
            self.sync_task.cancel()
        self.sync_task = asyncio.ensure_future(self.sync_user(session))

    async def sync_user(self, session: Session) -> Any:
        """Sync the signed-in identity to the user record, best effort.

        Retries a fixed number of times with a fixed delay. A final
        failure leaves the session in place and api_user_data empty.
        """
        if self._sync is None:
            return None

        retrying = AsyncRetrying(
            stop=stop_after_attempt(1 + self.sync_retries),
            wait=wait_fixed(self.sync_backoff),
            before_sleep=lambda state: logger.warning(
                "User sync attempt %d failed, retrying in %.0fs",
                state.attempt_number,
                self.sync_backoff,
            ),
        )
        try:
            async for attempt in retrying:
                with attempt:
                    data = await self._sync(session)
        except RetryError as e:
            logger.error("Failed to sync user with API: %s", e.last_attempt.exception())
            self.holder.api_user_data = None
            return None

        self.holder.api_user_data = data
        logger.info("User synced for %s", session.user.id)
        return data

    # ------------------------------------------------------------------
    # Pass-throughs
    # ------------------------------------------------------------------

    async def sign_in(self, email: str, password: str) -> AuthResult:
        if not self.backend.configured:
            return AuthResult(error=AUTH_UNAVAILABLE)
        try:
            await self.backend.auth.sign_in_with_password(email, password)
        except BackendError as e:
            return AuthResult(error=e.message)
        except Exception:
            logger.exception("Unexpected error during sign-in")
            return AuthResult(error=UNEXPECTED_AUTH_ERROR)
        return AuthResult()

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> AuthResult:
        if not self.backend.configured:
            return AuthResult(error=AUTH_UNAVAILABLE)
        try:
            user = await self.backend.auth.sign_up(email, password, metadata or {})
        except BackendError as e:
            return AuthResult(error=e.message)
        except Exception:
            logger.exception("Unexpected error during sign-up")
            return AuthResult(error=UNEXPECTED_AUTH_ERROR)
        if user is not None:
            logger.info("User created: %s", user.email)
        return AuthResult()

    def sign_in_with_oauth(self, provider: str) -> AuthResult:
        """Build the provider redirect for an OAuth sign-in."""
        if not self.backend.configured:
            return AuthResult(error=AUTH_UNAVAILABLE)
        try:
            url = self.backend.auth.oauth_url(provider, f"{self.frontend_url}/auth/callback")
        except BackendError as e:
            logger.error("OAuth sign-in with %s failed: %s", provider, e.message)
            return AuthResult(error=f"{provider.capitalize()} authentication failed")
        return AuthResult(url=url)

    def sign_in_with_discord(self) -> AuthResult:
        return self.sign_in_with_oauth("discord")

    def sign_in_with_steam(self, return_url: str | None = None) -> AuthResult:
        """Start a Steam OpenID sign-in.

        Only available against a local development backend; production
        accounts link Steam from the profile page instead.
        """
        if not self.backend.configured:
            return AuthResult(error=AUTH_UNAVAILABLE)
        if not self.steam_sign_in_url:
            return AuthResult(error=STEAM_REQUIRES_ACCOUNT)
        return_url = return_url or f"{self.frontend_url}/auth/steam-callback"
        return AuthResult(url=f"{self.steam_sign_in_url}?{urlencode({'return_to': return_url})}")

    async def sign_out(self) -> None:
        if self.backend.configured:
            try:
                await self.backend.auth.sign_out()
            except BackendError as e:
                logger.error("Sign-out failed: %s", e.message)
        self.holder.clear()

    async def close(self) -> None:
        """Stop listening for auth events and drop pending background work."""
        if self._auth_subscription is not None:
            self._auth_subscription.unsubscribe()
            self._auth_subscription = None
        for task in (self._init_task, self.sync_task):
            if task is not None and not task.done():
                task.cancel()

    async def shutdown(self) -> None:
        await self.close()
