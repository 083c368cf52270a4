# mindbreakers/interfaces/api/main.py
"""FastAPI application for the community dashboard.

Exposes the session, command queue, server stats, quick actions, Steam
OpenID, live-stream status and admin whitelist management over REST,
with long-poll watch routes that follow realtime changes. All state lives
in a DashboardServices instance on ``app.state.services``.
"""

import asyncio
import logging
import uuid
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import timezone
from typing import Annotated, Any

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Query, Request, Response
from fastapi.responses import JSONResponse, RedirectResponse
from slowapi import _rate_limit_exceeded_handler
from slowapi.errors import RateLimitExceeded

# Load environment variables from .env file
load_dotenv()

from mindbreakers import __version__  # noqa: E402
from mindbreakers.config import settings  # noqa: E402
from mindbreakers.core.backend import BackendError  # noqa: E402
from mindbreakers.core.commands import (  # noqa: E402
    Command,
    CommandHistoryFilters,
    command_duration,
    format_command_status,
    status_color,
)
from mindbreakers.core.commands.api import COMMAND_NOT_FOUND  # noqa: E402
from mindbreakers.core.dashboard import (  # noqa: E402
    CommandHistoryView,
    QuickActions,
    ServerStatsView,
)
from mindbreakers.core.dashboard.toasts import SUCCESS  # noqa: E402
from mindbreakers.core.errors import (  # noqa: E402
    ApiError,
    NotAuthenticatedError,
    NotConfiguredError,
    ValidationError,
)
from mindbreakers.core.lifecycle import get_lifecycle_manager  # noqa: E402
from mindbreakers.core.session import AUTH_UNAVAILABLE, AuthResult  # noqa: E402
from mindbreakers.core.steam import (  # noqa: E402
    build_login_url,
    redirect_with_error,
    redirect_with_success,
)
from mindbreakers.core.streams import STATUS_FILTERS, fetch_active_streamers  # noqa: E402
from mindbreakers.interfaces.api.schemas import (  # noqa: E402
    ActionRequest,
    ActionResponse,
    AuthResponse,
    BulkWhitelistResponse,
    CancelResponse,
    CommandCreate,
    CommandResponse,
    SessionResponse,
    SignInRequest,
    SignUpRequest,
    StreamsResponse,
    WatchResponse,
    WhitelistChange,
)
from mindbreakers.interfaces.api.security import (  # noqa: E402
    get_rate_limit_string,
    limiter,
    verify_api_key,
)
from mindbreakers.interfaces.api.services import DashboardServices  # noqa: E402
from mindbreakers.utils import configure_logging, set_request_id, setup_logfire  # noqa: E402

logger = logging.getLogger(__name__)

ApiKey = Annotated[str, Depends(verify_api_key)]


def get_services(request: Request) -> DashboardServices:
    """Dependency returning the wired dashboard components."""
    services = getattr(request.app.state, "services", None)
    if services is None:
        raise HTTPException(status_code=503, detail="Service is starting up")
    return services


Services = Annotated[DashboardServices, Depends(get_services)]


def require_admin(services: Services) -> DashboardServices:
    """Dependency allowing only a signed-in admin through."""
    if services.holder.session is None:
        raise NotAuthenticatedError()
    if not services.sessions.is_admin:
        raise HTTPException(status_code=403, detail="Admin access required")
    return services


AdminServices = Annotated[DashboardServices, Depends(require_admin)]

WaitSeconds = Annotated[float, Query(ge=0, le=60, description="Seconds to wait for a change")]


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler for startup/shutdown."""
    configure_logging(json_output=settings.log_json)
    setup_logfire(settings, app)

    services = getattr(app.state, "services", None) or DashboardServices.build(settings)
    app.state.services = services

    lifecycle = get_lifecycle_manager()
    services.register(lifecycle)
    await lifecycle.startup()

    yield

    await lifecycle.shutdown()
    logger.info("Shutting down...")


app = FastAPI(
    title="MindBreakers Dashboard API",
    description="Game server administration and community dashboard",
    version=__version__,
    lifespan=lifespan,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, _rate_limit_exceeded_handler)


@app.middleware("http")
async def request_id_middleware(
    request: Request, call_next: Callable[[Request], Awaitable[Response]]
) -> Response:
    """Tag every log line of a request with its id."""
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    set_request_id(request_id)
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _error_handler(status_code: int) -> Callable[[Request, Exception], Awaitable[JSONResponse]]:
    async def handler(request: Request, exc: Exception) -> JSONResponse:
        if status_code >= 500:
            logger.error("%s %s failed: %s", request.method, request.url.path, exc)
        return JSONResponse(status_code=status_code, content={"detail": str(exc)})

    return handler


app.add_exception_handler(ValidationError, _error_handler(400))
app.add_exception_handler(NotAuthenticatedError, _error_handler(401))
app.add_exception_handler(NotConfiguredError, _error_handler(503))
app.add_exception_handler(ApiError, _error_handler(502))
app.add_exception_handler(BackendError, _error_handler(502))


def _command_response(command: Command) -> CommandResponse:
    duration = command_duration(command)
    return CommandResponse(
        **command.to_dict(),
        status_label=format_command_status(command.status),
        status_color=status_color(command.status),
        duration_seconds=duration.total_seconds() if duration is not None else None,
    )


def _auth_response(result: AuthResult, failure_status: int) -> AuthResponse:
    if result.error == AUTH_UNAVAILABLE:
        raise HTTPException(status_code=503, detail=result.error)
    if result.error:
        raise HTTPException(status_code=failure_status, detail=result.error)
    return AuthResponse(ok=True, url=result.url)


# ============================================================================
# Health and session
# ============================================================================


@app.get("/health")
@limiter.limit(get_rate_limit_string)
async def health_check(request: Request) -> dict[str, Any]:
    """Health check endpoint.

    Returns:
        Dictionary with health status and backend availability.
    """
    services = getattr(request.app.state, "services", None)
    return {
        "status": "healthy",
        "version": __version__,
        "backend_configured": bool(services and services.backend.configured),
        "authenticated": bool(services and services.holder.session),
    }


@app.post("/auth/sign-in", response_model=AuthResponse)
@limiter.limit(get_rate_limit_string)
async def sign_in(
    request: Request, body: SignInRequest, services: Services, _api_key: ApiKey
) -> AuthResponse:
    """Sign in with email and password."""
    result = await services.sessions.sign_in(body.email, body.password)
    return _auth_response(result, 401)


@app.post("/auth/sign-up", response_model=AuthResponse)
@limiter.limit(get_rate_limit_string)
async def sign_up(
    request: Request, body: SignUpRequest, services: Services, _api_key: ApiKey
) -> AuthResponse:
    """Create an account."""
    result = await services.sessions.sign_up(body.email, body.password, body.metadata)
    return _auth_response(result, 400)


@app.post("/auth/sign-out", response_model=AuthResponse)
@limiter.limit(get_rate_limit_string)
async def sign_out(request: Request, services: Services, _api_key: ApiKey) -> AuthResponse:
    await services.sessions.sign_out()
    return AuthResponse(ok=True)


@app.get("/auth/oauth/{provider}", response_model=AuthResponse)
@limiter.limit(get_rate_limit_string)
async def oauth_url(
    request: Request, provider: str, services: Services, _api_key: ApiKey
) -> AuthResponse:
    """Get the provider redirect URL for an OAuth sign-in.

    Steam goes through OpenID rather than the auth service and is only
    available against a local development backend.
    """
    if provider == "steam":
        result = services.sessions.sign_in_with_steam()
    else:
        result = services.sessions.sign_in_with_oauth(provider)
    return _auth_response(result, 400)


@app.get("/auth/session", response_model=SessionResponse)
@limiter.limit(get_rate_limit_string)
async def current_session(
    request: Request, services: Services, _api_key: ApiKey
) -> SessionResponse:
    session = services.holder.session
    return SessionResponse(
        authenticated=session is not None,
        loading=services.sessions.loading,
        user_id=session.user.id if session else None,
        email=session.user.email if session else None,
        is_admin=services.sessions.is_admin,
        user_data=services.holder.api_user_data,
    )


# ============================================================================
# Server stats
# ============================================================================


@app.get("/servers/stats")
@limiter.limit(get_rate_limit_string)
async def list_server_stats(
    request: Request, services: Services, _api_key: ApiKey
) -> list[dict[str, Any]]:
    stats = await services.commands.get_all_servers_stats()
    return [s.to_dict() for s in stats]


@app.get("/servers/{server_id}/stats")
@limiter.limit(get_rate_limit_string)
async def get_server_stats(
    request: Request, server_id: str, services: Services, _api_key: ApiKey
) -> dict[str, Any]:
    stats = await services.commands.get_server_stats(server_id)
    if stats is None:
        raise HTTPException(status_code=404, detail=f"No stats for server {server_id}")
    return stats.to_dict()


@app.get("/servers/{server_id}/stats/watch", response_model=WatchResponse)
@limiter.limit(get_rate_limit_string)
async def watch_server_stats(
    request: Request,
    server_id: str,
    services: Services,
    _api_key: ApiKey,
    wait: WaitSeconds = 25.0,
) -> WatchResponse:
    """Long-poll a server's stats until realtime reports a change."""
    async with ServerStatsView(services.commands, server_id) as view:
        changed = await view.wait_for_change(wait)
        if view.error:
            raise HTTPException(status_code=502, detail=view.error)
        return WatchResponse(
            changed=changed, data=view.stats.to_dict() if view.stats else None
        )


@app.get("/servers/{server_id}/commands/watch", response_model=WatchResponse)
@limiter.limit(get_rate_limit_string)
async def watch_server_commands(
    request: Request,
    server_id: str,
    services: Services,
    _api_key: ApiKey,
    wait: WaitSeconds = 25.0,
    limit: Annotated[int, Query(ge=1, le=200)] = 50,
) -> WatchResponse:
    """Long-poll a server's command history until a command changes.

    Returns:
        Whether anything changed, and the history with the change applied.
    """
    async with CommandHistoryView(services.commands, server_id, limit=limit) as view:
        changed = await view.wait_for_change(wait)
        if view.error:
            raise HTTPException(status_code=502, detail=view.error)
        return WatchResponse(
            changed=changed,
            data=[_command_response(c).model_dump() for c in view.commands],
        )


# ============================================================================
# Command queue
# ============================================================================


@app.get("/commands", response_model=list[CommandResponse])
@limiter.limit(get_rate_limit_string)
async def list_commands(
    request: Request,
    services: Services,
    _api_key: ApiKey,
    server_id: str | None = None,
    status: str | None = None,
    limit: Annotated[int | None, Query(ge=1)] = None,
) -> list[CommandResponse]:
    """List commands, most recent first. The limit is capped at 200."""
    filters = CommandHistoryFilters(server_id=server_id, status=status, limit=limit)
    commands = await services.commands.get_command_history(filters)
    return [_command_response(c) for c in commands]


@app.get("/commands/{command_id}", response_model=CommandResponse)
@limiter.limit(get_rate_limit_string)
async def get_command(
    request: Request, command_id: str, services: Services, _api_key: ApiKey
) -> CommandResponse:
    return _command_response(await _find_command(services, command_id))


async def _find_command(services: DashboardServices, command_id: str) -> Command:
    try:
        command = await services.commands.get_command_status(command_id)
    except ApiError as e:
        if e.message == COMMAND_NOT_FOUND:
            raise HTTPException(status_code=404, detail=e.message) from e
        raise
    if command is None:
        raise HTTPException(status_code=404, detail=COMMAND_NOT_FOUND)
    return command


@app.get("/commands/{command_id}/watch", response_model=WatchResponse)
@limiter.limit(get_rate_limit_string)
async def watch_command(
    request: Request,
    command_id: str,
    services: Services,
    _api_key: ApiKey,
    wait: WaitSeconds = 25.0,
) -> WatchResponse:
    """Long-poll one command until the worker moves it along."""
    updates: list[Command] = []
    updated = asyncio.Event()

    def on_update(command: Command) -> None:
        updates.append(command)
        updated.set()

    subscription = services.commands.subscribe_to_command_status(command_id, on_update)
    try:
        command = await _find_command(services, command_id)
        try:
            await asyncio.wait_for(updated.wait(), wait)
        except asyncio.TimeoutError:
            pass
    finally:
        subscription.unsubscribe()

    if updates:
        command = updates[-1]
    return WatchResponse(changed=bool(updates), data=_command_response(command).model_dump())


@app.post("/commands", response_model=CommandResponse, status_code=201)
@limiter.limit(get_rate_limit_string)
async def create_command(
    request: Request, body: CommandCreate, services: Services, _api_key: ApiKey
) -> CommandResponse:
    """Queue an RCON command for the worker."""
    command = await services.commands.create_server_command(
        body.server_id,
        body.command_type,
        body.rcon_command,
        params=body.params,
        description=body.description,
    )
    return _command_response(command)


@app.post("/commands/{command_id}/cancel", response_model=CancelResponse)
@limiter.limit(get_rate_limit_string)
async def cancel_command(
    request: Request, command_id: str, services: Services, _api_key: ApiKey
) -> CancelResponse:
    """Cancel a pending command. Commands already picked up are left alone."""
    cancelled = await services.commands.cancel_command(command_id)
    return CancelResponse(command_id=command_id, cancelled=cancelled)


QUICK_ACTIONS = ("restart", "announce", "kick", "ban", "custom")


@app.post("/servers/{server_id}/actions/{action}", response_model=ActionResponse)
@limiter.limit(get_rate_limit_string)
async def run_quick_action(
    request: Request,
    server_id: str,
    action: str,
    body: ActionRequest,
    services: Services,
    _api_key: ApiKey,
) -> ActionResponse:
    """Run one of the quick admin actions against a server.

    Returns:
        The toast shown for the action and the queued command.

    Raises:
        HTTPException: 404 for an unknown action, 400 when the action
            was rejected or failed to queue.
    """
    if action not in QUICK_ACTIONS:
        raise HTTPException(status_code=404, detail=f"Unknown action '{action}'")

    actions = QuickActions(services.commands, server_id, toasts=services.toasts)
    if action == "restart":
        command = await actions.restart(confirmed=body.confirmed)
    elif action == "announce":
        command = await actions.announce(body.message or "")
    elif action == "kick":
        command = await actions.kick(body.player or "", body.reason)
    elif action == "ban":
        command = await actions.ban(body.player or "", body.reason, confirmed=body.confirmed)
    else:
        command = await actions.custom(body.command or "", body.description)

    toast = services.toasts.current
    message = toast.message if toast else ""
    if command is None:
        raise HTTPException(status_code=400, detail=message or "Failed to queue command")
    return ActionResponse(
        ok=toast is not None and toast.kind == SUCCESS,
        message=message,
        command=_command_response(command),
    )


# ============================================================================
# Steam OpenID
# ============================================================================


def _default_return_to() -> str:
    return f"{settings.frontend_url.rstrip('/')}/auth/steam-callback"


@app.get("/auth/steam/login")
async def steam_login(return_to: str | None = None) -> RedirectResponse:
    """Send the browser to Steam's OpenID login page."""
    url = build_login_url(settings.resolved_steam_callback_url, return_to or _default_return_to())
    logger.info("Redirecting to Steam OpenID login")
    return RedirectResponse(url, status_code=302)


@app.get("/auth/steam/callback")
async def steam_callback(request: Request, services: Services) -> RedirectResponse:
    """Verify Steam's callback and send the browser back to the dashboard."""
    params = dict(request.query_params)
    return_to = params.pop("return_to", None) or _default_return_to()
    result = await services.steam.handle_callback(params)
    if not result.ok:
        return RedirectResponse(
            redirect_with_error(return_to, result.error or "Steam authentication failed"),
            status_code=302,
        )
    return RedirectResponse(redirect_with_success(return_to, result), status_code=302)


# ============================================================================
# Live streams
# ============================================================================


@app.get("/streams/live", response_model=StreamsResponse)
@limiter.limit(get_rate_limit_string)
async def live_streams(
    request: Request, services: Services, _api_key: ApiKey, refresh: bool = False
) -> StreamsResponse:
    """Latest live-status snapshot of community streamers.

    Args:
        refresh: Poll Kick now instead of returning the cached snapshot.
    """
    poller = services.poller
    if refresh or (poller.last_updated is None and poller.loading):
        await poller.refresh()
    last_updated = poller.last_updated
    return StreamsResponse(
        streamers=poller.streamers,
        loading=poller.loading,
        error=poller.error,
        last_updated=last_updated.astimezone(timezone.utc).isoformat() if last_updated else None,
    )


@app.get("/streams/active")
@limiter.limit(get_rate_limit_string)
async def active_streamers(
    request: Request,
    services: Services,
    _api_key: ApiKey,
    game: str = "all",
    status: Annotated[str, Query(alias="filter")] = "all",
) -> list[dict[str, Any]]:
    """Registered and connected streamers, live first, then online, then offline.

    Args:
        game: Game slug, or "all".
        status: One of all, live, online, offline.
    """
    if status not in STATUS_FILTERS:
        allowed = ", ".join(STATUS_FILTERS)
        raise HTTPException(status_code=400, detail=f"filter must be one of {allowed}")
    streamers = await fetch_active_streamers(services.backend, game, status)
    return [asdict(s) for s in streamers]


# ============================================================================
# Admin whitelist
# ============================================================================


@app.get("/admin/users")
@limiter.limit(get_rate_limit_string)
async def admin_users(
    request: Request, services: AdminServices, _api_key: ApiKey, search: str | None = None
) -> list[dict[str, Any]]:
    """Users with their whitelist status, optionally filtered by name, email or Steam id."""
    users = await services.whitelist.list_users(search)
    return [u.to_dict() for u in users]


@app.get("/admin/whitelist")
@limiter.limit(get_rate_limit_string)
async def admin_whitelist(
    request: Request, services: AdminServices, _api_key: ApiKey
) -> list[dict[str, Any]]:
    entries = await services.whitelist.get_whitelist()
    return [e.to_dict() for e in entries]


@app.post("/admin/whitelist", response_model=BulkWhitelistResponse)
@limiter.limit(get_rate_limit_string)
async def admin_whitelist_add(
    request: Request, body: WhitelistChange, services: AdminServices, _api_key: ApiKey
) -> BulkWhitelistResponse:
    """Whitelist users. Users the backend rejects are reported, the rest still go through."""
    result = await services.whitelist.bulk_add(body.user_ids)
    return BulkWhitelistResponse(succeeded=result.succeeded, failed=result.failed)


@app.post("/admin/whitelist/remove", response_model=BulkWhitelistResponse)
@limiter.limit(get_rate_limit_string)
async def admin_whitelist_remove(
    request: Request, body: WhitelistChange, services: AdminServices, _api_key: ApiKey
) -> BulkWhitelistResponse:
    result = await services.whitelist.bulk_remove(body.user_ids)
    return BulkWhitelistResponse(succeeded=result.succeeded, failed=result.failed)


@app.delete("/admin/whitelist/{user_id}", status_code=204)
@limiter.limit(get_rate_limit_string)
async def admin_whitelist_delete(
    request: Request, user_id: str, services: AdminServices, _api_key: ApiKey
) -> Response:
    await services.whitelist.remove(user_id)
    return Response(status_code=204)


def main() -> None:
    """Run the API with uvicorn."""
    import uvicorn

    uvicorn.run("mindbreakers.interfaces.api.main:app", host="0.0.0.0", port=8000)


if __name__ == "__main__":
    main()
