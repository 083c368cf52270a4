# mindbreakers/interfaces/api/schemas.py
"""Pydantic models for FastAPI request/response validation.

Defines request and response schemas for the dashboard API endpoints.
"""

from typing import Any

from pydantic import BaseModel, Field


class SignInRequest(BaseModel):
    """Request body for POST /auth/sign-in."""

    email: str = Field(..., description="Account email")
    password: str = Field(..., description="Account password")


class SignUpRequest(BaseModel):
    """Request body for POST /auth/sign-up.

    Attributes:
        email: Account email.
        password: Account password.
        metadata: Optional profile metadata stored with the user.
    """

    email: str = Field(..., description="Account email")
    password: str = Field(..., description="Account password")
    metadata: dict[str, Any] | None = Field(
        None, description="Profile metadata stored with the auth user"
    )


class AuthResponse(BaseModel):
    """Outcome of an auth operation.

    Attributes:
        ok: True when the operation succeeded.
        error: Failure message, if any.
        url: Redirect target for OAuth / OpenID flows.
    """

    ok: bool = Field(..., description="Whether the operation succeeded")
    error: str | None = Field(None, description="Failure message")
    url: str | None = Field(None, description="Redirect target for OAuth flows")


class SessionResponse(BaseModel):
    """Current session as seen by the dashboard."""

    authenticated: bool
    loading: bool
    user_id: str | None = None
    email: str | None = None
    is_admin: bool = False
    user_data: Any = None


class CommandCreate(BaseModel):
    """Request body for POST /commands.

    Attributes:
        server_id: Target server.
        command_type: Command type tag (restart, announce, kick_player, ...).
        rcon_command: Literal console command.
        params: Structured parameters stored alongside the command.
        description: Human-readable summary.
    """

    server_id: str = Field(..., description="Target server")
    command_type: str = Field(..., description="Command type tag")
    rcon_command: str = Field(..., description="Literal console command")
    params: dict[str, Any] | None = Field(None, description="Structured parameters")
    description: str | None = Field(None, description="Human-readable summary")


class CommandResponse(BaseModel):
    """A row of the command queue."""

    id: str
    server_id: str
    command_type: str
    rcon_command: str
    status: str
    status_label: str = Field(..., description="Display label for the status")
    status_color: str = Field(..., description="Badge colour for the status")
    created_by: str | None = None
    created_at: str | None = None
    description: str | None = None
    params: dict[str, Any] = Field(default_factory=dict)
    result: str | None = None
    error_message: str | None = None
    started_at: str | None = None
    completed_at: str | None = None
    duration_seconds: float | None = Field(None, description="Run time so far")
    attempt_count: int = 0
    max_attempts: int = 3
    executor_hostname: str | None = None
    executor_pid: int | None = None


class CancelResponse(BaseModel):
    command_id: str
    cancelled: bool


class ActionRequest(BaseModel):
    """Request body for POST /servers/{server_id}/actions/{action}.

    Only the fields the chosen action reads are required:
    announce needs message, kick and ban need player, custom needs
    command, restart and ban need confirmed=true.
    """

    message: str | None = None
    player: str | None = None
    reason: str | None = None
    command: str | None = None
    description: str | None = None
    confirmed: bool = False


class ActionResponse(BaseModel):
    """Outcome of a quick action, mirroring the toast shown for it."""

    ok: bool
    message: str
    command: CommandResponse | None = None


class StreamsResponse(BaseModel):
    """Response body for GET /streams/live."""

    streamers: list[dict[str, Any]]
    loading: bool
    error: str | None = None
    last_updated: str | None = None


class WatchResponse(BaseModel):
    """Response body of the long-poll watch endpoints.

    Attributes:
        changed: True if a realtime change arrived before the wait ran out.
        data: Current state of the watched resource.
    """

    changed: bool
    data: Any = None


class WhitelistChange(BaseModel):
    """Request body for POST /admin/whitelist and /admin/whitelist/remove."""

    user_ids: list[str] = Field(..., min_length=1, description="Users to add or remove")


class BulkWhitelistResponse(BaseModel):
    succeeded: list[str]
    failed: dict[str, str] = Field(
        default_factory=dict, description="User id to error for rejected users"
    )
