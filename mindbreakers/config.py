# mindbreakers/config.py
"""Application configuration using pydantic-settings.

Provides a centralized Settings class for all environment variables.
Supports both SUPABASE_* and the frontend-era VITE_SUPABASE_* names for
backward compatibility with existing .env files.
"""

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables.

    All settings are loaded from .env file and environment variables.
    Environment variables take precedence over .env file values.
    Every field is optional: without backend credentials the service runs
    in a degraded, read-only-empty mode instead of failing to start.
    """

    # Backend (Supabase project)
    supabase_url: str = Field(
        default="",
        validation_alias=AliasChoices("supabase_url", "vite_supabase_url"),
    )
    supabase_anon_key: str = Field(
        default="",
        validation_alias=AliasChoices("supabase_anon_key", "vite_supabase_anon_key"),
    )

    # External REST API (user sync, profiles, steam linking)
    api_base_url: str = Field(
        default="http://localhost:8000/api/v1",
        validation_alias=AliasChoices("api_base_url", "vite_api_url"),
    )

    # Redirect targets
    frontend_url: str = "http://localhost:5173"
    steam_callback_url: str = ""
    steam_api_key: str = ""

    # Session / sync behaviour
    session_init_timeout: float = 5.0
    user_sync_retries: int = 2
    user_sync_backoff: float = 2.0
    session_path: str = ""  # File that persists the auth session; empty keeps it in memory

    # Dashboard behaviour
    toast_timeout: float = 5.0
    live_status_interval: int = 60
    game_slug: str = "humanitz"  # Game whose whitelist the admin routes manage

    # API Security
    api_auth_key: str = ""  # Required for API access (X-API-Key header)
    api_rate_limit: int = 60  # Requests per minute

    # Observability
    logfire_token: str = ""
    log_json: bool = False

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        case_sensitive=False,
        populate_by_name=True,
    )

    @property
    def backend_configured(self) -> bool:
        """Whether both backend credentials are present.

        Returns:
            True if the Supabase URL and anonymous key are both set.
        """
        return bool(self.supabase_url and self.supabase_anon_key)

    @property
    def backend_is_local(self) -> bool:
        """Whether the backend points at a local development stack."""
        return "127.0.0.1" in self.supabase_url or "localhost" in self.supabase_url

    @property
    def resolved_steam_callback_url(self) -> str:
        """Get the Steam OpenID callback URL with fallback to the frontend.

        Returns:
            STEAM_CALLBACK_URL if set, otherwise <frontend_url>/auth/steam/callback.
        """
        return self.steam_callback_url or f"{self.frontend_url}/auth/steam/callback"


# Singleton instance - import this in your code
settings = Settings()
