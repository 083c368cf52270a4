# mindbreakers/core/profile.py
"""Client for the community REST API (user sync, profiles, Steam linking).

Every call is authenticated with the current session's bearer token.
Without a session the call fails immediately with NotAuthenticatedError;
no request is sent.
"""

import logging
from typing import Any

import httpx

from mindbreakers.core.backend import Session
from mindbreakers.core.errors import ApiError, NotAuthenticatedError, ValidationError
from mindbreakers.core.session import SessionHolder

logger = logging.getLogger(__name__)

PLATFORMS = ("steam", "discord")


class ProfileClient:
    """Authenticated wrapper over the community REST API.

    Attributes:
        base_url: API root, e.g. http://localhost:8000/api/v1.
    """

    def __init__(
        self,
        base_url: str,
        holder: SessionHolder,
        client: httpx.AsyncClient | None = None,
        timeout: float = 20.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.holder = holder
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._owns_client = client is None

    async def call(
        self,
        endpoint: str,
        method: str = "GET",
        *,
        json_body: Any = None,
        params: dict[str, Any] | None = None,
        session: Session | None = None,
    ) -> Any:
        """Make an authenticated API call.

        Args:
            endpoint: Path below base_url, starting with "/".
            method: HTTP method.
            json_body: Optional JSON request body.
            params: Optional query parameters.
            session: Session to use instead of the holder's.

        Returns:
            Decoded JSON response.

        Raises:
            NotAuthenticatedError: If there is no active session.
            ApiError: On network failure or a non-2xx response.
        """
        session = session or self.holder.session
        if session is None:
            raise NotAuthenticatedError("No active session")

        try:
            response = await self._client.request(
                method,
                f"{self.base_url}{endpoint}",
                json=json_body,
                params=params,
                headers={
                    "Authorization": f"Bearer {session.access_token}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as e:
            logger.error("API call to %s failed: %s", endpoint, e)
            raise ApiError(f"API call failed: {e}") from e

        if response.is_error:
            logger.error("API error response (%d) from %s: %s", response.status_code, endpoint, response.text)
            raise ApiError(
                f"API call failed: {response.status_code} {response.reason_phrase}",
                details=response.text,
            )
        if not response.content:
            return None
        return response.json()

    async def sync_user(self, session: Session | None = None) -> Any:
        """Sync the signed-in user to the community database."""
        return await self.call("/auth/me", session=session)

    async def get_profile(self, force_refresh: bool = False) -> Any:
        params = {"force_refresh": "true"} if force_refresh else None
        return await self.call("/profile/me", params=params)

    async def refresh_platform(self, platform: str) -> Any:
        if platform not in PLATFORMS:
            raise ValidationError(f"Unsupported platform: {platform}")
        return await self.call("/profile/refresh", "POST", params={"platform": platform})

    async def get_linking_status(self) -> Any:
        return await self.call("/profile/linking-status")

    async def init_steam_link(self, return_url: str) -> Any:
        response = await self.call(
            "/steam-link-secure/init-link", "POST", json_body={"return_url": return_url}
        )
        if not response or not response.get("steam_auth_url"):
            raise ApiError("Invalid response from init-link - missing steam_auth_url")
        return response

    async def steam_link_status(self) -> Any:
        return await self.call("/steam-link-secure/status")

    async def unlink_steam(self) -> Any:
        return await self.call("/steam-link-secure/unlink", "DELETE")

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()
