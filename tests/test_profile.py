# tests/test_profile.py
"""Tests for the authenticated REST API client."""

import httpx
import pytest

from mindbreakers.core.errors import ApiError, NotAuthenticatedError, ValidationError
from mindbreakers.core.profile import ProfileClient

BASE_URL = "http://localhost:8000/api/v1"


def profile_client(holder, status: int = 200, body=None) -> tuple[ProfileClient, list, httpx.AsyncClient]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(status, json=body if body is not None else {})

    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return ProfileClient(BASE_URL, holder, client=client), seen, client


class TestProfileClient:
    @pytest.mark.asyncio
    async def test_no_session_sends_nothing(self, holder):
        """Test calls without a session fail before any request."""
        profile, seen, client = profile_client(holder)

        with pytest.raises(NotAuthenticatedError, match="No active session"):
            await profile.get_profile()
        await client.aclose()

        assert seen == []

    @pytest.mark.asyncio
    async def test_bearer_token(self, signed_in_holder):
        profile, seen, client = profile_client(signed_in_holder, body={"id": 1})

        data = await profile.sync_user()
        await client.aclose()

        assert data == {"id": 1}
        assert seen[0].url.path == "/api/v1/auth/me"
        assert seen[0].headers["Authorization"] == f"Bearer {signed_in_holder.access_token}"

    @pytest.mark.asyncio
    async def test_error_status(self, signed_in_holder):
        profile, _, client = profile_client(signed_in_holder, status=500, body={"detail": "boom"})

        with pytest.raises(ApiError, match="API call failed: 500 Internal Server Error"):
            await profile.get_linking_status()
        await client.aclose()

    @pytest.mark.asyncio
    async def test_force_refresh_param(self, signed_in_holder):
        profile, seen, client = profile_client(signed_in_holder)

        await profile.get_profile(force_refresh=True)
        await client.aclose()

        assert seen[0].url.params["force_refresh"] == "true"

    @pytest.mark.asyncio
    async def test_refresh_platform_validates(self, signed_in_holder):
        profile, seen, client = profile_client(signed_in_holder)

        with pytest.raises(ValidationError):
            await profile.refresh_platform("twitch")
        await client.aclose()

        assert seen == []

    @pytest.mark.asyncio
    async def test_init_steam_link_requires_auth_url(self, signed_in_holder):
        profile, _, client = profile_client(signed_in_holder, body={"state": "abc"})

        with pytest.raises(ApiError, match="missing steam_auth_url"):
            await profile.init_steam_link("http://localhost:5173/profile")
        await client.aclose()
