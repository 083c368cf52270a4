# tests/test_steam.py
"""Tests for Steam OpenID sign-in."""

from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from mindbreakers.core.steam import (
    STEAM_PLAYER_SUMMARIES_URL,
    SteamAuthResult,
    SteamOpenID,
    SteamPlayer,
    build_login_url,
    extract_steam_id,
    redirect_with_error,
    redirect_with_success,
)

STEAM_ID = "76561198012345678"
CLAIMED_ID = f"https://steamcommunity.com/openid/id/{STEAM_ID}"


def callback_params(**overrides) -> dict[str, str]:
    params = {
        "openid.ns": "http://specs.openid.net/auth/2.0",
        "openid.mode": "id_res",
        "openid.claimed_id": CLAIMED_ID,
        "openid.identity": CLAIMED_ID,
        "openid.sig": "c2lnbmF0dXJl",
        "openid.signed": "signed,op_endpoint,claimed_id,identity",
    }
    params.update(overrides)
    return params


def steam_client(is_valid: bool, players: list[dict] | None = None) -> tuple[httpx.AsyncClient, list]:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if str(request.url).startswith(STEAM_PLAYER_SUMMARIES_URL):
            return httpx.Response(200, json={"response": {"players": players or []}})
        body = "ns:http://specs.openid.net/auth/2.0\nis_valid:%s\n" % ("true" if is_valid else "false")
        return httpx.Response(200, text=body)

    return httpx.AsyncClient(transport=httpx.MockTransport(handler)), seen


class TestLoginUrl:
    def test_build_login_url(self):
        url = build_login_url(
            "http://localhost:8000/auth/steam/callback", "http://localhost:5173/profile"
        )

        query = parse_qs(urlsplit(url).query)
        assert url.startswith("https://steamcommunity.com/openid/login?")
        assert query["openid.mode"] == ["checkid_setup"]
        assert query["openid.realm"] == ["http://localhost:8000"]
        assert query["openid.claimed_id"] == ["http://specs.openid.net/auth/2.0/identifier_select"]
        return_to = query["openid.return_to"][0]
        assert return_to.startswith("http://localhost:8000/auth/steam/callback?")
        assert parse_qs(urlsplit(return_to).query)["return_to"] == ["http://localhost:5173/profile"]

    @pytest.mark.parametrize(
        "claimed_id,expected",
        [
            (CLAIMED_ID, STEAM_ID),
            ("https://steamcommunity.com/openid/id/abc", None),
            ("", None),
            (None, None),
        ],
    )
    def test_extract_steam_id(self, claimed_id, expected):
        assert extract_steam_id(claimed_id) == expected


class TestRedirects:
    def test_error_redirect(self):
        url = redirect_with_error("http://localhost:5173/profile?tab=links", "Steam authentication was cancelled")

        query = parse_qs(urlsplit(url).query)
        assert query["tab"] == ["links"]
        assert query["steam_error"] == ["Steam authentication was cancelled"]

    def test_success_redirect(self):
        result = SteamAuthResult(steam_id=STEAM_ID, player=SteamPlayer(STEAM_ID, "Gordon"))

        query = parse_qs(urlsplit(redirect_with_success("http://localhost:5173/", result)).query)

        assert query["steam_success"] == ["true"]
        assert query["steam_id"] == [STEAM_ID]
        assert query["steam_name"] == ["Gordon"]

    def test_display_name_fallback(self):
        assert SteamAuthResult(steam_id=STEAM_ID).display_name == "Steam User 5678"


class TestHandleCallback:
    """Tests for callback verification."""

    @pytest.mark.asyncio
    async def test_valid_callback(self):
        """Test a verified callback yields the Steam id."""
        client, seen = steam_client(is_valid=True)
        steam = SteamOpenID(client)

        result = await steam.handle_callback(callback_params())
        await client.aclose()

        assert result.ok
        assert result.steam_id == STEAM_ID
        assert result.player is None
        verify_body = parse_qs(seen[0].content.decode())
        assert verify_body["openid.mode"] == ["check_authentication"]
        assert verify_body["openid.sig"] == ["c2lnbmF0dXJl"]

    @pytest.mark.asyncio
    async def test_invalid_signature(self):
        client, _ = steam_client(is_valid=False)

        result = await SteamOpenID(client).handle_callback(callback_params())
        await client.aclose()

        assert not result.ok
        assert result.error == "Steam authentication verification failed"

    @pytest.mark.asyncio
    async def test_cancelled(self):
        client, seen = steam_client(is_valid=True)

        result = await SteamOpenID(client).handle_callback({"openid.mode": "cancel"})
        await client.aclose()

        assert result.error == "Steam authentication was cancelled"
        assert seen == []

    @pytest.mark.asyncio
    async def test_unexpected_mode(self):
        client, _ = steam_client(is_valid=True)

        result = await SteamOpenID(client).handle_callback({"openid.mode": "checkid_setup"})
        await client.aclose()

        assert result.error == "Invalid Steam authentication response"

    @pytest.mark.asyncio
    async def test_malformed_claimed_id(self):
        client, _ = steam_client(is_valid=True)
        params = callback_params(**{"openid.claimed_id": "https://evil.example/id/"})

        result = await SteamOpenID(client).handle_callback(params)
        await client.aclose()

        assert result.error == "Invalid Steam ID format"

    @pytest.mark.asyncio
    async def test_player_summary_with_api_key(self):
        client, _ = steam_client(
            is_valid=True,
            players=[{"steamid": STEAM_ID, "personaname": "Gordon", "avatarfull": "https://img/a.jpg"}],
        )

        result = await SteamOpenID(client, api_key="steam-key").handle_callback(callback_params())
        await client.aclose()

        assert result.player is not None
        assert result.player.persona_name == "Gordon"
        assert result.display_name == "Gordon"

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "player_response",
        [
            httpx.Response(200, text="<html>Service Unavailable</html>"),
            httpx.Response(200, json=["unexpected"]),
        ],
    )
    async def test_unreadable_player_summary_still_succeeds(self, player_response):
        """Test a verified login survives a garbled player summary."""

        def handler(request: httpx.Request) -> httpx.Response:
            if str(request.url).startswith(STEAM_PLAYER_SUMMARIES_URL):
                return player_response
            return httpx.Response(200, text="ns:http://specs.openid.net/auth/2.0\nis_valid:true\n")

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))

        result = await SteamOpenID(client, api_key="steam-key").handle_callback(callback_params())
        await client.aclose()

        assert result.ok
        assert result.steam_id == STEAM_ID
        assert result.player is None
