# mindbreakers/core/steam.py
"""Steam sign-in over OpenID 2.0.

Steam does not speak OAuth2. The flow is:

1. Redirect the browser to Steam's OpenID endpoint with
   ``openid.mode=checkid_setup`` and a ``return_to`` callback.
2. Steam redirects back with ``openid.*`` parameters.
3. Re-post every ``openid.*`` parameter to Steam with
   ``openid.mode=check_authentication``; the body must contain
   ``is_valid:true``.
4. Take the 64-bit Steam id from ``claimed_id``
   (``https://steamcommunity.com/openid/id/<digits>``).
"""

import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

import httpx

logger = logging.getLogger(__name__)

STEAM_OPENID_URL = "https://steamcommunity.com/openid/login"
STEAM_PLAYER_SUMMARIES_URL = "https://api.steampowered.com/ISteamUser/GetPlayerSummaries/v2/"
OPENID_NS = "http://specs.openid.net/auth/2.0"
IDENTIFIER_SELECT = "http://specs.openid.net/auth/2.0/identifier_select"

_STEAM_ID_RE = re.compile(r"/id/(\d+)")


@dataclass
class SteamPlayer:
    steam_id: str
    persona_name: str
    profile_url: str | None = None
    avatar_url: str | None = None


@dataclass
class SteamAuthResult:
    """Outcome of a Steam callback.

    Attributes:
        steam_id: Verified 64-bit Steam id, None on failure.
        error: Failure message, None on success.
        player: Player summary when a Steam Web API key is configured.
    """

    steam_id: str | None = None
    error: str | None = None
    player: SteamPlayer | None = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.steam_id is not None

    @property
    def display_name(self) -> str:
        if self.player and self.player.persona_name:
            return self.player.persona_name
        if self.steam_id:
            return f"Steam User {self.steam_id[-4:]}"
        return ""


def _with_query(url: str, params: Mapping[str, str]) -> str:
    parts = urlsplit(url)
    query = dict(parse_qsl(parts.query))
    query.update(params)
    return urlunsplit(parts._replace(query=urlencode(query)))


def build_login_url(callback_url: str, return_to: str) -> str:
    """Build the Steam OpenID login URL.

    Args:
        callback_url: Our callback endpoint.
        return_to: Where the callback should send the browser afterwards;
            carried as a query parameter of the callback.

    Returns:
        URL to redirect the browser to.
    """
    callback = _with_query(callback_url, {"return_to": return_to})
    parts = urlsplit(callback_url)
    params = {
        "openid.ns": OPENID_NS,
        "openid.mode": "checkid_setup",
        "openid.return_to": callback,
        "openid.realm": f"{parts.scheme}://{parts.netloc}",
        "openid.identity": IDENTIFIER_SELECT,
        "openid.claimed_id": IDENTIFIER_SELECT,
    }
    return f"{STEAM_OPENID_URL}?{urlencode(params)}"


def extract_steam_id(claimed_id: str | None) -> str | None:
    """Extract the Steam id from a claimed_id URL, None if malformed."""
    if not claimed_id:
        return None
    match = _STEAM_ID_RE.search(claimed_id)
    return match.group(1) if match else None


def redirect_with_error(return_to: str, message: str) -> str:
    return _with_query(return_to, {"steam_error": message})


def redirect_with_success(return_to: str, result: SteamAuthResult) -> str:
    params = {"steam_success": "true", "steam_id": result.steam_id or ""}
    if result.player and result.player.persona_name:
        params["steam_name"] = result.player.persona_name
    return _with_query(return_to, params)


class SteamOpenID:
    """Verifies Steam OpenID callbacks.

    Example:
        >>> steam = SteamOpenID(httpx.AsyncClient())
        >>> result = await steam.handle_callback(dict(request.query_params))
        >>> result.steam_id
        '76561198012345678'
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str = "",
        openid_url: str = STEAM_OPENID_URL,
    ) -> None:
        self._client = client
        self.api_key = api_key
        self.openid_url = openid_url

    async def verify(self, params: Mapping[str, str]) -> bool:
        """Ask Steam to confirm the signed callback parameters."""
        verify_params = {k: v for k, v in params.items() if k.startswith("openid.")}
        verify_params["openid.mode"] = "check_authentication"

        response = await self._client.post(
            self.openid_url,
            content=urlencode(verify_params),
            headers={"Content-Type": "application/x-www-form-urlencoded"},
        )
        return "is_valid:true" in response.text

    async def get_player(self, steam_id: str) -> SteamPlayer | None:
        """Fetch the public player summary; None without an API key."""
        if not self.api_key:
            logger.warning("STEAM_API_KEY not configured, skipping player info fetch")
            return None
        response = await self._client.get(
            STEAM_PLAYER_SUMMARIES_URL, params={"key": self.api_key, "steamids": steam_id}
        )
        response.raise_for_status()
        players: list[dict[str, Any]] = (response.json().get("response") or {}).get("players") or []
        if not players:
            return None
        player = players[0]
        return SteamPlayer(
            steam_id=player.get("steamid", steam_id),
            persona_name=player.get("personaname", ""),
            profile_url=player.get("profileurl"),
            avatar_url=player.get("avatarfull"),
        )

    async def handle_callback(self, params: Mapping[str, str]) -> SteamAuthResult:
        """Validate a callback from Steam and extract the Steam id."""
        mode = params.get("openid.mode")
        if mode == "cancel":
            logger.info("User cancelled Steam login")
            return SteamAuthResult(error="Steam authentication was cancelled")
        if mode != "id_res":
            logger.error("Invalid OpenID mode: %s", mode)
            return SteamAuthResult(error="Invalid Steam authentication response")

        try:
            valid = await self.verify(params)
        except httpx.HTTPError as e:
            logger.error("Steam OpenID verification request failed: %s", e)
            return SteamAuthResult(error="Steam authentication verification failed")
        if not valid:
            logger.error("Steam OpenID verification failed")
            return SteamAuthResult(error="Steam authentication verification failed")

        claimed_id = params.get("openid.claimed_id")
        if not claimed_id:
            return SteamAuthResult(error="Invalid Steam response: missing claimed_id")
        steam_id = extract_steam_id(claimed_id)
        if steam_id is None:
            logger.error("Failed to extract Steam ID from: %s", claimed_id)
            return SteamAuthResult(error="Invalid Steam ID format")

        logger.info("Steam authentication successful for Steam ID: %s", steam_id)
        try:
            player = await self.get_player(steam_id)
        except (httpx.HTTPError, ValueError, AttributeError) as e:
            logger.warning("Steam player lookup failed for %s: %s", steam_id, e)
            player = None
        return SteamAuthResult(steam_id=steam_id, player=player)
