# mindbreakers/core/streams.py
"""Kick live-status poller for community streamers.

Streamers are listed by the ``get_live_streamers`` RPC. Their Kick
channels are checked in small batches, the results are pushed back with
``batch_update_kick_status`` and merged into the in-memory list, live
streamers first. The poll runs on an APScheduler interval job that
exists only between start() and shutdown().

combine_streamers() merges the streamers connected to game servers
(``get_active_streamers``) into the registered streamer program
(``get_registered_streamers``) for the live / online / offline listing.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

import httpx
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from mindbreakers.core.backend import Backend, BackendError
from mindbreakers.core.errors import ApiError, NotConfiguredError, ValidationError

logger = logging.getLogger(__name__)

KICK_CHANNEL_URL = "https://kick.com/api/v2/channels/{username}"
JOB_ID = "kick-live-status"
BATCH_SIZE = 5
BATCH_DELAY_S = 0.2


@dataclass(frozen=True)
class KickStatus:
    is_live: bool = False
    viewer_count: int = 0
    stream_title: str | None = None
    thumbnail_url: str | None = None


OFFLINE = KickStatus()


async def fetch_kick_status(client: httpx.AsyncClient, username: str) -> KickStatus:
    """Check one Kick channel. Any failure reads as offline."""
    try:
        response = await client.get(
            KICK_CHANNEL_URL.format(username=username), headers={"Accept": "application/json"}
        )
    except httpx.HTTPError as e:
        logger.warning("Failed to fetch Kick status for %s: %s", username, e)
        return OFFLINE

    if response.is_error:
        logger.debug("Kick API returned %d for %s", response.status_code, username)
        return OFFLINE

    try:
        livestream = response.json().get("livestream")
    except ValueError:
        return OFFLINE
    if not livestream or not livestream.get("is_live"):
        return OFFLINE

    return KickStatus(
        is_live=True,
        viewer_count=livestream.get("viewer_count") or 0,
        stream_title=livestream.get("session_title"),
        thumbnail_url=(livestream.get("thumbnail") or {}).get("url"),
    )


def _sort_key(streamer: dict[str, Any]) -> tuple[bool, int]:
    live = bool(streamer.get("kick_is_live") or streamer.get("twitch_is_live"))
    viewers = (streamer.get("kick_viewer_count") or 0) + (streamer.get("twitch_viewer_count") or 0)
    return (not live, -viewers)


class KickStatusPoller:
    """Polls Kick for every registered streamer on a fixed interval.

    Attributes:
        streamers: Latest merged streamer rows, live first.
        error: Message of the last failed refresh, None after a success.
        last_updated: When the last successful refresh finished.
    """

    def __init__(
        self,
        backend: Backend,
        client: httpx.AsyncClient,
        interval: int = 60,
        scheduler: AsyncIOScheduler | None = None,
        batch_size: int = BATCH_SIZE,
        batch_delay: float = BATCH_DELAY_S,
    ) -> None:
        self.backend = backend
        self.client = client
        self.interval = interval
        self.batch_size = batch_size
        self.batch_delay = batch_delay
        self._scheduler = scheduler or AsyncIOScheduler(timezone=timezone.utc)
        self._owns_scheduler = scheduler is None
        self.streamers: list[dict[str, Any]] = []
        self.error: str | None = None
        self.loading = True
        self.last_updated: datetime | None = None

    async def check_usernames(self, usernames: list[str]) -> dict[str, KickStatus]:
        """Check Kick channels in batches, pausing between batches."""
        results: dict[str, KickStatus] = {}
        for start in range(0, len(usernames), self.batch_size):
            batch = usernames[start : start + self.batch_size]
            statuses = await asyncio.gather(*(fetch_kick_status(self.client, u) for u in batch))
            results.update(zip(batch, statuses))
            if start + self.batch_size < len(usernames):
                await asyncio.sleep(self.batch_delay)
        return results

    async def refresh(self) -> list[dict[str, Any]]:
        """Run one poll cycle and return the merged streamer list."""
        try:
            streamers = await self.backend.rpc("get_live_streamers") or []
            usernames = [s["kick_username"] for s in streamers if s.get("kick_username")]
            statuses = await self.check_usernames(usernames)

            if statuses:
                updates = [
                    {
                        "kick_username": username,
                        "is_live": status.is_live,
                        "viewer_count": status.viewer_count,
                        "stream_title": status.stream_title,
                        "thumbnail_url": status.thumbnail_url,
                    }
                    for username, status in statuses.items()
                ]
                try:
                    await self.backend.rpc("batch_update_kick_status", {"p_updates": updates})
                except BackendError as e:
                    # the merged list below is still correct without the write-back
                    logger.debug("batch_update_kick_status: %s", e.message)

            merged = []
            for streamer in streamers:
                status = statuses.get(streamer.get("kick_username") or "")
                if status is not None:
                    streamer = {
                        **streamer,
                        "kick_is_live": status.is_live,
                        "kick_viewer_count": status.viewer_count,
                        "kick_stream_title": status.stream_title,
                        "kick_thumbnail": status.thumbnail_url,
                    }
                merged.append(streamer)
            merged.sort(key=_sort_key)

            self.streamers = merged
            self.error = None
            self.last_updated = datetime.now(timezone.utc)
        except BackendError as e:
            logger.error("Error refreshing Kick status: %s", e.message)
            self.error = e.message
        finally:
            self.loading = False
        return self.streamers

    def start(self) -> None:
        """Schedule the poll, running the first cycle immediately."""
        if self._scheduler.get_job(JOB_ID) is None:
            self._scheduler.add_job(
                self.refresh,
                "interval",
                seconds=self.interval,
                id=JOB_ID,
                next_run_time=datetime.now(timezone.utc),
                coalesce=True,
                max_instances=1,
            )
        if not self._scheduler.running:
            self._scheduler.start()
        logger.info("Kick live-status polling every %ds", self.interval)

    def shutdown(self, wait: bool = False) -> None:
        """Remove the poll job and stop the scheduler if this poller owns it."""
        if self._scheduler.get_job(JOB_ID) is not None:
            self._scheduler.remove_job(JOB_ID)
        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=wait)
        logger.info("Kick live-status polling stopped")

    @property
    def is_running(self) -> bool:
        return self._scheduler.running and self._scheduler.get_job(JOB_ID) is not None


STATUS_FILTERS = ("all", "live", "online", "offline")


@dataclass
class CombinedStreamer:
    """A registered or connected streamer with its computed live state."""

    id: str
    steam_id: str
    username: str
    display_name: str
    avatar_url: str | None = None
    kick_username: str | None = None
    twitch_username: str | None = None
    streaming_platform: str | None = None
    game_slug: str = "unknown"
    game_name: str = ""
    server_name: str = ""
    in_game_name: str | None = None
    is_live: bool = False
    is_connected: bool = False
    viewer_count: int = 0
    stream_title: str | None = None
    stream_thumbnail_url: str | None = None
    connected_at: str | None = None
    last_seen: str | None = None

    @property
    def state(self) -> str:
        if self.is_live:
            return "live"
        return "online" if self.is_connected else "offline"


def _from_registered(registered: dict[str, Any], active: dict[str, Any] | None) -> CombinedStreamer:
    active = active or {}
    steam_id = registered["steam_id"]
    kick_live = bool(registered.get("kick_is_live"))
    twitch_live = bool(registered.get("twitch_is_live"))
    platforms = registered.get("platforms") or []
    if active.get("streaming_platform"):
        platform = active["streaming_platform"]
    elif kick_live:
        platform = "kick"
    elif twitch_live:
        platform = "twitch"
    else:
        platform = platforms[0] if platforms else None
    return CombinedStreamer(
        id=active.get("id") or steam_id,
        steam_id=steam_id,
        username=(
            active.get("username")
            or registered.get("kick_username")
            or registered.get("twitch_username")
            or registered.get("player_name")
            or steam_id
        ),
        display_name=(
            active.get("display_name")
            or registered.get("twitch_display_name")
            or registered.get("player_name")
            or registered.get("kick_username")
            or "Unknown"
        ),
        avatar_url=active.get("avatar_url"),
        kick_username=registered.get("kick_username"),
        twitch_username=registered.get("twitch_username"),
        streaming_platform=platform,
        game_slug=active.get("game_slug") or "unknown",
        game_name=active.get("game_name") or "",
        server_name=active.get("server_name") or registered.get("connected_server") or "",
        in_game_name=active.get("in_game_name"),
        is_live=bool(active.get("is_live")) or kick_live or twitch_live,
        is_connected=True if active else bool(registered.get("is_connected")),
        viewer_count=active.get("viewer_count") or 0,
        stream_title=active.get("stream_title"),
        stream_thumbnail_url=active.get("stream_thumbnail_url"),
        connected_at=active.get("connected_at") or datetime.now(timezone.utc).isoformat(),
        last_seen=active.get("last_seen"),
    )


def _from_active(active: dict[str, Any]) -> CombinedStreamer:
    steam_id = active["steam_id"]
    username = (
        active.get("username")
        or active.get("kick_username")
        or active.get("twitch_username")
        or steam_id
    )
    return CombinedStreamer(
        id=active.get("id") or steam_id,
        steam_id=steam_id,
        username=username,
        display_name=active.get("display_name") or active.get("username") or "Unknown",
        avatar_url=active.get("avatar_url"),
        kick_username=active.get("kick_username"),
        twitch_username=active.get("twitch_username"),
        streaming_platform=active.get("streaming_platform"),
        game_slug=active.get("game_slug") or "unknown",
        game_name=active.get("game_name") or "",
        server_name=active.get("server_name") or "",
        in_game_name=active.get("in_game_name"),
        is_live=bool(active.get("is_live")),
        is_connected=True,
        viewer_count=active.get("viewer_count") or 0,
        stream_title=active.get("stream_title"),
        stream_thumbnail_url=active.get("stream_thumbnail_url"),
        connected_at=active.get("connected_at"),
        last_seen=active.get("last_seen"),
    )


def _timestamp(value: str | None) -> float:
    if not value:
        return 0.0
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return 0.0
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.timestamp()


def _combined_sort_key(streamer: CombinedStreamer) -> tuple[int, float, str]:
    if streamer.is_live:
        return (0, -streamer.viewer_count, "")
    if streamer.is_connected:
        return (1, -_timestamp(streamer.connected_at), "")
    return (2, 0.0, (streamer.display_name or streamer.username or "").casefold())


def combine_streamers(
    active: list[dict[str, Any]],
    registered: list[dict[str, Any]],
    game_slug: str = "all",
    status_filter: str = "all",
) -> list[CombinedStreamer]:
    """Merge connected streamers into the registered list.

    Registered streamers are enriched from the connected row with the same
    Steam id; connected streamers that are not registered are appended.
    The result is ordered live (most viewers first), then online (most
    recently connected first), then offline (alphabetical).

    Args:
        active: Rows from ``get_active_streamers``.
        registered: Rows from ``get_registered_streamers``.
        game_slug: Keep only streamers in this game, plus offline ones; "all" keeps everyone.
        status_filter: One of "all", "live", "online" or "offline".
    """
    if status_filter not in STATUS_FILTERS:
        raise ValidationError(f"Unknown streamer filter: {status_filter}")

    by_steam_id = {row["steam_id"]: row for row in active}
    registered_ids = {row["steam_id"] for row in registered}

    combined = [_from_registered(row, by_steam_id.get(row["steam_id"])) for row in registered]
    combined.extend(_from_active(row) for row in active if row["steam_id"] not in registered_ids)

    if game_slug != "all":
        combined = [s for s in combined if s.game_slug == game_slug or not s.is_connected]
    if status_filter == "live":
        combined = [s for s in combined if s.is_live]
    elif status_filter == "online":
        combined = [s for s in combined if s.is_connected and not s.is_live]
    elif status_filter == "offline":
        # live on a platform but not on a server still counts as offline here
        combined = [s for s in combined if not s.is_connected]

    combined.sort(key=_combined_sort_key)
    return combined


async def fetch_active_streamers(
    backend: Backend, game_slug: str = "all", status_filter: str = "all"
) -> list[CombinedStreamer]:
    """Read connected and registered streamers together and combine them."""
    if not backend.configured:
        raise NotConfiguredError()

    async def call(name: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        try:
            return await backend.rpc(name, params) or []
        except BackendError as e:
            logger.error("Error fetching streamers (%s): %s", name, e.message)
            raise ApiError(name, details=e) from e

    active, registered = await asyncio.gather(
        call("get_active_streamers", {"p_game_slug": None if game_slug == "all" else game_slug}),
        call("get_registered_streamers"),
    )
    return combine_streamers(active, registered, game_slug, status_filter)
