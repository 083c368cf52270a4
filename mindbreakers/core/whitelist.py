# mindbreakers/core/whitelist.py
"""Game whitelist administration.

Admins list registered users, see who is whitelisted for a game and add
or remove users one at a time or in bulk. Whitelist state is owned by the
backend and reached through the ``get_game_whitelist``,
``add_to_whitelist`` and ``remove_from_whitelist`` RPCs.
"""

import logging
from dataclasses import asdict, dataclass, field
from typing import Any

from mindbreakers.core.backend import Backend, BackendError
from mindbreakers.core.commands import validate_non_empty
from mindbreakers.core.errors import ApiError, NotAuthenticatedError, NotConfiguredError
from mindbreakers.core.session import SessionHolder

logger = logging.getLogger(__name__)

USERS_TABLE = "users"
DEFAULT_GAME_SLUG = "humanitz"


@dataclass
class AdminUser:
    """A registered user as listed on the admin page."""

    id: str
    email: str | None = None
    steam_id: str | None = None
    discord_id: str | None = None
    kick_id: str | None = None
    display_name: str | None = None
    is_admin: bool = False
    created_at: str | None = None
    whitelisted: bool = False

    @classmethod
    def from_row(cls, row: dict[str, Any], whitelisted: bool = False) -> "AdminUser":
        return cls(
            id=str(row["id"]),
            email=row.get("email"),
            steam_id=row.get("steam_id"),
            discord_id=row.get("discord_id"),
            kick_id=row.get("kick_id"),
            display_name=row.get("display_name"),
            is_admin=bool(row.get("is_admin")),
            created_at=row.get("created_at"),
            whitelisted=whitelisted,
        )

    def matches(self, search: str) -> bool:
        """Case-insensitive match on display name, email or Steam id."""
        query = search.strip().lower()
        if not query:
            return True
        return any(
            query in value.lower()
            for value in (self.display_name, self.email, self.steam_id)
            if value
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class WhitelistEntry:
    user_id: str
    steam_id: str | None = None
    username: str | None = None
    email: str | None = None
    is_active: bool = True
    expires_at: str | None = None
    reason: str | None = None
    added_at: str | None = None
    added_by_username: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> "WhitelistEntry":
        return cls(
            user_id=str(row["user_id"]),
            steam_id=row.get("steam_id"),
            username=row.get("username"),
            email=row.get("email"),
            is_active=row.get("is_active", True),
            expires_at=row.get("expires_at"),
            reason=row.get("reason"),
            added_at=row.get("added_at"),
            added_by_username=row.get("added_by_username"),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class BulkResult:
    """Outcome of a bulk whitelist change.

    Attributes:
        succeeded: User ids the backend accepted.
        failed: User id to backend error message for rejected ids.
    """

    succeeded: list[str] = field(default_factory=list)
    failed: dict[str, str] = field(default_factory=dict)


class WhitelistAPI:
    """Admin access to users and the game whitelist.

    Example:
        >>> whitelist = WhitelistAPI(backend, holder)
        >>> users = await whitelist.list_users(search="gordon")
        >>> await whitelist.bulk_add([u.id for u in users if not u.whitelisted])
    """

    def __init__(
        self, backend: Backend, holder: SessionHolder, game_slug: str = DEFAULT_GAME_SLUG
    ) -> None:
        self.backend = backend
        self.holder = holder
        self.game_slug = game_slug

    def _require_session(self) -> None:
        if not self.backend.configured:
            raise NotConfiguredError()
        if self.holder.session is None:
            raise NotAuthenticatedError()

    async def get_whitelist(self) -> list[WhitelistEntry]:
        """Whitelist entries for the configured game; [] when unconfigured."""
        if not self.backend.configured:
            return []
        try:
            rows = await self.backend.rpc("get_game_whitelist", {"p_game_slug": self.game_slug})
        except BackendError as e:
            logger.error("Error fetching whitelist: %s", e.message)
            raise ApiError("Failed to fetch whitelist", details=e) from e
        return [WhitelistEntry.from_row(row) for row in rows or []]

    async def list_users(self, search: str | None = None) -> list[AdminUser]:
        """List users flagged with their whitelist status.

        Args:
            search: Optional filter on display name, email or Steam id.
        """
        if not self.backend.configured:
            return []
        try:
            rows = await self.backend.select(USERS_TABLE)
        except BackendError as e:
            logger.error("Error fetching users: %s", e.message)
            raise ApiError("Failed to fetch users", details=e) from e

        whitelisted = {entry.user_id for entry in await self.get_whitelist()}
        users = [AdminUser.from_row(row, str(row["id"]) in whitelisted) for row in rows]
        if search:
            users = [u for u in users if u.matches(search)]
        return users

    async def add(self, user_id: str) -> None:
        await self._change("add_to_whitelist", user_id)
        logger.info("User %s whitelisted for %s", user_id, self.game_slug)

    async def remove(self, user_id: str) -> None:
        await self._change("remove_from_whitelist", user_id)
        logger.info("User %s removed from %s whitelist", user_id, self.game_slug)

    async def bulk_add(self, user_ids: list[str]) -> BulkResult:
        return await self._bulk(self.add, user_ids)

    async def bulk_remove(self, user_ids: list[str]) -> BulkResult:
        return await self._bulk(self.remove, user_ids)

    async def _change(self, rpc_name: str, user_id: str) -> None:
        self._require_session()
        validate_non_empty(user_id, "User ID")
        try:
            await self.backend.rpc(rpc_name, {"p_user_id": user_id, "p_game_slug": self.game_slug})
        except BackendError as e:
            logger.error("%s failed for %s: %s", rpc_name, user_id, e.message)
            raise ApiError("Failed to update whitelist", details=e) from e

    async def _bulk(self, change: Any, user_ids: list[str]) -> BulkResult:
        """Apply a change to each user in turn; one failure does not stop the rest."""
        self._require_session()
        result = BulkResult()
        for user_id in dict.fromkeys(user_ids):
            try:
                await change(user_id)
            except ApiError as e:
                result.failed[user_id] = str(e)
            else:
                result.succeeded.append(user_id)
        return result
