"""
RosterClient: paginated, rate-limit-aware reader for Discord guild members.

Walks ``GET /guilds/{id}/members`` with cursor pagination: each request
after the first passes the ``user.id`` of the previous page's last entry as
``after``.  Pages are fetched strictly in sequence because every cursor
depends on the page before it.

Rate limits:
    - ``429`` with ``global: true`` fails immediately; a backend-wide limit
      is not something one client retry will clear.
    - ``429`` otherwise sleeps ``retry_after`` seconds (or a short default)
      and re-issues the same page request exactly once.

Every other non-2xx status is returned as an :class:`UpstreamError`
carrying the status and upstream message; nothing is retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypedDict

import aiohttp

from guildsync.config import DISCORD_API_BASE
from guildsync.progress import FetchProgress
from shared.errors import UpstreamError
from shared.result import Err, Ok, Result

logger = logging.getLogger("guildsync.roster_client")

PAGE_SIZE = 1000
DEFAULT_RETRY_AFTER_SECONDS = 1.0

_INVALID_FORMAT = "Invalid response format: Expected array of members"


class RawUser(TypedDict, total=False):
    id: str
    username: str
    global_name: Optional[str]
    bot: bool


class RawMember(TypedDict, total=False):
    """One entry of the members endpoint, as received."""

    user: RawUser
    nick: Optional[str]
    joined_at: str


class _RateLimited(Exception):
    def __init__(self, retry_after: float, is_global: bool, message: str) -> None:
        self.retry_after = retry_after
        self.is_global = is_global
        self.message = message
        super().__init__(message)


class RosterClient:
    """Fetches a complete guild roster.

    One instance serves one sync; the cursor and counters below are
    per-instance so concurrent syncs never share pagination state.

    Args:
        session: ``aiohttp`` session used for every request.
        bot_token: Discord bot token (sent as ``Authorization: Bot <token>``).
        api_base: Discord API root, e.g. ``https://discord.com/api/v10``.
        sleep: Awaitable sleep, injectable for tests.
        default_retry_after: Delay used when a 429 body has no ``retry_after``.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        bot_token: str,
        api_base: str = DISCORD_API_BASE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        default_retry_after: float = DEFAULT_RETRY_AFTER_SECONDS,
    ) -> None:
        self._session = session
        self._bot_token = bot_token
        self._api_base = api_base.rstrip("/")
        self._sleep = sleep
        self._default_retry_after = max(0.0, default_retry_after)

        self.cursor: Optional[str] = None
        self.request_count = 0
        self.retry_count = 0

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bot {self._bot_token}",
            "Content-Type": "application/json",
        }

    # ------------------------------------------------------------------
    # Single page
    # ------------------------------------------------------------------

    async def _get_page(self, guild_id: str, after: Optional[str]) -> List[Any]:
        """Issue one page request.

        Raises:
            _RateLimited: On HTTP 429.
            UpstreamError: On any other failure.
        """
        params: Dict[str, str] = {"limit": str(PAGE_SIZE)}
        if after is not None:
            params["after"] = after
        url = f"{self._api_base}/guilds/{guild_id}/members"

        self.request_count += 1
        async with self._session.get(url, params=params, headers=self._headers()) as resp:
            try:
                body = await resp.json(content_type=None)
            except (aiohttp.ContentTypeError, ValueError):
                body = None

            if resp.status == 429:
                data = body if isinstance(body, dict) else {}
                retry_after = data.get("retry_after")
                try:
                    delay = float(retry_after)
                except (TypeError, ValueError):
                    delay = self._default_retry_after
                raise _RateLimited(
                    retry_after=max(0.0, delay),
                    is_global=bool(data.get("global", False)),
                    message=str(data.get("message") or "You are being rate limited."),
                )

            if resp.status < 200 or resp.status >= 300:
                message = "Unknown error"
                if isinstance(body, dict) and body.get("message") is not None:
                    message = str(body["message"])
                raise UpstreamError(message, status=resp.status)

        if not isinstance(body, list):
            raise UpstreamError(_INVALID_FORMAT)
        return body

    async def _get_page_with_retry(self, guild_id: str, after: Optional[str]) -> List[Any]:
        try:
            return await self._get_page(guild_id, after)
        except _RateLimited as exc:
            if exc.is_global:
                logger.error(
                    "Global rate limit hit for guild %s (retry_after=%.2fs); aborting",
                    guild_id,
                    exc.retry_after,
                )
                raise UpstreamError(exc.message, status=429) from exc

            self.retry_count += 1
            logger.warning(
                "Rate limited on guild %s page after=%s; retrying once in %.2fs",
                guild_id,
                after,
                exc.retry_after,
            )
            await self._sleep(exc.retry_after)

        try:
            return await self._get_page(guild_id, after)
        except _RateLimited as exc:
            raise UpstreamError(exc.message, status=429) from exc

    # ------------------------------------------------------------------
    # Full roster
    # ------------------------------------------------------------------

    async def fetch_all(
        self,
        guild_id: str,
        estimated_total: int = 0,
    ) -> Result[List[RawMember], UpstreamError]:
        """Fetch every member of *guild_id*.

        Pagination stops on an empty page or a short page, so a roster of
        ``N`` members costs ``N // 1000 + 1`` requests.

        Returns:
            ``Ok(members)`` in API order, or ``Err(UpstreamError)``.
        """
        members: List[RawMember] = []
        progress = FetchProgress(guild_id, estimated_total=estimated_total)
        self.cursor = None

        try:
            while True:
                retries_before = self.retry_count
                page = await self._get_page_with_retry(guild_id, self.cursor)
                progress.rate_limited += self.retry_count - retries_before

                if not page:
                    break

                members.extend(page)
                progress.update(len(page))
                progress.log_page()

                if len(page) < PAGE_SIZE:
                    break

                last = page[-1]
                user = last.get("user") if isinstance(last, dict) else None
                last_id = user.get("id") if isinstance(user, dict) else None
                if not isinstance(last_id, str) or not last_id:
                    raise UpstreamError(
                        "Invalid response format: member entry missing user id"
                    )
                self.cursor = last_id
        except UpstreamError as exc:
            logger.error(
                "Roster fetch failed for guild %s after %d requests: %s",
                guild_id,
                self.request_count,
                exc,
            )
            return Err(exc)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.error(
                "Roster fetch transport error for guild %s: %s", guild_id, exc
            )
            return Err(UpstreamError(f"Failed to fetch members: {exc}"))

        progress.log_complete()
        return Ok(members)
