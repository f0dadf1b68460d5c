"""
Follow-up notifications for background syncs.

A background sync acknowledges the command immediately, so its outcome is
delivered afterwards by editing the original interaction response.
Pipeline error text is mapped to a short user-facing message first; the
full error stays in the logs.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from guildsync.config import DISCORD_API_BASE
from shared.errors import SyncError
from shared.result import Result

logger = logging.getLogger("guildsync.notifier")

# Checked in order; the first matching fragment wins.
_USER_MESSAGES = (
    (("Bot lacks permission",), 'Bot needs "View Server Members" permission'),
    (("authentication failed", "OAuth failed"), "Google Sheets configuration error"),
    (("Discord API error",), "Discord service temporarily unavailable"),
    (("Failed to fetch members",), "Could not access Discord server members"),
    (
        ("Failed to append members", "Google Sheets API error"),
        "Could not update Google Sheets",
    ),
)
_FALLBACK_MESSAGE = "Unexpected error - check server logs"


def convert_error_to_user_message(message: str) -> str:
    for fragments, user_message in _USER_MESSAGES:
        if any(fragment in message for fragment in fragments):
            return user_message
    return _FALLBACK_MESSAGE


def format_outcome(result: Result[int, SyncError]) -> str:
    if result.ok:
        return f"✅ Successfully synced {result.value} new members to sheets"
    return f"❌ Sync failed: {convert_error_to_user_message(str(result.error))}"


class FollowupNotifier:
    """Edits the original interaction response with the sync outcome.

    Args:
        session: ``aiohttp`` session.
        application_id: Discord application owning the interaction.
        api_base: Discord API root.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        application_id: str,
        api_base: str = DISCORD_API_BASE,
    ) -> None:
        self._session = session
        self._application_id = application_id
        self._api_base = api_base.rstrip("/")

    def _url(self, interaction_token: str) -> str:
        return (
            f"{self._api_base}/webhooks/{self._application_id}"
            f"/{interaction_token}/messages/@original"
        )

    async def notify(
        self,
        interaction_token: Optional[str],
        result: Result[int, SyncError],
    ) -> bool:
        """Send the outcome; returns whether Discord accepted it.

        Delivery failures are logged and swallowed: the sync itself has
        already finished and there is nobody left to report to.
        """
        if not interaction_token:
            logger.warning("No interaction token; skipping follow-up notification")
            return False

        content = format_outcome(result)
        try:
            async with self._session.patch(
                self._url(interaction_token),
                json={"content": content},
                headers={"Content-Type": "application/json"},
            ) as resp:
                if resp.status < 200 or resp.status >= 300:
                    logger.warning(
                        "Follow-up notification rejected: %d %s", resp.status, resp.reason
                    )
                    return False
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            logger.warning("Follow-up notification failed: %s", exc)
            return False
        return True
