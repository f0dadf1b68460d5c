"""
Tests for follow-up notifications and user-facing error messages.
"""

import aiohttp
import pytest

from conftest import APPLICATION_ID, FakeResponse
from guildsync.notifier import (
    FollowupNotifier,
    convert_error_to_user_message,
    format_outcome,
)
from shared.errors import StorageError, UpstreamError
from shared.result import Err, Ok


class TestConvertErrorToUserMessage:
    @pytest.mark.parametrize(
        "message,expected",
        [
            ("Bot lacks permission to access server members", 'Bot needs "View Server Members" permission'),
            ("Google Sheets authentication failed: could not sign assertion", "Google Sheets configuration error"),
            ("OAuth failed: 400 Bad Request", "Google Sheets configuration error"),
            ("Discord API error (503): upstream down", "Discord service temporarily unavailable"),
            ("Failed to fetch members: connection reset", "Could not access Discord server members"),
            ("Failed to append members: quota", "Could not update Google Sheets"),
            ("Google Sheets API error: 500 Internal Server Error - x", "Could not update Google Sheets"),
            ("Unexpected error: kaboom", "Unexpected error - check server logs"),
            ("", "Unexpected error - check server logs"),
        ],
    )
    def test_mapping(self, message, expected):
        assert convert_error_to_user_message(message) == expected

    def test_first_match_wins(self):
        message = "Bot lacks permission (Discord API error (403): Missing Access)"
        assert convert_error_to_user_message(message) == 'Bot needs "View Server Members" permission'


class TestFormatOutcome:
    def test_success(self):
        assert format_outcome(Ok(12)) == "✅ Successfully synced 12 new members to sheets"

    def test_failure(self):
        result = Err(UpstreamError("Missing Access", status=403))
        assert format_outcome(result) == "❌ Sync failed: Discord service temporarily unavailable"


class TestFollowupNotifier:
    @pytest.mark.asyncio
    async def test_patches_original_message(self, session):
        session.queue(FakeResponse(json_body={"id": "msg"}))
        notifier = FollowupNotifier(session, APPLICATION_ID, api_base="https://discord.test/api/v10")

        delivered = await notifier.notify("tok-123", Ok(3))

        assert delivered is True
        call = session.calls[0]
        assert call.method == "PATCH"
        assert call.url == (
            f"https://discord.test/api/v10/webhooks/{APPLICATION_ID}/tok-123/messages/@original"
        )
        assert call.json == {"content": "✅ Successfully synced 3 new members to sheets"}

    @pytest.mark.asyncio
    async def test_no_token_skips_request(self, session):
        notifier = FollowupNotifier(session, APPLICATION_ID)

        assert await notifier.notify(None, Ok(1)) is False
        assert session.calls == []

    @pytest.mark.asyncio
    async def test_rejection_is_swallowed(self, session):
        session.queue(FakeResponse(status=404, reason="Not Found"))
        notifier = FollowupNotifier(session, APPLICATION_ID)

        assert await notifier.notify("expired", Err(StorageError("Google Sheets API error: x"))) is False

    @pytest.mark.asyncio
    async def test_transport_error_is_swallowed(self, session):
        session.queue(aiohttp.ClientConnectionError("reset"))
        notifier = FollowupNotifier(session, APPLICATION_ID)

        assert await notifier.notify("tok", Ok(0)) is False
