"""
Shared fixtures: a fake aiohttp session, an RSA service-account key, and
roster/interaction builders.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

import pytest
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from guildsync.config import SyncSettings
from shared.credentials import Credentials

_RAISE_ON_JSON = object()

SPREADSHEET_ID = "sheet-abc"
ADMIN_CHANNEL_ID = "555000000000000001"
PRIVILEGED_USER_ID = "555000000000000002"
GUILD_ID = "555000000000000003"
APPLICATION_ID = "555000000000000004"


class FakeResponse:
    """Stand-in for ``aiohttp.ClientResponse`` used as an async context manager."""

    def __init__(
        self,
        status: int = 200,
        json_body: Any = None,
        text: Optional[str] = None,
        reason: str = "OK",
    ) -> None:
        self.status = status
        self.reason = reason
        self._json = json_body
        self._text = text

    @classmethod
    def invalid_json(cls, status: int = 200, text: str = "<html>") -> "FakeResponse":
        return cls(status=status, json_body=_RAISE_ON_JSON, text=text)

    async def json(self, content_type: Any = None) -> Any:
        if self._json is _RAISE_ON_JSON:
            raise ValueError("Expecting value")
        return self._json

    async def text(self) -> str:
        if self._text is not None:
            return self._text
        return "" if self._json is None else repr(self._json)

    async def __aenter__(self) -> "FakeResponse":
        return self

    async def __aexit__(self, *exc_info: Any) -> bool:
        return False


@dataclass
class RecordedCall:
    method: str
    url: str
    params: Optional[Dict[str, str]] = None
    json: Any = None
    data: Any = None
    headers: Dict[str, str] = field(default_factory=dict)


class FakeSession:
    """Records every request and replays queued responses in FIFO order.

    Queue an exception instance to have the request raise it instead.
    """

    def __init__(self) -> None:
        self.calls: List[RecordedCall] = []
        self._queue: List[Any] = []

    def queue(self, *responses: Any) -> "FakeSession":
        self._queue.extend(responses)
        return self

    def _next(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        self.calls.append(
            RecordedCall(
                method=method,
                url=url,
                params=kwargs.get("params"),
                json=kwargs.get("json"),
                data=kwargs.get("data"),
                headers=dict(kwargs.get("headers") or {}),
            )
        )
        if not self._queue:
            raise AssertionError(f"Unexpected {method} {url}: no response queued")
        item = self._queue.pop(0)
        if isinstance(item, BaseException):
            raise item
        return item

    def request(self, method: str, url: str, **kwargs: Any) -> FakeResponse:
        return self._next(method.upper(), url, **kwargs)

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("GET", url, **kwargs)

    def post(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("POST", url, **kwargs)

    def patch(self, url: str, **kwargs: Any) -> FakeResponse:
        return self._next("PATCH", url, **kwargs)

    @property
    def pending(self) -> int:
        return len(self._queue)


def make_member(
    index: int,
    *,
    nick: Optional[str] = None,
    global_name: Optional[str] = None,
    bot: bool = False,
    joined_at: Any = "2024-01-15T10:30:00.000000+00:00",
) -> Dict[str, Any]:
    """Roster entry with an 18-digit snowflake derived from *index*."""
    user: Dict[str, Any] = {
        "id": str(100000000000000000 + index),
        "username": f"user{index}",
        "global_name": global_name,
    }
    if bot:
        user["bot"] = True
    member: Dict[str, Any] = {"user": user, "nick": nick}
    if joined_at is not None:
        member["joined_at"] = joined_at
    return member


def make_members(start: int, count: int) -> List[Dict[str, Any]]:
    return [make_member(i) for i in range(start, start + count)]


def make_interaction(
    *,
    options: Optional[List[Dict[str, Any]]] = None,
    channel_id: str = ADMIN_CHANNEL_ID,
    user_id: str = PRIVILEGED_USER_ID,
    guild_id: Optional[str] = GUILD_ID,
) -> Dict[str, Any]:
    interaction: Dict[str, Any] = {
        "id": "interaction-1",
        "application_id": APPLICATION_ID,
        "token": "interaction-token",
        "type": 2,
        "data": {"name": "admin-sync-users-to-sheets", "options": options or []},
        "channel_id": channel_id,
        "member": {"user": {"id": user_id}},
    }
    if guild_id is not None:
        interaction["guild_id"] = guild_id
    return interaction


@pytest.fixture
def session() -> FakeSession:
    return FakeSession()


@pytest.fixture
def settings() -> SyncSettings:
    return SyncSettings(
        spreadsheet_id=SPREADSHEET_ID,
        guild_id=GUILD_ID,
        application_id=APPLICATION_ID,
        admin_channel_id=ADMIN_CHANNEL_ID,
        privileged_user_id=PRIVILEGED_USER_ID,
        rate_limit_default_seconds=0.0,
    )


@pytest.fixture(scope="session")
def rsa_key():
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def private_key_pem(rsa_key) -> str:
    return rsa_key.private_bytes(
        encoding=serialization.Encoding.PEM,
        format=serialization.PrivateFormat.PKCS8,
        encryption_algorithm=serialization.NoEncryption(),
    ).decode()


@pytest.fixture
def credentials(private_key_pem) -> Credentials:
    return Credentials(
        client_email="sync@project.iam.gserviceaccount.com",
        private_key=private_key_pem,
    )
