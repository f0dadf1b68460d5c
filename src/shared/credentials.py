"""
Service-account credentials for the spreadsheet API.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Mapping

# Accepts both PKCS#8 ("BEGIN PRIVATE KEY") and PKCS#1 ("BEGIN RSA PRIVATE KEY").
_PEM_HEADER_PREFIX = "-----BEGIN "
_PEM_HEADER_SUFFIX = "PRIVATE KEY-----"


@dataclass(frozen=True, slots=True)
class Credentials:
    """Issuer identity plus PEM private key.  Never logged."""

    client_email: str
    private_key: str

    def __repr__(self) -> str:
        return f"Credentials(client_email={self.client_email!r}, private_key=<redacted>)"

    def is_well_formed(self) -> bool:
        """Format check only; the key is not parsed and nothing is sent."""
        if not isinstance(self.client_email, str) or not self.client_email.strip():
            return False
        if not isinstance(self.private_key, str) or not self.private_key.strip():
            return False
        start = self.private_key.find(_PEM_HEADER_PREFIX)
        return start != -1 and _PEM_HEADER_SUFFIX in self.private_key[start:]

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "Credentials":
        """Build from a service-account JSON dict (extra keys ignored)."""
        return cls(
            client_email=str(data.get("client_email") or ""),
            private_key=str(data.get("private_key") or ""),
        )

    @classmethod
    def from_json(cls, raw: str) -> "Credentials":
        """Parse a service-account JSON document.

        Raises:
            ValueError: If *raw* is not a JSON object.
        """
        data = json.loads(raw)
        if not isinstance(data, dict):
            raise ValueError("credentials JSON must be an object")
        return cls.from_mapping(data)
