"""
TokenIssuer: OAuth2 JWT-bearer flow for the Google Sheets API.

Builds a short-lived RS256 assertion from the service-account credentials
and exchanges it at the token endpoint for a bearer token.  Tokens are not
cached: every sync issues a fresh one.

Credentials are format-checked before any network call, and neither the
private key nor the issued token is ever logged.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any, Callable, Dict

import aiohttp
import jwt
from cryptography.exceptions import UnsupportedAlgorithm
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import rsa

from shared.credentials import Credentials
from shared.errors import AuthError
from shared.result import Err, Ok, Result

logger = logging.getLogger("guildsync.token_issuer")

TOKEN_URL = "https://oauth2.googleapis.com/token"
SHEETS_SCOPE = "https://www.googleapis.com/auth/spreadsheets"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"
TOKEN_EXPIRY_SECONDS = 3600


class TokenIssuer:
    """Issues bearer tokens for a service account.

    Args:
        session: ``aiohttp`` session used for the token exchange.
        token_url: OAuth token endpoint (also the assertion audience).
        scope: OAuth scope requested.
        clock: Returns the current UNIX time in seconds.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        token_url: str = TOKEN_URL,
        scope: str = SHEETS_SCOPE,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._session = session
        self._token_url = token_url
        self._scope = scope
        self._clock = clock

    def build_claims(self, credentials: Credentials) -> Dict[str, Any]:
        now = int(self._clock())
        return {
            "iss": credentials.client_email,
            "scope": self._scope,
            "aud": self._token_url,
            "iat": now,
            "exp": now + TOKEN_EXPIRY_SECONDS,
        }

    def sign_assertion(self, credentials: Credentials) -> str:
        """Return the signed JWT assertion.

        Raises:
            ValueError: If the PEM body cannot be parsed as an RSA private key.
            jwt.PyJWTError: If signing fails.
        """
        try:
            key = serialization.load_pem_private_key(
                credentials.private_key.encode(), password=None
            )
        except (TypeError, UnsupportedAlgorithm) as exc:
            raise ValueError(f"unusable private key: {exc}") from exc
        if not isinstance(key, rsa.RSAPrivateKey):
            raise ValueError(f"RS256 needs an RSA key, got {type(key).__name__}")
        return jwt.encode(self.build_claims(credentials), key, algorithm="RS256")

    async def issue_token(self, credentials: Credentials) -> Result[str, AuthError]:
        """Exchange a signed assertion for an access token.

        Returns:
            ``Ok(access_token)`` or ``Err(AuthError)``; never raises.
        """
        if not isinstance(credentials, Credentials) or not credentials.is_well_formed():
            return Err(AuthError("Invalid credentials format"))

        try:
            assertion = self.sign_assertion(credentials)
        except (ValueError, TypeError, jwt.PyJWTError) as exc:
            logger.error(
                "Failed to sign assertion for %s: %s",
                credentials.client_email,
                type(exc).__name__,
            )
            return Err(AuthError("Google Sheets authentication failed: could not sign assertion"))

        form = {"grant_type": JWT_BEARER_GRANT, "assertion": assertion}
        try:
            async with self._session.post(self._token_url, data=form) as resp:
                if resp.status < 200 or resp.status >= 300:
                    logger.error(
                        "Token exchange rejected for %s: %d %s",
                        credentials.client_email,
                        resp.status,
                        resp.reason,
                    )
                    return Err(AuthError(f"OAuth failed: {resp.status} {resp.reason}"))
                payload = await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as exc:
            logger.error("Token exchange transport error: %s", exc)
            return Err(AuthError(f"OAuth failed: {exc}"))

        token = payload.get("access_token") if isinstance(payload, dict) else None
        if not isinstance(token, str) or not token:
            return Err(AuthError("OAuth failed: response missing access_token"))

        logger.info("Issued bearer token for %s", credentials.client_email)
        return Ok(token)
