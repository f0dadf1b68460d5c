"""
Secrets and keychain integration: retrieves the Discord bot token and the
Google service-account credentials at runtime.

Credentials are **never** stored in config files or source code.  They live
in the system keychain (``secret-tool`` / ``libsecret``) and are retrieved
when a sync starts.  Environment variables are accepted as a development
fallback only.
"""

from __future__ import annotations

import logging
import os
import subprocess
from typing import Optional

from shared.credentials import Credentials

logger = logging.getLogger("shared.secrets")

SERVICE_NAME = "guildsync"


# ---------------------------------------------------------------------------
# System keychain
# ---------------------------------------------------------------------------


def get_secret(key_name: str, service: str = SERVICE_NAME) -> str:
    """Retrieve a secret from the system keychain.

    Uses ``secret-tool`` (libsecret) under the hood::

        secret-tool lookup service guildsync key <key_name>

    Falls back to environment variables (``GUILDSYNC_<KEY_NAME>``) if
    ``secret-tool`` is not available (e.g. in development environments).

    Args:
        key_name: The key identifier (e.g. ``"discord_bot_token"``,
                  ``"google_private_key"``).
        service: The service label in the keychain.

    Returns:
        The secret value as a string.

    Raises:
        RuntimeError: If the secret is not found in the keychain or env.
    """
    try:
        result = subprocess.run(
            ["secret-tool", "lookup", "service", service, "key", key_name],
            capture_output=True,
            text=True,
            timeout=10,
        )
        secret = result.stdout.strip()
        if secret:
            return secret
    except FileNotFoundError:
        logger.warning(
            "secret-tool not found; falling back to environment variable"
        )
    except subprocess.TimeoutExpired:
        logger.warning("secret-tool timed out; falling back to environment variable")
    except Exception:
        logger.warning(
            "secret-tool failed; falling back to environment variable",
            exc_info=True,
        )

    # Dev fallback: environment variable
    env_key = f"GUILDSYNC_{key_name.upper().replace('-', '_')}"
    env_val = os.environ.get(env_key)
    if env_val:
        logger.warning("Using env var fallback for secret '%s' (%s)", key_name, env_key)
        return env_val

    raise RuntimeError(
        f"Secret '{key_name}' not found in keychain (service={service}) "
        f"or environment variable {env_key}"
    )


# ---------------------------------------------------------------------------
# Service-account credentials
# ---------------------------------------------------------------------------


def load_credentials(service: str = SERVICE_NAME) -> Optional[Credentials]:
    """Build :class:`Credentials` from the keychain.

    Private keys stored in env vars usually carry literal ``\\n`` sequences
    instead of newlines; those are expanded here.

    Returns:
        The credentials, or ``None`` if either half is unavailable.
    """
    try:
        client_email = get_secret("google_client_email", service)
        private_key = get_secret("google_private_key", service)
    except RuntimeError:
        logger.warning("Google service-account credentials are not configured")
        return None

    return Credentials(
        client_email=client_email,
        private_key=private_key.replace("\\n", "\n"),
    )
