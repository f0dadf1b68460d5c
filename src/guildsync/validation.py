"""
Validation chain for the admin sync command.

Stages run in a fixed order and the first failure wins.  Each stage
returns a :class:`Result`; nothing here performs I/O beyond calling the
configured-credentials loader, so a rejected request leaves no trace.

    1. execution context (background mode only)
    2. interaction structure
    3. command payload
    4. caller identity
    5. store configuration
    6. guild, admin channel, privileged user
    7. credentials
    8. roster size guard
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Mapping, Optional

from guildsync.config import SyncSettings
from shared.credentials import Credentials
from shared.errors import SafetyLimitError, ValidationError
from shared.result import Err, Ok, Result

logger = logging.getLogger("guildsync.validation")

MAX_MEMBER_COUNT = 100_000

CREDENTIALS_OPTION = "credentials"
ESTIMATE_OPTION = "estimated_member_count"

CredentialsLoader = Callable[[], Optional[Credentials]]


@dataclass(frozen=True, slots=True)
class ValidatedCommand:
    """What survives a fully passed validation chain."""

    guild_id: str
    user_id: str
    credentials: Credentials
    estimated_member_count: Optional[int] = None


def _fail(message: str, stage: int) -> Err[ValidationError]:
    logger.info("Sync command rejected at stage %d: %s", stage, message)
    return Err(ValidationError(message, stage=stage))


def command_options(interaction: Mapping[str, Any]) -> Dict[str, Any]:
    """Flatten ``data.options`` into ``{name: value}``."""
    data = interaction.get("data")
    options = data.get("options") if isinstance(data, dict) else None
    result: Dict[str, Any] = {}
    for option in options or []:
        if isinstance(option, dict) and isinstance(option.get("name"), str):
            result[option["name"]] = option.get("value")
    return result


def caller_id(interaction: Mapping[str, Any]) -> Optional[str]:
    """``user.id`` for DMs, ``member.user.id`` inside a guild."""
    user = interaction.get("user")
    if isinstance(user, dict) and user.get("id"):
        return str(user["id"])
    member = interaction.get("member")
    member_user = member.get("user") if isinstance(member, dict) else None
    if isinstance(member_user, dict) and member_user.get("id"):
        return str(member_user["id"])
    return None


def _parse_estimate(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


# ---------------------------------------------------------------------------
# Stages
# ---------------------------------------------------------------------------


def check_execution_context(keep_alive: Any) -> Result[None, ValidationError]:
    if keep_alive is None:
        return _fail("Execution context not available", 1)
    if not callable(keep_alive):
        return _fail("Execution context missing required methods", 1)
    return Ok(None)


def check_structure(interaction: Any) -> Result[None, ValidationError]:
    if not isinstance(interaction, dict):
        return _fail("Invalid interaction format", 2)
    interaction_id = interaction.get("id")
    if not isinstance(interaction_id, str) or not interaction_id:
        return _fail("Invalid interaction format", 2)
    if not isinstance(interaction.get("application_id"), str):
        return _fail("Invalid interaction format", 2)
    return Ok(None)


def check_command_data(interaction: Mapping[str, Any]) -> Result[None, ValidationError]:
    if not interaction.get("data"):
        return _fail("Invalid command data", 3)
    return Ok(None)


def check_caller(interaction: Mapping[str, Any]) -> Result[str, ValidationError]:
    user_id = caller_id(interaction)
    if user_id is None:
        return _fail("User information not available", 4)
    return Ok(user_id)


def check_store_configured(settings: SyncSettings) -> Result[None, ValidationError]:
    if not settings.spreadsheet_id:
        return _fail("Missing required environment configuration", 5)
    return Ok(None)


def check_authorization(
    interaction: Mapping[str, Any],
    user_id: str,
    settings: SyncSettings,
) -> Result[str, ValidationError]:
    """Guild, then admin channel, then privileged user.

    An unconfigured admin channel or privileged user rejects everyone.
    """
    guild_id = interaction.get("guild_id")
    if not guild_id:
        return _fail("This command can only be used in a Discord server", 6)
    channel_id = interaction.get("channel_id")
    if not settings.admin_channel_id or str(channel_id or "") != settings.admin_channel_id:
        return _fail("This command can only be used in the designated admin channel", 6)
    if not settings.privileged_user_id or user_id != settings.privileged_user_id:
        return _fail("Insufficient permissions for this admin command", 6)
    return Ok(str(guild_id))


def check_credentials(
    options: Mapping[str, Any],
    load_configured: CredentialsLoader,
) -> Result[Credentials, ValidationError]:
    """Inline ``credentials`` option first, configured credentials second."""
    raw = options.get(CREDENTIALS_OPTION)
    if raw:
        try:
            if isinstance(raw, dict):
                credentials = Credentials.from_mapping(raw)
            else:
                credentials = Credentials.from_json(str(raw))
        except ValueError:
            return _fail("Invalid credentials format", 7)
        if not credentials.is_well_formed():
            return _fail("Invalid credentials format", 7)
        return Ok(credentials)

    configured = load_configured()
    if configured is None:
        return _fail("Google Sheets credentials are required", 7)
    if not configured.is_well_formed():
        return _fail("Invalid credentials format", 7)
    return Ok(configured)


def check_size(estimate: Optional[int]) -> Result[Optional[int], ValidationError]:
    if estimate is not None and estimate > MAX_MEMBER_COUNT:
        message = "Guild too large for synchronization (max 100,000 members)"
        logger.warning("Rejected sync: estimated %d members > %d", estimate, MAX_MEMBER_COUNT)
        return Err(SafetyLimitError(message, limit=MAX_MEMBER_COUNT, estimated=estimate))
    return Ok(estimate)


# ---------------------------------------------------------------------------
# Chain
# ---------------------------------------------------------------------------


def validate_command(
    interaction: Any,
    settings: SyncSettings,
    load_configured: CredentialsLoader,
    *,
    background: bool = False,
    keep_alive: Any = None,
) -> Result[ValidatedCommand, ValidationError]:
    """Run every stage in order and stop at the first failure.

    Args:
        interaction: Incoming Discord interaction payload.
        settings: Service settings (spreadsheet, admin channel, privileged user).
        load_configured: Returns configured credentials, or ``None``.
        background: Whether the execution-context stage applies.
        keep_alive: Background registration callable (stage 1).
    """
    if background:
        result = check_execution_context(keep_alive)
        if not result.ok:
            return result

    result = check_structure(interaction)
    if not result.ok:
        return result
    result = check_command_data(interaction)
    if not result.ok:
        return result

    caller = check_caller(interaction)
    if not caller.ok:
        return caller

    result = check_store_configured(settings)
    if not result.ok:
        return result

    guild = check_authorization(interaction, caller.value, settings)
    if not guild.ok:
        return guild

    options = command_options(interaction)
    credentials = check_credentials(options, load_configured)
    if not credentials.ok:
        return credentials

    size = check_size(_parse_estimate(options.get(ESTIMATE_OPTION)))
    if not size.ok:
        return size

    return Ok(
        ValidatedCommand(
            guild_id=guild.value,
            user_id=caller.value,
            credentials=credentials.value,
            estimated_member_count=size.value,
        )
    )
