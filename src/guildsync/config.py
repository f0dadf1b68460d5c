"""
Configuration loading for the guild sync service.

Settings live in a TOML file (default ``/etc/guildsync/settings.toml``,
overridable via ``GUILDSYNC_CONFIG``).  Secrets are *not* read from this
file; see :mod:`shared.secrets`.
"""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import toml

DISCORD_API_BASE = "https://discord.com/api/v10"
DEFAULT_READ_RANGE = "Sheet1!A:A"
DEFAULT_APPEND_RANGE = "Sheet1!A:G"

_DEFAULT_CONFIG_PATH = Path(
    os.environ.get("GUILDSYNC_CONFIG", "/etc/guildsync/settings.toml")
)

_REQUIRED_KEYS = [
    ("discord", "guild_id"),
    ("sheets", "spreadsheet_id"),
]


def load_config(path: Path = _DEFAULT_CONFIG_PATH) -> Dict[str, Any]:
    """Load and validate settings from a TOML file.

    Returns:
        Parsed configuration dictionary.

    Raises:
        FileNotFoundError: If the config file does not exist.
        KeyError: If required keys are missing.
    """
    config = toml.load(path)

    for keys in _REQUIRED_KEYS:
        obj = config
        for k in keys:
            if not isinstance(obj, dict) or k not in obj:
                raise KeyError(f"Missing required config key: {'.'.join(keys)}")
            obj = obj[k]

    return config


def _optional_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


@dataclass(frozen=True, slots=True)
class SyncSettings:
    """Flattened view of the settings the pipeline and validators need."""

    spreadsheet_id: Optional[str]
    guild_id: Optional[str] = None
    application_id: Optional[str] = None
    admin_channel_id: Optional[str] = None
    privileged_user_id: Optional[str] = None
    api_base: str = DISCORD_API_BASE
    read_range: str = DEFAULT_READ_RANGE
    append_range: str = DEFAULT_APPEND_RANGE
    sheet_gid: int = 0
    sync_interval_seconds: float = 3600.0
    rate_limit_default_seconds: float = 1.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "SyncSettings":
        discord_cfg = config.get("discord", {}) or {}
        sheets_cfg = config.get("sheets", {}) or {}
        syncer_cfg = config.get("syncer", {}) or {}

        try:
            sync_interval = float(syncer_cfg.get("sync_interval_seconds", 3600.0))
        except (TypeError, ValueError):
            sync_interval = 3600.0
        try:
            rate_default = float(syncer_cfg.get("rate_limit_default_seconds", 1.0))
        except (TypeError, ValueError):
            rate_default = 1.0
        try:
            sheet_gid = int(sheets_cfg.get("sheet_gid", 0))
        except (TypeError, ValueError):
            sheet_gid = 0

        return cls(
            spreadsheet_id=_optional_str(sheets_cfg.get("spreadsheet_id")),
            guild_id=_optional_str(discord_cfg.get("guild_id")),
            application_id=_optional_str(discord_cfg.get("application_id")),
            admin_channel_id=_optional_str(discord_cfg.get("admin_channel_id")),
            privileged_user_id=_optional_str(discord_cfg.get("privileged_user_id")),
            api_base=str(discord_cfg.get("api_base") or DISCORD_API_BASE).rstrip("/"),
            read_range=str(sheets_cfg.get("read_range") or DEFAULT_READ_RANGE),
            append_range=str(sheets_cfg.get("append_range") or DEFAULT_APPEND_RANGE),
            sheet_gid=sheet_gid,
            sync_interval_seconds=max(1.0, sync_interval),
            rate_limit_default_seconds=max(0.0, rate_default),
        )
