"""
Guild sync entry point: periodically reconciles the configured Discord
guild's roster into the configured Google Sheet.

Runs as a long-lived systemd service under the ``guildsync`` user.

Key behaviours:
    - Loads configuration from ``/etc/guildsync/settings.toml``.
    - Bot token and service-account credentials come from the keychain.
    - One ``aiohttp`` session is shared by every pass.
    - Handles SIGTERM / SIGINT for graceful shutdown; an in-flight pass
      gets a grace period before it is cancelled.
    - Background command syncs report back through the follow-up notifier.
    - ``--once`` runs a single pass and exits non-zero on failure.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import signal
import sys
import threading
from typing import Any, List, Optional

import aiohttp

from guildsync.config import SyncSettings, load_config
from guildsync.keepalive import BackgroundTasks
from guildsync.notifier import FollowupNotifier
from guildsync.orchestrator import SyncOrchestrator
from shared.errors import SyncError
from shared.result import Err, Result
from shared.secrets import get_secret, load_credentials

logger = logging.getLogger("guildsync.main")

_HTTP_TIMEOUT_SECONDS = 60
_SHUTDOWN_GRACE_SECONDS = 30.0


# ---------------------------------------------------------------------------
# Graceful shutdown
# ---------------------------------------------------------------------------

_shutdown_event: threading.Event = threading.Event()


async def _sleep_with_shutdown(seconds: float) -> bool:
    """Sleep for up to ``seconds`` while remaining responsive to shutdown."""
    if _shutdown_event.is_set():
        return True

    remaining = max(0.0, seconds)
    while remaining > 0:
        if _shutdown_event.is_set():
            return True
        tick = min(0.5, remaining)
        await asyncio.sleep(tick)
        remaining -= tick
    return _shutdown_event.is_set()


def _handle_signal(sig: int, frame: Any) -> None:
    """Set the shutdown event so the main loop exits cleanly."""
    logger.info("Received signal %s, initiating graceful shutdown...", sig)
    _shutdown_event.set()


# ---------------------------------------------------------------------------
# Sync passes
# ---------------------------------------------------------------------------


async def sync_once(orchestrator: SyncOrchestrator, settings: SyncSettings) -> Result[int, SyncError]:
    """Run one pass for the configured guild with the configured credentials."""
    credentials = load_credentials()
    if credentials is None:
        return Err(SyncError("Google Sheets credentials are required"))
    if not settings.guild_id:
        return Err(SyncError("Missing required environment configuration"))

    request = orchestrator.build_request(
        guild_id=settings.guild_id,
        credentials=credentials,
        initiated_by="scheduler",
    )
    return await orchestrator.run_pipeline(request)


async def _wait_for_pass(task: "asyncio.Task[Any]") -> bool:
    """Wait for a pass to settle; True if shutdown was requested first."""
    while not task.done():
        if _shutdown_event.is_set():
            return True
        await asyncio.wait({task}, timeout=0.5)
    return False


async def run_passes(
    orchestrator: SyncOrchestrator,
    settings: SyncSettings,
    tasks: BackgroundTasks,
    once: bool = False,
) -> int:
    """Run sync passes until shutdown (or once).

    Each pass is registered with *tasks* so a shutdown signal is honoured
    mid-pass; the caller drains *tasks* afterwards.

    Returns:
        Process exit status.
    """
    pass_number = 0
    while not _shutdown_event.is_set():
        pass_number += 1
        task = tasks.register(sync_once(orchestrator, settings))
        if await _wait_for_pass(task):
            logger.info("Shutdown requested during sync pass #%d", pass_number)
            return 1 if once else 0

        result = task.result()
        if result.ok:
            logger.info("Sync pass #%d complete: %d new members", pass_number, result.value)
        else:
            logger.error("Sync pass #%d failed: %s", pass_number, result.error)
        if once:
            return 0 if result.ok else 1

        # Wait for the next cycle or a shutdown signal
        await _sleep_with_shutdown(settings.sync_interval_seconds)
    return 0


async def main(once: bool = False) -> int:
    """Top-level async entry point for the sync service.

    Returns:
        Process exit status.
    """
    settings = SyncSettings.from_config(load_config())
    bot_token = get_secret("discord_bot_token")

    timeout = aiohttp.ClientTimeout(total=_HTTP_TIMEOUT_SECONDS)
    tasks = BackgroundTasks(name="guildsync-pass")
    async with aiohttp.ClientSession(timeout=timeout) as session:
        notifier = None
        if settings.application_id:
            notifier = FollowupNotifier(session, settings.application_id, settings.api_base)
        orchestrator = SyncOrchestrator(
            settings,
            session,
            bot_token,
            credentials_loader=load_credentials,
            notifier=notifier,
        )

        try:
            status = await run_passes(orchestrator, settings, tasks, once=once)
        finally:
            await tasks.drain(timeout=_SHUTDOWN_GRACE_SECONDS)

    logger.info("Guild sync shut down cleanly.")
    return status


def _parse_args(argv: Optional[List[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="guildsync",
        description="Sync Discord guild members into Google Sheets.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single sync pass and exit",
    )
    return parser.parse_args(argv)


def run(argv: Optional[List[str]] = None) -> None:
    """Synchronous entry point (called from ``__main__`` or systemd)."""
    args = _parse_args(argv)
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )

    signal.signal(signal.SIGTERM, _handle_signal)
    signal.signal(signal.SIGINT, _handle_signal)

    sys.exit(asyncio.run(main(once=args.once)))


if __name__ == "__main__":
    run()
