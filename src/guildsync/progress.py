"""
Roster fetch progress tracking for journalctl output.

``FetchProgress`` logs one line per page with member totals, a fetch rate
and, when the caller supplied a size hint, an ETA.
"""

from __future__ import annotations

import logging
import time
from typing import Callable, Optional

logger = logging.getLogger("guildsync.progress")


def _format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples: ``"45s"``, ``"2m 30s"``, ``"1h 15m"``.
    """
    if seconds < 0:
        return "0s"
    total = int(seconds)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    if minutes < 60:
        if secs:
            return f"{minutes}m {secs}s"
        return f"{minutes}m"
    hours, mins = divmod(minutes, 60)
    if mins:
        return f"{hours}h {mins}m"
    return f"{hours}h"


class FetchProgress:
    """Tracks progress for a single paginated roster fetch.

    Args:
        guild_id: Roster being fetched (for log lines only).
        estimated_total: Caller-supplied member estimate (may be 0).
        clock: Monotonic clock, injectable for tests.
    """

    def __init__(
        self,
        guild_id: str,
        estimated_total: int = 0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.guild_id = guild_id
        self.estimated_total = estimated_total
        self.pages = 0
        self.members = 0
        self.rate_limited = 0
        self._clock = clock
        self._start = clock()

    @property
    def elapsed_seconds(self) -> float:
        return self._clock() - self._start

    @property
    def rate(self) -> float:
        """Members fetched per second."""
        elapsed = self.elapsed_seconds
        if elapsed <= 0:
            return 0.0
        return self.members / elapsed

    @property
    def eta_seconds(self) -> Optional[float]:
        """Estimated seconds remaining, or None if no estimate possible."""
        if self.estimated_total <= 0 or self.rate <= 0:
            return None
        remaining = max(0, self.estimated_total - self.members)
        return remaining / self.rate

    def update(self, page_size: int) -> None:
        """Record one fetched page."""
        self.pages += 1
        self.members += page_size

    def log_page(self) -> None:
        tag = f"[Guild {self.guild_id}] page {self.pages}"
        rate_str = f"{self.rate:.1f} members/s"

        if self.estimated_total > 0:
            pct = min(100, int(self.members / self.estimated_total * 100))
            eta = self.eta_seconds
            eta_str = f"ETA: ~{_format_duration(eta)}" if eta is not None else ""
            logger.info(
                "  %s %d/~%d members (%d%%) | %s | %s",
                tag,
                self.members,
                self.estimated_total,
                pct,
                rate_str,
                eta_str,
            )
        else:
            logger.info(
                "  %s %d members | %s",
                tag,
                self.members,
                rate_str,
            )

    def log_complete(self) -> None:
        """Log a completion line for this fetch."""
        elapsed = _format_duration(self.elapsed_seconds)
        logger.info(
            "  Fetched guild %s: %d members in %d pages (%d rate-limited) in %s",
            self.guild_id,
            self.members,
            self.pages,
            self.rate_limited,
            elapsed,
        )
