"""
SyncOrchestrator: runs the member sync pipeline in one of two modes.

Synchronous
    :meth:`SyncOrchestrator.run_sync` validates the command, runs the whole
    pipeline and returns the real outcome.  Only suitable when the caller's
    response deadline comfortably exceeds a roster fetch.

Background
    :meth:`SyncOrchestrator.start_background_sync` validates, hands the
    pipeline to a keep-alive ``register(task)`` callable and returns at
    once.  The acknowledgment means "started", never "succeeded"; the
    outcome is delivered by the follow-up notifier and the logs.

The pipeline itself (:meth:`run_pipeline`) is token, existing ids, roster,
transform, filter, append.  Every run builds its own roster client, token
and id set, so concurrent runs share nothing.  Two runs overlapping on the
same sheet can still append the same member twice; that is accepted.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, Optional

import aiohttp

from guildsync.config import SyncSettings
from guildsync.notifier import FollowupNotifier
from guildsync.reconciler import filter_new, transform
from guildsync.record_store import RecordStore
from guildsync.roster_client import RosterClient
from guildsync.token_issuer import TokenIssuer
from guildsync.validation import CredentialsLoader, ValidatedCommand, validate_command
from shared.credentials import Credentials
from shared.errors import SyncError, ValidationError
from shared.result import Err, Ok, Result

logger = logging.getLogger("guildsync.orchestrator")

BACKGROUND_STARTED_MESSAGE = "Background sync initiated successfully"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _new_request_id() -> str:
    return str(uuid.uuid4())


def _no_credentials() -> Optional[Credentials]:
    return None


def estimate_duration(member_count: Optional[int]) -> str:
    if member_count is None or member_count <= 1_000:
        return "2-5 minutes"
    if member_count <= 10_000:
        return "5-10 minutes"
    return "10-15 minutes"


@dataclass(frozen=True, slots=True)
class SyncRequest:
    """One sync of one roster into one sheet."""

    guild_id: str
    credentials: Credentials
    request_id: str
    initiated_by: str
    timestamp: str
    estimated_member_count: Optional[int] = None
    interaction_token: Optional[str] = None


@dataclass(frozen=True, slots=True)
class SyncResponse:
    success: bool
    message: Optional[str] = None
    error: Optional[str] = None
    request_id: Optional[str] = None
    estimated_duration: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """Wire shape returned to the command surface."""
        out: Dict[str, Any] = {"success": self.success}
        if self.success:
            out["message"] = self.message or ""
        else:
            out["error"] = self.error or "Unknown error"
        if self.request_id is not None:
            out["requestId"] = self.request_id
        if self.estimated_duration is not None:
            out["estimatedDuration"] = self.estimated_duration
        if self.metadata:
            out["metadata"] = dict(self.metadata)
        return out

    @classmethod
    def failure(cls, error: SyncError, request_id: Optional[str] = None) -> "SyncResponse":
        return cls(success=False, error=str(error), request_id=request_id)


class SyncOrchestrator:
    """Validates sync commands and drives the pipeline.

    Args:
        settings: Service settings.
        session: Shared ``aiohttp`` session for every upstream call.
        bot_token: Discord bot token for roster reads.
        credentials_loader: Returns configured service-account credentials
            (used when the command carries none), or ``None``.
        token_issuer: Defaults to a :class:`TokenIssuer` on *session*.
        clock: Returns the current UTC datetime.
        id_factory: Generates request ids.
        sleep: Rate-limit sleep passed to each roster client.
        notifier: Delivers background outcomes; ``None`` disables follow-ups.
    """

    def __init__(
        self,
        settings: SyncSettings,
        session: aiohttp.ClientSession,
        bot_token: str,
        credentials_loader: CredentialsLoader = _no_credentials,
        token_issuer: Optional[TokenIssuer] = None,
        clock: Callable[[], datetime] = _utc_now,
        id_factory: Callable[[], str] = _new_request_id,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        notifier: Optional[FollowupNotifier] = None,
    ) -> None:
        self._settings = settings
        self._session = session
        self._bot_token = bot_token
        self._credentials_loader = credentials_loader
        self._token_issuer = token_issuer or TokenIssuer(session)
        self._clock = clock
        self._id_factory = id_factory
        self._sleep = sleep
        self._notifier = notifier

    # ------------------------------------------------------------------
    # Request construction
    # ------------------------------------------------------------------

    def build_request(
        self,
        guild_id: str,
        credentials: Credentials,
        initiated_by: str,
        estimated_member_count: Optional[int] = None,
        request_id: Optional[str] = None,
        interaction_token: Optional[str] = None,
    ) -> SyncRequest:
        return SyncRequest(
            guild_id=guild_id,
            credentials=credentials,
            request_id=request_id or self._id_factory(),
            initiated_by=initiated_by,
            timestamp=self._clock().isoformat(),
            estimated_member_count=estimated_member_count,
            interaction_token=interaction_token,
        )

    def _request_from_command(
        self, command: ValidatedCommand, interaction: Dict[str, Any]
    ) -> SyncRequest:
        token = interaction.get("token")
        return self.build_request(
            guild_id=command.guild_id,
            credentials=command.credentials,
            initiated_by=command.user_id,
            estimated_member_count=command.estimated_member_count,
            interaction_token=token if isinstance(token, str) else None,
        )

    # ------------------------------------------------------------------
    # Pipeline
    # ------------------------------------------------------------------

    async def run_pipeline(self, request: SyncRequest) -> Result[int, SyncError]:
        """Token, existing ids, roster, transform, filter, append.

        Returns:
            ``Ok(rows_written)`` or the first ``Err`` encountered.  Never
            raises; unexpected exceptions become ``SyncError``.
        """
        settings = self._settings
        logger.info(
            "[%s] Sync started for guild %s by %s",
            request.request_id,
            request.guild_id,
            request.initiated_by,
        )
        try:
            token = await self._token_issuer.issue_token(request.credentials)
            if not token.ok:
                return self._finish(request, token)

            store = RecordStore(
                self._session,
                settings.spreadsheet_id,
                settings.read_range,
                token.value,
                sheet_gid=settings.sheet_gid,
            )
            existing = await store.read_existing_ids()
            if not existing.ok:
                return self._finish(request, existing)

            roster = RosterClient(
                self._session,
                self._bot_token,
                api_base=settings.api_base,
                sleep=self._sleep,
                default_retry_after=settings.rate_limit_default_seconds,
            )
            fetched = await roster.fetch_all(
                request.guild_id,
                estimated_total=request.estimated_member_count or 0,
            )
            if not fetched.ok:
                return self._finish(request, fetched)

            rows = transform(fetched.value, now=self._clock)
            new_rows = filter_new(rows, existing.value)
            logger.info(
                "[%s] %d fetched, %d valid, %d already present, %d new",
                request.request_id,
                len(fetched.value),
                len(rows),
                len(rows) - len(new_rows),
                len(new_rows),
            )

            appended = await store.with_range(settings.append_range).append(new_rows)
            return self._finish(request, appended)
        except Exception as exc:
            logger.exception("[%s] Unexpected error during sync", request.request_id)
            return self._finish(request, Err(SyncError(f"Unexpected error: {exc}")))

    def _finish(self, request: SyncRequest, result: Result[int, Any]) -> Result[int, Any]:
        if result.ok:
            logger.info("[%s] Sync complete: %d rows written", request.request_id, result.value)
        else:
            logger.error("[%s] Sync failed: %s", request.request_id, result.error)
        return result

    # ------------------------------------------------------------------
    # Execution modes
    # ------------------------------------------------------------------

    async def run_sync(self, interaction: Any) -> SyncResponse:
        """Validate and run to completion; the response carries the real count."""
        validated = validate_command(interaction, self._settings, self._credentials_loader)
        if not validated.ok:
            return SyncResponse.failure(validated.error)

        request = self._request_from_command(validated.value, interaction)
        result = await self.run_pipeline(request)
        if not result.ok:
            return SyncResponse.failure(result.error, request_id=request.request_id)
        return SyncResponse(
            success=True,
            message=f"Successfully synced {result.value} new members to sheets",
            request_id=request.request_id,
            metadata={"rowsWritten": result.value, "guildId": request.guild_id},
        )

    async def _run_and_notify(self, request: SyncRequest) -> Result[int, SyncError]:
        result = await self.run_pipeline(request)
        if self._notifier is not None:
            await self._notifier.notify(request.interaction_token, result)
        return result

    def start_background_sync(self, interaction: Any, keep_alive: Any) -> SyncResponse:
        """Validate, register the pipeline with *keep_alive*, return at once.

        Args:
            interaction: Incoming Discord interaction payload.
            keep_alive: ``register(task) -> None``; must keep the coroutine
                running after this method returns.
        """
        validated = validate_command(
            interaction,
            self._settings,
            self._credentials_loader,
            background=True,
            keep_alive=keep_alive,
        )
        if not validated.ok:
            return SyncResponse.failure(validated.error)

        request = self._request_from_command(validated.value, interaction)
        work = self._run_and_notify(request)
        try:
            keep_alive(work)
        except Exception:
            work.close()
            logger.exception("[%s] Background sync could not be registered", request.request_id)
            return SyncResponse.failure(
                ValidationError("Execution context not available", stage=1),
                request_id=request.request_id,
            )

        logger.info("[%s] Background sync registered", request.request_id)
        metadata: Dict[str, Any] = {
            "guildId": request.guild_id,
            "initiatedBy": request.initiated_by,
            "timestamp": request.timestamp,
        }
        if request.estimated_member_count is not None:
            metadata["estimatedMemberCount"] = request.estimated_member_count
        return SyncResponse(
            success=True,
            message=BACKGROUND_STARTED_MESSAGE,
            request_id=request.request_id,
            estimated_duration=estimate_duration(request.estimated_member_count),
            metadata=metadata,
        )
