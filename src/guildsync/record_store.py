"""
Google Sheets record storage for the syncer.

Talks to the Sheets v4 REST API over ``aiohttp``.  The sheet is the system
of record: column A holds the Discord user id, and each synced member is
one 7-column row (see :func:`guildsync.reconciler.to_sheet_row`).

Every operation needs the spreadsheet id, a range and a bearer token; if
any is missing the call fails before touching the network.  Upstream
failures are returned verbatim inside a :class:`StorageError` and are never
retried.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Iterable, List, Optional, Sequence, Set
from urllib.parse import quote

import aiohttp

from guildsync.config import DEFAULT_READ_RANGE
from guildsync.reconciler import CanonicalRow, is_valid_external_id, to_sheet_row
from shared.errors import StorageError
from shared.result import Err, Ok, Result

logger = logging.getLogger("guildsync.record_store")

SHEETS_API_BASE = "https://sheets.googleapis.com/v4/spreadsheets"

_MISSING_FIELDS = (
    "Missing required fields: spreadsheet_id, range, and access_token are required"
)


class RecordStore:
    """Reads and writes member rows in one spreadsheet.

    Args:
        session: ``aiohttp`` session used for every request.
        spreadsheet_id: Target spreadsheet.
        range_: A1 range, e.g. ``"Sheet1!A:A"`` for reads or
            ``"Sheet1!A:G"`` for appends.
        access_token: OAuth bearer token from :class:`TokenIssuer`.
        sheet_gid: Numeric sheet id used by row deletion.
        value_input_option: How appended values are interpreted.
    """

    def __init__(
        self,
        session: aiohttp.ClientSession,
        spreadsheet_id: Optional[str],
        range_: Optional[str] = DEFAULT_READ_RANGE,
        access_token: Optional[str] = None,
        sheet_gid: int = 0,
        value_input_option: str = "USER_ENTERED",
        api_base: str = SHEETS_API_BASE,
    ) -> None:
        self._session = session
        self._spreadsheet_id = spreadsheet_id or ""
        self._range = range_ or ""
        self._access_token = access_token or ""
        self._sheet_gid = sheet_gid
        self._value_input_option = value_input_option
        self._api_base = api_base.rstrip("/")

    def with_range(self, range_: str) -> "RecordStore":
        """Same spreadsheet and token, different range."""
        return RecordStore(
            self._session,
            self._spreadsheet_id,
            range_,
            self._access_token,
            sheet_gid=self._sheet_gid,
            value_input_option=self._value_input_option,
            api_base=self._api_base,
        )

    # ------------------------------------------------------------------
    # Request helpers
    # ------------------------------------------------------------------

    def _is_configured(self) -> bool:
        return bool(self._spreadsheet_id and self._range and self._access_token)

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self._access_token}",
            "Content-Type": "application/json",
        }

    def _values_url(self, suffix: str = "") -> str:
        encoded = quote(self._range, safe="!:")
        return f"{self._api_base}/{self._spreadsheet_id}/values/{encoded}{suffix}"

    def _batch_update_url(self) -> str:
        return f"{self._api_base}/{self._spreadsheet_id}:batchUpdate"

    @staticmethod
    async def _raise_for_status(resp: aiohttp.ClientResponse) -> None:
        if 200 <= resp.status < 300:
            return
        text = await resp.text()
        raise StorageError(
            f"Google Sheets API error: {resp.status} {resp.reason} - {text}"
        )

    async def _request(
        self,
        method: str,
        url: str,
        *,
        params: Optional[Dict[str, str]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        """Issue one request and return the decoded JSON body.

        Raises:
            StorageError: On a non-2xx status or transport failure.
        """
        try:
            async with self._session.request(
                method, url, params=params, json=json_body, headers=self._headers()
            ) as resp:
                await self._raise_for_status(resp)
                return await resp.json(content_type=None)
        except (aiohttp.ClientError, asyncio.TimeoutError) as exc:
            raise StorageError(f"Google Sheets API error: {exc}") from exc
        except ValueError as exc:
            raise StorageError(f"Google Sheets API error: invalid JSON body ({exc})") from exc

    # ------------------------------------------------------------------
    # Read operations
    # ------------------------------------------------------------------

    async def read_values(self) -> Result[List[List[Any]], StorageError]:
        """Return the raw value grid for the configured range."""
        if not self._is_configured():
            return Err(StorageError(_MISSING_FIELDS))
        try:
            data = await self._request("GET", self._values_url())
        except StorageError as exc:
            logger.error("Sheet read failed for range %s: %s", self._range, exc)
            return Err(exc)
        values = data.get("values") if isinstance(data, dict) else None
        return Ok(list(values or []))

    async def read_existing_ids(self) -> Result[Set[str], StorageError]:
        """Return the set of valid Discord ids in the first column.

        The header row is skipped; blank or malformed cells are dropped
        without failing the read.
        """
        result = await self.read_values()
        if not result.ok:
            return result

        ids: Set[str] = set()
        skipped = 0
        for row in result.value[1:]:
            cell = row[0] if isinstance(row, list) and row else None
            if is_valid_external_id(cell):
                ids.add(cell)
            else:
                skipped += 1
        if skipped:
            logger.debug("Ignored %d blank/malformed id cells in %s", skipped, self._range)
        logger.info("Read %d existing ids from %s", len(ids), self._range)
        return Ok(ids)

    async def find_rows(self, column_index: int, value: str) -> Result[List[int], StorageError]:
        """Return 1-indexed sheet rows whose *column_index* cell equals *value*.

        Row 1 is the header and never matches; comparison is on
        whitespace-trimmed strings.
        """
        result = await self.read_values()
        if not result.ok:
            return result

        needle = str(value or "").strip()
        matches: List[int] = []
        for index, row in enumerate(result.value):
            if index == 0:
                continue
            cell = row[column_index] if isinstance(row, list) and len(row) > column_index else ""
            if str(cell or "").strip() == needle:
                matches.append(index + 1)
        return Ok(matches)

    # ------------------------------------------------------------------
    # Write operations
    # ------------------------------------------------------------------

    async def append(self, rows: Sequence[CanonicalRow]) -> Result[int, StorageError]:
        """Append *rows* in a single batched request.

        Returns:
            ``Ok(count)`` of rows written (``0`` for empty input, with no
            request made), or ``Err(StorageError)``.
        """
        if not self._is_configured():
            return Err(StorageError(_MISSING_FIELDS))
        if not rows:
            return Ok(0)

        values = [to_sheet_row(row) for row in rows]
        try:
            data = await self._request(
                "POST",
                self._values_url(":append"),
                params={"valueInputOption": self._value_input_option},
                json_body={"values": values},
            )
        except StorageError as exc:
            logger.error("Append of %d rows failed: %s", len(values), exc)
            return Err(exc)

        updated: Optional[int] = None
        if isinstance(data, dict):
            updates = data.get("updates")
            if isinstance(updates, dict) and isinstance(updates.get("updatedRows"), int):
                updated = updates["updatedRows"]
        if updated is None:
            updated = len(values)
        logger.info("Appended %d rows to %s", updated, self._range)
        return Ok(updated)

    async def delete_rows(self, row_indexes: Iterable[int]) -> Result[int, StorageError]:
        """Delete 1-indexed sheet rows.

        Rows are deleted highest-first inside one ``batchUpdate`` so earlier
        deletions do not shift the indexes of later ones.  Row 1 is the
        header and anything below 2 is ignored.
        """
        if not self._is_configured():
            return Err(StorageError(_MISSING_FIELDS))

        rows = list(row_indexes)
        if any(isinstance(r, bool) or not isinstance(r, int) for r in rows):
            return Err(StorageError("Invalid row indexes: expected integer row numbers"))
        ordered = sorted({r for r in rows if r >= 2}, reverse=True)
        if not ordered:
            return Ok(0)

        requests = [
            {
                "deleteDimension": {
                    "range": {
                        "sheetId": self._sheet_gid,
                        "dimension": "ROWS",
                        "startIndex": row - 1,
                        "endIndex": row,
                    }
                }
            }
            for row in ordered
        ]
        try:
            await self._request(
                "POST", self._batch_update_url(), json_body={"requests": requests}
            )
        except StorageError as exc:
            logger.error("Delete of %d rows failed: %s", len(requests), exc)
            return Err(exc)

        logger.info("Deleted %d rows from sheet gid=%d", len(requests), self._sheet_gid)
        return Ok(len(requests))

    async def delete_rows_by_id(self, external_id: str) -> Result[int, StorageError]:
        """Delete every row whose first column equals *external_id*."""
        found = await self.find_rows(0, external_id)
        if not found.ok:
            return found
        return await self.delete_rows(found.value)
