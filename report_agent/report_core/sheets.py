from __future__ import annotations

import asyncio
import logging
from threading import Lock
from typing import Any, Callable, List, Optional, Protocol, Sequence, TypeVar

import gspread
from google.auth.exceptions import RefreshError, TransportError
from gspread.exceptions import GSpreadException
from gspread.utils import ValueInputOption

from report_agent.report_core.errors import CredentialFailure, SpreadsheetError
from report_agent.report_core.google_auth import GoogleCredentialProvider

logger = logging.getLogger(__name__)

Grid = List[List[Any]]
T = TypeVar("T")

SPREADSHEET_ATTEMPTS = 2


class SpreadsheetAPI(Protocol):
    async def get_values(self, sheet_name: str, range_expr: str) -> Grid:
        ...

    async def set_values(self, sheet_name: str, range_expr: str, grid: Sequence[Sequence[Any]]) -> None:
        ...


class SpreadsheetClient:
    """Async facade over gspread for a single spreadsheet.

    gspread is blocking, so every call runs in a worker thread. The timeout is
    applied to the HTTP session itself, so a call that gives up has really
    stopped and never lands a late write. One transparent retry happens before
    a ``SpreadsheetError`` surfaces.
    """

    def __init__(
        self,
        spreadsheet_id: str,
        credentials: GoogleCredentialProvider,
        timeout_seconds: float = 20.0,
        attempts: int = SPREADSHEET_ATTEMPTS,
    ) -> None:
        self.spreadsheet_id = spreadsheet_id.strip()
        self.credentials = credentials
        self.timeout_seconds = timeout_seconds
        self.attempts = max(1, int(attempts))
        self._spreadsheet: Optional[gspread.Spreadsheet] = None
        self._lock = Lock()

    def is_configured(self) -> bool:
        return bool(self.spreadsheet_id and self.credentials.is_configured())

    def _open(self) -> gspread.Spreadsheet:
        with self._lock:
            if self._spreadsheet is None:
                if not self.spreadsheet_id:
                    raise SpreadsheetError("GOOGLE_SPREADSHEET_ID is not configured")
                client = gspread.authorize(self.credentials.get_credentials())
                client.set_timeout(self.timeout_seconds)
                self._spreadsheet = client.open_by_key(self.spreadsheet_id)
            return self._spreadsheet

    def _worksheet(self, sheet_name: str) -> gspread.Worksheet:
        return self._open().worksheet(sheet_name)

    def _read(self, sheet_name: str, range_expr: str) -> Grid:
        values = self._worksheet(sheet_name).get(range_expr)
        return [list(row) for row in values or []]

    def _write(self, sheet_name: str, range_expr: str, grid: Sequence[Sequence[Any]]) -> None:
        self._worksheet(sheet_name).update(
            values=[list(row) for row in grid],
            range_name=range_expr,
            value_input_option=ValueInputOption.user_entered,
        )

    async def _call(self, operation: str, func: Callable[[], T]) -> T:
        last_error: Optional[BaseException] = None
        for attempt in range(1, self.attempts + 1):
            try:
                return await asyncio.to_thread(func)
            except CredentialFailure:
                raise
            except RefreshError as exc:
                raise CredentialFailure(f"Google rejected the service account credentials: {exc}") from exc
            except (GSpreadException, OSError, TransportError) as exc:
                last_error = exc
                if isinstance(exc, gspread.WorksheetNotFound):
                    break
                if attempt < self.attempts:
                    logger.warning("Spreadsheet %s failed (attempt %s), retrying: %s", operation, attempt, exc)
                    with self._lock:
                        self._spreadsheet = None
        detail = str(last_error) or type(last_error).__name__
        raise SpreadsheetError(f"Spreadsheet {operation} failed: {detail}") from last_error

    async def get_values(self, sheet_name: str, range_expr: str) -> Grid:
        return await self._call(f"read {sheet_name}!{range_expr}", lambda: self._read(sheet_name, range_expr))

    async def set_values(self, sheet_name: str, range_expr: str, grid: Sequence[Sequence[Any]]) -> None:
        await self._call(f"write {sheet_name}!{range_expr}", lambda: self._write(sheet_name, range_expr, grid))
