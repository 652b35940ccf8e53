from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional

from report_agent.report_core.errors import SpreadsheetError
from report_agent.report_core.layout import ReportLayout
from report_agent.report_core.sheets import SpreadsheetAPI

logger = logging.getLogger(__name__)


@dataclass
class ReportData:
    phone_number: str
    date_from: date
    date_to: date
    raw_rows: List[List[Any]] = field(default_factory=list)
    computed_fields: Dict[str, List[Any]] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.computed_fields

    @property
    def period_label(self) -> str:
        if self.date_from == self.date_to:
            return self.date_from.isoformat()
        return f"{self.date_from.isoformat()} — {self.date_to.isoformat()}"


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def parse_report_rows(rows: List[List[Any]], header_rows: int) -> Dict[str, List[Any]]:
    fields: Dict[str, List[Any]] = {}
    for index in range(header_rows, len(rows)):
        row = rows[index] or []
        if not row:
            continue
        label = str(row[0]).strip() if not _is_blank(row[0]) else f"Row {index + 1}"
        values = [cell for cell in row[1:] if not _is_blank(cell)]
        if values:
            fields[label] = values
    return fields


class SheetReportEngine:
    """Drives the report worksheet as a remote calculator.

    Inputs (phone, date range) are written into fixed cells, the sheet is given
    ``settle_seconds`` to recalculate, then the output range is read back. The
    sheet gives no completion signal, so under load a slow recalculation can
    still be read half-done; raise ``settle_seconds`` if that shows up.
    """

    def __init__(
        self,
        sheets: SpreadsheetAPI,
        layout: ReportLayout,
        settle_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.sheets = sheets
        self.layout = layout
        self.settle_seconds = layout.settle_seconds if settle_seconds is None else max(0.0, settle_seconds)
        self._sleep = sleep

    async def compute(self, phone: str, date_from: date, date_to: date) -> ReportData:
        worksheet = self.layout.worksheet
        await self.sheets.set_values(worksheet, self.layout.phone_cell, [[phone]])
        await self.sheets.set_values(worksheet, self.layout.date_from_cell, [[date_from.isoformat()]])
        await self.sheets.set_values(worksheet, self.layout.date_to_cell, [[date_to.isoformat()]])
        logger.info("Report inputs written: phone=%s, from=%s, to=%s", phone, date_from, date_to)

        if self.settle_seconds:
            await self._sleep(self.settle_seconds)

        report = ReportData(phone_number=phone, date_from=date_from, date_to=date_to)
        try:
            rows = await self.sheets.get_values(worksheet, self.layout.output_range)
        except SpreadsheetError as exc:
            logger.warning("Report output read failed for %s, treating as no data: %s", phone, exc)
            return report

        report.raw_rows = [list(row or []) for row in rows]
        report.computed_fields = parse_report_rows(report.raw_rows, self.layout.header_rows)
        logger.info("Report computed for %s: %s fields, %s raw rows", phone, len(report.computed_fields), len(rows))
        return report

    async def cleanup(self) -> None:
        worksheet = self.layout.worksheet
        for cell in self.layout.input_cells():
            try:
                await self.sheets.set_values(worksheet, cell, [[""]])
            except SpreadsheetError:
                logger.exception("Failed to clear report input cell %s!%s", worksheet, cell)

    @asynccontextmanager
    async def session(self, phone: str, date_from: date, date_to: date) -> AsyncIterator[ReportData]:
        try:
            report = await self.compute(phone, date_from, date_to)
            yield report
        finally:
            await self.cleanup()
