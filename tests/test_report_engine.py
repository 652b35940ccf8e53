import unittest
from datetime import date
from typing import Any, List
from unittest.mock import AsyncMock

try:
    from report_agent.report_core.errors import SpreadsheetError
    from report_agent.report_core.layout import ReportLayout
    from report_agent.report_core.report_engine import ReportData, SheetReportEngine, parse_report_rows

    HAS_ENGINE_DEPS = True
except ModuleNotFoundError:
    HAS_ENGINE_DEPS = False


OUTPUT_ROWS = [
    ["BPS", "998901234567"],
    ["", "", "2024-01-01", "2024-01-31"],
    ["Header"],
    ["Label", "Value"],
    ["Orders", 12, "", 3],
    ["", "", ""],
    [None, "orphan value"],
    ["Total", "1 200 000"],
]


class _RecordingSheets:
    def __init__(self, rows: List[List[Any]] = None, read_error: Exception = None, write_error: Exception = None):
        self.rows = rows or []
        self.read_error = read_error
        self.write_error = write_error
        self.writes: List[tuple] = []
        self.reads: List[tuple] = []

    async def get_values(self, sheet_name: str, range_expr: str):
        self.reads.append((sheet_name, range_expr))
        if self.read_error is not None:
            raise self.read_error
        return self.rows

    async def set_values(self, sheet_name: str, range_expr: str, grid) -> None:
        self.writes.append((sheet_name, range_expr, grid))
        if self.write_error is not None and grid != [[""]]:
            raise self.write_error


def _engine(sheets, settle_seconds=None):
    layout = ReportLayout(worksheet="Report")
    sleep = AsyncMock()
    return SheetReportEngine(sheets, layout, settle_seconds=settle_seconds, sleep=sleep), sleep


@unittest.skipUnless(HAS_ENGINE_DEPS, "report engine dependencies are not installed")
class ParseReportRowsTests(unittest.TestCase):
    def test_skips_header_and_blank_rows(self) -> None:
        fields = parse_report_rows(OUTPUT_ROWS, header_rows=4)
        self.assertEqual(fields, {"Orders": [12, 3], "Row 7": ["orphan value"], "Total": ["1 200 000"]})

    def test_no_rows_after_header_is_empty(self) -> None:
        self.assertEqual(parse_report_rows(OUTPUT_ROWS[:4], header_rows=4), {})

    def test_period_label(self) -> None:
        single = ReportData("998901234567", date(2024, 1, 5), date(2024, 1, 5))
        ranged = ReportData("998901234567", date(2024, 1, 1), date(2024, 1, 31))
        self.assertEqual(single.period_label, "2024-01-05")
        self.assertIn("2024-01-31", ranged.period_label)
        self.assertTrue(single.is_empty)


@unittest.skipUnless(HAS_ENGINE_DEPS, "report engine dependencies are not installed")
class SheetReportEngineTests(unittest.IsolatedAsyncioTestCase):
    async def test_compute_writes_inputs_waits_and_reads_output(self) -> None:
        sheets = _RecordingSheets(rows=OUTPUT_ROWS)
        engine, sleep = _engine(sheets)

        report = await engine.compute("998901234567", date(2024, 1, 1), date(2024, 1, 31))

        self.assertEqual(
            sheets.writes,
            [
                ("Report", "B1", [["998901234567"]]),
                ("Report", "C2", [["2024-01-01"]]),
                ("Report", "D2", [["2024-01-31"]]),
            ],
        )
        sleep.assert_awaited_once_with(3.0)
        self.assertEqual(sheets.reads, [("Report", "A1:Z20")])
        self.assertEqual(len(report.raw_rows), len(OUTPUT_ROWS))
        self.assertEqual(report.computed_fields["Orders"], [12, 3])
        self.assertFalse(report.is_empty)

    async def test_settle_override_replaces_layout_value(self) -> None:
        engine, sleep = _engine(_RecordingSheets(rows=[]), settle_seconds=0.5)
        await engine.compute("998901234567", date(2024, 1, 1), date(2024, 1, 1))
        sleep.assert_awaited_once_with(0.5)

    async def test_zero_settle_skips_sleep(self) -> None:
        engine, sleep = _engine(_RecordingSheets(rows=[]), settle_seconds=0)
        await engine.compute("998901234567", date(2024, 1, 1), date(2024, 1, 1))
        sleep.assert_not_awaited()

    async def test_read_failure_is_no_data(self) -> None:
        engine, _ = _engine(_RecordingSheets(read_error=SpreadsheetError("read timeout")))
        report = await engine.compute("998901234567", date(2024, 1, 1), date(2024, 1, 1))
        self.assertTrue(report.is_empty)
        self.assertEqual(report.raw_rows, [])

    async def test_write_failure_propagates(self) -> None:
        engine, sleep = _engine(_RecordingSheets(write_error=SpreadsheetError("quota")))
        with self.assertRaises(SpreadsheetError):
            await engine.compute("998901234567", date(2024, 1, 1), date(2024, 1, 1))
        sleep.assert_not_awaited()

    async def test_cleanup_clears_all_input_cells(self) -> None:
        sheets = _RecordingSheets()
        engine, _ = _engine(sheets)
        await engine.cleanup()
        self.assertEqual(
            sheets.writes,
            [("Report", "B1", [[""]]), ("Report", "C2", [[""]]), ("Report", "D2", [[""]])],
        )

    async def test_session_cleans_up_once_on_success_empty_and_error(self) -> None:
        cases = {
            "success": _RecordingSheets(rows=OUTPUT_ROWS),
            "empty": _RecordingSheets(rows=OUTPUT_ROWS[:4]),
            "error": _RecordingSheets(write_error=SpreadsheetError("down")),
        }
        for name, sheets in cases.items():
            with self.subTest(case=name):
                engine, _ = _engine(sheets)
                engine.cleanup = AsyncMock(wraps=engine.cleanup)
                try:
                    async with engine.session("998901234567", date(2024, 1, 1), date(2024, 1, 1)):
                        pass
                except SpreadsheetError:
                    self.assertEqual(name, "error")
                engine.cleanup.assert_awaited_once()

    async def test_session_cleans_up_when_body_raises(self) -> None:
        sheets = _RecordingSheets(rows=OUTPUT_ROWS)
        engine, _ = _engine(sheets)
        with self.assertRaises(RuntimeError):
            async with engine.session("998901234567", date(2024, 1, 1), date(2024, 1, 1)):
                raise RuntimeError("export crashed")
        self.assertEqual(sheets.writes[-3:], [("Report", "B1", [[""]]), ("Report", "C2", [[""]]), ("Report", "D2", [[""]])])

    async def test_cleanup_errors_are_logged_not_raised(self) -> None:
        sheets = _RecordingSheets()
        sheets.set_values = AsyncMock(side_effect=SpreadsheetError("gone"))
        engine, _ = _engine(sheets)
        with self.assertLogs("report_agent.report_core.report_engine", level="ERROR"):
            await engine.cleanup()
        self.assertEqual(sheets.set_values.await_count, 3)


if __name__ == "__main__":
    unittest.main()
