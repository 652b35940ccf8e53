import unittest
from io import StringIO
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

from report_agent.report_core.layout import LayoutValidationError
from scripts import start_api


def _settings(spreadsheet_id: str = "sheet-1"):
    return SimpleNamespace(sheet_layout_path="config/sheet_layout.yaml", google_spreadsheet_id=spreadsheet_id)


class StartApiScriptTests(unittest.TestCase):
    def test_main_runs_uvicorn_after_layout_check(self) -> None:
        settings = _settings()
        provider = MagicMock(mode="json")
        with patch.object(start_api, "get_settings", return_value=settings), patch.object(
            start_api, "load_layout", return_value=SimpleNamespace(spreadsheet_id=None)
        ) as mock_layout, patch.object(
            start_api.GoogleCredentialProvider, "from_settings", return_value=provider
        ), patch.object(start_api.uvicorn, "run") as mock_run, patch(
            "sys.stdout", new_callable=StringIO
        ) as stdout:
            result = start_api.main(["--host", "127.0.0.1", "--port", "8010", "--log-level", "warning"])

        self.assertEqual(result, 0)
        mock_layout.assert_called_once_with(settings.sheet_layout_path)
        mock_run.assert_called_once()
        self.assertEqual(mock_run.call_args.args[0], "report_agent.report_api.main:create_app")
        kwargs = mock_run.call_args.kwargs
        self.assertTrue(kwargs["factory"])
        self.assertEqual(kwargs["host"], "127.0.0.1")
        self.assertEqual(kwargs["port"], 8010)
        self.assertEqual(kwargs["log_level"], "warning")
        self.assertIn("layout=OK spreadsheet=set credentials=json", stdout.getvalue())

    def test_missing_spreadsheet_is_reported(self) -> None:
        with patch.object(start_api, "get_settings", return_value=_settings("")), patch.object(
            start_api, "load_layout", return_value=SimpleNamespace(spreadsheet_id=None)
        ), patch.object(
            start_api.GoogleCredentialProvider, "from_settings", return_value=MagicMock(mode="none")
        ), patch.object(start_api.uvicorn, "run"), patch("sys.stdout", new_callable=StringIO) as stdout:
            start_api.main([])

        self.assertIn("spreadsheet=missing credentials=none", stdout.getvalue())

    def test_main_propagates_layout_failure(self) -> None:
        with patch.object(start_api, "get_settings", return_value=_settings()), patch.object(
            start_api, "load_layout", side_effect=LayoutValidationError("broken layout")
        ), patch.object(start_api.uvicorn, "run") as mock_run:
            with self.assertRaises(LayoutValidationError):
                start_api.main([])

        mock_run.assert_not_called()


if __name__ == "__main__":
    unittest.main()
