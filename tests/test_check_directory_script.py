import json
import unittest
from io import StringIO
from unittest.mock import AsyncMock, patch

from report_agent.report_core.errors import DirectoryUnreachable
from report_agent.report_core.layout import LayoutValidationError
from scripts import check_directory


MATCHED_PAYLOAD = {
    "directory_size": 3,
    "lookup": {
        "status": "matched",
        "phone": "998901234567",
        "candidate": {"display_name": "Client A", "source_row": 5},
        "match_rule": "canonical",
        "directory_size": 3,
        "matched": True,
    },
}


class CheckDirectoryScriptTests(unittest.TestCase):
    def test_prints_directory_size_without_phone(self) -> None:
        with patch.object(check_directory, "_collect", AsyncMock(return_value={"directory_size": 3})) as mock_collect, patch(
            "sys.stdout", new_callable=StringIO
        ) as stdout:
            code = check_directory.main([])

        self.assertEqual(code, 0)
        mock_collect.assert_awaited_once_with(None)
        self.assertIn("Directory loaded: 3 phones", stdout.getvalue())

    def test_match_is_printed_and_json_mode_is_parseable(self) -> None:
        with patch.object(check_directory, "_collect", AsyncMock(return_value=MATCHED_PAYLOAD)), patch(
            "sys.stdout", new_callable=StringIO
        ) as stdout:
            code = check_directory.main(["--phone", "+998 90 123 45 67"])
        self.assertEqual(code, 0)
        self.assertIn("[MATCH] 998901234567 -> Client A (row 5, rule=canonical)", stdout.getvalue())

        with patch.object(check_directory, "_collect", AsyncMock(return_value=MATCHED_PAYLOAD)), patch(
            "sys.stdout", new_callable=StringIO
        ) as stdout:
            check_directory.main(["--phone", "998901234567", "--json"])
        self.assertEqual(json.loads(stdout.getvalue())["lookup"]["match_rule"], "canonical")

    def test_missing_phone_returns_three(self) -> None:
        payload = {
            "directory_size": 3,
            "lookup": {"status": "not_registered", "phone": "998900000000", "candidate": None, "matched": False},
        }
        with patch.object(check_directory, "_collect", AsyncMock(return_value=payload)), patch(
            "sys.stdout", new_callable=StringIO
        ) as stdout:
            code = check_directory.main(["--phone", "998900000000"])

        self.assertEqual(code, 3)
        self.assertIn("[MISS] 998900000000: not_registered", stdout.getvalue())

    def test_error_exit_codes(self) -> None:
        cases = [
            (LayoutValidationError("bad layout"), 1),
            (DirectoryUnreachable("timeout"), 2),
        ]
        for error, expected in cases:
            with self.subTest(error=type(error).__name__):
                with patch.object(check_directory, "_collect", AsyncMock(side_effect=error)), patch(
                    "sys.stderr", new_callable=StringIO
                ) as stderr:
                    code = check_directory.main([])
                self.assertEqual(code, expected)
                self.assertIn("[ERROR]", stderr.getvalue())


if __name__ == "__main__":
    unittest.main()
