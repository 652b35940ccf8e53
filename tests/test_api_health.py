import tempfile
import unittest
from pathlib import Path

try:
    from fastapi.testclient import TestClient

    from report_agent.report_api.main import create_app
    from report_agent.report_core.config import Settings

    HAS_FASTAPI = True
except ModuleNotFoundError:
    HAS_FASTAPI = False


@unittest.skipUnless(HAS_FASTAPI, "fastapi dependencies are not installed")
class ApiHealthTests(unittest.TestCase):
    def test_health_endpoint_returns_ok_payload(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            settings = Settings(
                telegram_bot_token="",
                database_path=Path(tmpdir) / "health.db",
                google_spreadsheet_id="",
                sheet_layout_path=Path(tmpdir) / "missing.yaml",
                admin_user="",
                admin_pass="",
            )
            client = TestClient(create_app(settings))
            response = client.get("/api/health")

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json(), {"status": "ok", "service": "report-agent"})


if __name__ == "__main__":
    unittest.main()
