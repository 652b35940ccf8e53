#!/usr/bin/env python3
from __future__ import annotations

import argparse
import sys
from pathlib import Path

import uvicorn

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from report_agent.report_core.config import get_settings
from report_agent.report_core.google_auth import GoogleCredentialProvider
from report_agent.report_core.layout import load_layout


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Start the admin API after validating the sheet layout.")
    parser.add_argument("--host", default="0.0.0.0", help="Bind host (default: 0.0.0.0)")
    parser.add_argument("--port", type=int, default=8000, help="Bind port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Enable uvicorn reload mode")
    parser.add_argument("--log-level", default="info", help="Uvicorn log level (default: info)")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    settings = get_settings()
    layout = load_layout(settings.sheet_layout_path)
    credentials_mode = GoogleCredentialProvider.from_settings(settings).mode
    spreadsheet = "set" if (settings.google_spreadsheet_id or layout.spreadsheet_id) else "missing"
    print(f"[start_api] layout=OK spreadsheet={spreadsheet} credentials={credentials_mode}")

    uvicorn.run(
        "report_agent.report_api.main:create_app",
        factory=True,
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=args.log_level,
    )
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
