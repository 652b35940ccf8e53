import os
from dataclasses import dataclass
from datetime import time
from pathlib import Path

from dotenv import load_dotenv

# Load environment variables from a local .env if present.
load_dotenv()

SUPPORTED_LANGUAGES = ("uz", "ru", "en")


@dataclass
class Settings:
    telegram_bot_token: str
    database_path: Path
    google_spreadsheet_id: str
    sheet_layout_path: Path
    admin_user: str
    admin_pass: str
    google_service_account_json: str = ""
    google_service_account_email: str = ""
    google_private_key: str = ""
    google_credentials_file: str = ""
    report_timezone: str = "Asia/Tashkent"
    daily_report_time: time = time(hour=23, minute=50)
    daily_reports_enabled: bool = True
    report_settle_seconds: float | None = None
    sheets_timeout_seconds: float = 20.0
    export_timeout_seconds: float = 30.0
    daily_batch_budget_seconds: float = 1800.0
    daily_min_delay_seconds: float = 2.0
    daily_max_delay_seconds: float = 30.0
    report_temp_dir: Path = Path()
    pdf_font_path: str = ""
    default_language: str = "uz"

    def has_google_credentials(self) -> bool:
        return bool(
            self.google_service_account_json
            or (self.google_service_account_email and self.google_private_key)
            or self.google_credentials_file
        )


def project_root() -> Path:
    # /project_root/report_agent/report_core/config.py -> project_root
    return Path(__file__).resolve().parent.parent.parent


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name, "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value >= 0 else default


def _parse_daily_time(raw_value: str) -> time:
    value = raw_value.strip()
    if not value:
        return time(hour=23, minute=50)
    try:
        hours, minutes = value.split(":", 1)
        return time(hour=int(hours), minute=int(minutes))
    except ValueError as exc:
        raise ValueError(f"DAILY_REPORT_TIME must look like HH:MM, got {raw_value!r}") from exc


def get_settings() -> Settings:
    root = project_root()

    database_path = os.getenv("DATABASE_PATH", "").strip()
    db_path = Path(database_path) if database_path else root / "data" / "report_agent.db"
    layout_env = os.getenv("SHEET_LAYOUT_PATH", "").strip()
    layout_path = Path(layout_env) if layout_env else root / "config" / "sheet_layout.yaml"
    temp_env = os.getenv("REPORT_TEMP_DIR", "").strip()
    temp_dir = Path(temp_env) if temp_env else root / "data" / "tmp"

    settle_raw = os.getenv("REPORT_SETTLE_SECONDS", "").strip()
    settle_seconds = _float_env("REPORT_SETTLE_SECONDS", 3.0) if settle_raw else None

    default_language = os.getenv("DEFAULT_LANGUAGE", "uz").strip().lower()
    if default_language not in SUPPORTED_LANGUAGES:
        default_language = "uz"

    daily_enabled = os.getenv("DAILY_REPORTS_ENABLED", "true").strip().lower() in {"1", "true", "yes", "on"}

    return Settings(
        telegram_bot_token=os.getenv("TELEGRAM_BOT_TOKEN", "").strip(),
        database_path=db_path,
        google_spreadsheet_id=os.getenv("GOOGLE_SPREADSHEET_ID", "").strip(),
        sheet_layout_path=layout_path,
        admin_user=os.getenv("ADMIN_USER", "").strip(),
        admin_pass=os.getenv("ADMIN_PASS", "").strip(),
        google_service_account_json=os.getenv("GOOGLE_SERVICE_ACCOUNT", "").strip(),
        google_service_account_email=os.getenv("GOOGLE_SERVICE_ACCOUNT_EMAIL", "").strip(),
        google_private_key=os.getenv("GOOGLE_PRIVATE_KEY", "").strip(),
        google_credentials_file=os.getenv("GOOGLE_CREDENTIALS_FILE", "").strip(),
        report_timezone=os.getenv("REPORT_TIMEZONE", "Asia/Tashkent").strip() or "Asia/Tashkent",
        daily_report_time=_parse_daily_time(os.getenv("DAILY_REPORT_TIME", "23:50")),
        daily_reports_enabled=daily_enabled,
        report_settle_seconds=settle_seconds,
        sheets_timeout_seconds=_float_env("SHEETS_TIMEOUT_SECONDS", 20.0),
        export_timeout_seconds=_float_env("EXPORT_TIMEOUT_SECONDS", 30.0),
        daily_batch_budget_seconds=_float_env("DAILY_BATCH_BUDGET_SECONDS", 1800.0),
        daily_min_delay_seconds=_float_env("DAILY_MIN_DELAY_SECONDS", 2.0),
        daily_max_delay_seconds=_float_env("DAILY_MAX_DELAY_SECONDS", 30.0),
        report_temp_dir=temp_dir,
        pdf_font_path=os.getenv("PDF_FONT_PATH", "").strip(),
        default_language=default_language,
    )
