from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import date, datetime
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo

from report_agent.report_core import db as db_module
from report_agent.report_core.config import Settings, get_settings
from report_agent.report_core.delivery import DocumentDelivery
from report_agent.report_core.directory import DirectoryLookup, DirectoryRegistry
from report_agent.report_core.errors import (
    AlreadyProcessing,
    CredentialFailure,
    DirectoryUnreachable,
    ExportChainExhausted,
    NoDataForPeriod,
    SpreadsheetError,
)
from report_agent.report_core.export import (
    Artifact,
    DirectExportStrategy,
    PdfStrategy,
    ReportExportChain,
    TextStrategy,
    WorkbookStrategy,
    cleanup_artifact,
)
from report_agent.report_core.google_auth import GoogleCredentialProvider
from report_agent.report_core.guard import SCRATCH_LOCK_NAME, ProcessLock, RequestDedupGuard
from report_agent.report_core.layout import load_layout
from report_agent.report_core.report_engine import SheetReportEngine
from report_agent.report_core.sheets import SpreadsheetClient

logger = logging.getLogger(__name__)

OUTCOME_READY = "ready"
OUTCOME_NO_DATA = "no_data"
OUTCOME_ALREADY_PROCESSING = "already_processing"
OUTCOME_FAILED = "failed"

REGISTRATION_OK = "registered"
REGISTRATION_NOT_IN_DIRECTORY = "not_in_directory"
REGISTRATION_INVALID_PHONE = "invalid_phone"
REGISTRATION_DIRECTORY_UNAVAILABLE = "directory_unavailable"


@dataclass
class ReportOutcome:
    status: str
    phone: str
    date_from: date
    date_to: date
    artifact: Optional[Artifact] = None
    error: Optional[str] = None

    @property
    def period(self) -> str:
        if self.date_from == self.date_to:
            return self.date_from.strftime("%d.%m.%Y")
        return f"{self.date_from.strftime('%d.%m.%Y')} — {self.date_to.strftime('%d.%m.%Y')}"


@dataclass
class RegistrationResult:
    status: str
    phone: Optional[str] = None
    user: Optional[db_module.RegisteredUser] = None
    lookup: Optional[DirectoryLookup] = None
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.status == REGISTRATION_OK


def report_today(timezone_name: str) -> date:
    return datetime.now(ZoneInfo(timezone_name)).date()


def _discard_outcome(task: "asyncio.Future[ReportOutcome]") -> None:
    if task.cancelled() or task.exception() is not None:
        return
    outcome = task.result()
    if outcome.artifact is not None:
        logger.info("Discarding report for %s, requester went away", outcome.phone)
        cleanup_artifact(outcome.artifact)


class ReportPipeline:
    """Directory lookup, guarded computation, export and delivery in one place.

    Interactive handlers and the daily scheduler share one instance so both go
    through the same guard.
    """

    def __init__(
        self,
        directory: DirectoryRegistry,
        engine: SheetReportEngine,
        export_chain: ReportExportChain,
        guard: RequestDedupGuard,
        database_path: Path,
        timezone_name: str = "Asia/Tashkent",
    ) -> None:
        self.directory = directory
        self.engine = engine
        self.export_chain = export_chain
        self.guard = guard
        self.database_path = database_path
        self.timezone_name = timezone_name

    def today(self) -> date:
        return report_today(self.timezone_name)

    async def lookup_phone(self, raw_phone: str) -> DirectoryLookup:
        return await self.directory.lookup(raw_phone)

    async def register_phone(
        self,
        telegram_id: int,
        raw_phone: str,
        language_code: str = "uz",
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        username: Optional[str] = None,
    ) -> RegistrationResult:
        try:
            lookup = await self.directory.lookup(raw_phone)
        except (DirectoryUnreachable, CredentialFailure) as exc:
            logger.error("Directory unreachable while registering %s: %s", telegram_id, exc)
            return RegistrationResult(status=REGISTRATION_DIRECTORY_UNAVAILABLE, error=str(exc))

        if lookup.phone is None:
            return RegistrationResult(status=REGISTRATION_INVALID_PHONE, lookup=lookup)
        if not lookup.matched:
            return RegistrationResult(status=REGISTRATION_NOT_IN_DIRECTORY, phone=lookup.phone, lookup=lookup)

        candidate = lookup.candidate
        conn = db_module.get_connection(self.database_path)
        try:
            user = db_module.upsert_user_phone(
                conn,
                telegram_id=telegram_id,
                phone_number=lookup.phone,
                display_name=candidate.display_name if candidate else "",
                language_code=language_code,
                original_phone=raw_phone,
                registry_row=candidate.source_row if candidate else None,
                first_name=first_name,
                last_name=last_name,
                username=username,
            )
        finally:
            conn.close()
        logger.info("Registered phone %s for telegram user %s", lookup.phone, telegram_id)
        return RegistrationResult(status=REGISTRATION_OK, phone=lookup.phone, user=user, lookup=lookup)

    def get_registered_user(self, telegram_id: int) -> Optional[db_module.RegisteredUser]:
        conn = db_module.get_connection(self.database_path)
        try:
            return db_module.get_user_by_telegram_id(conn, telegram_id)
        finally:
            conn.close()

    def list_registered_users(self) -> list[db_module.RegisteredUser]:
        conn = db_module.get_connection(self.database_path)
        try:
            return db_module.list_registered_users(conn)
        finally:
            conn.close()

    async def _guarded_run(
        self,
        phone: str,
        date_from: date,
        date_to: date,
        language: str,
        display_name: Optional[str],
        requested_by: Optional[int],
    ) -> ReportOutcome:
        async with self.guard.hold(phone, requested_by=requested_by, date_from=date_from, date_to=date_to):
            async with self.engine.session(phone, date_from, date_to) as report:
                if report.is_empty:
                    raise NoDataForPeriod(phone, report.period_label)
                # Export runs before cleanup: the direct export reads the live sheet.
                artifact = await self.export_chain.produce(
                    report,
                    phone,
                    date_from,
                    date_to,
                    language,
                    display_name=display_name,
                )
        return ReportOutcome(status=OUTCOME_READY, phone=phone, date_from=date_from, date_to=date_to, artifact=artifact)

    async def generate_report(
        self,
        phone: str,
        date_from: date,
        date_to: date,
        language: str = "uz",
        display_name: Optional[str] = None,
        requested_by: Optional[int] = None,
    ) -> ReportOutcome:
        if self.guard.is_processing(phone):
            return ReportOutcome(status=OUTCOME_ALREADY_PROCESSING, phone=phone, date_from=date_from, date_to=date_to)

        task = asyncio.ensure_future(
            self._guarded_run(phone, date_from, date_to, language, display_name, requested_by)
        )
        try:
            # Shielded: a half-written scratch region must never be abandoned.
            return await asyncio.shield(task)
        except asyncio.CancelledError:
            task.add_done_callback(_discard_outcome)
            raise
        except AlreadyProcessing:
            return ReportOutcome(status=OUTCOME_ALREADY_PROCESSING, phone=phone, date_from=date_from, date_to=date_to)
        except NoDataForPeriod:
            logger.info("No report data for %s in %s..%s", phone, date_from, date_to)
            return ReportOutcome(status=OUTCOME_NO_DATA, phone=phone, date_from=date_from, date_to=date_to)
        except CredentialFailure as exc:
            logger.exception("Google credential failure while building report for %s", phone)
            return ReportOutcome(
                status=OUTCOME_FAILED, phone=phone, date_from=date_from, date_to=date_to, error=str(exc)
            )
        except ExportChainExhausted as exc:
            logger.exception("Every export strategy failed for %s", phone)
            return ReportOutcome(
                status=OUTCOME_FAILED, phone=phone, date_from=date_from, date_to=date_to, error=str(exc)
            )
        except SpreadsheetError as exc:
            logger.error("Report sheet unavailable for %s: %s", phone, exc)
            return ReportOutcome(
                status=OUTCOME_FAILED, phone=phone, date_from=date_from, date_to=date_to, error=str(exc)
            )

    async def deliver(self, delivery: DocumentDelivery, chat_id: int, outcome: ReportOutcome, caption: str) -> None:
        if outcome.artifact is None:
            raise ValueError("outcome has no artifact to deliver")
        try:
            await delivery.send_document(chat_id, outcome.artifact, caption)
        finally:
            cleanup_artifact(outcome.artifact)


def build_pipeline(settings: Optional[Settings] = None) -> ReportPipeline:
    config = settings or get_settings()
    layout = load_layout(config.sheet_layout_path)
    spreadsheet_id = config.google_spreadsheet_id or layout.spreadsheet_id or ""
    credentials = GoogleCredentialProvider.from_settings(config)
    sheets = SpreadsheetClient(
        spreadsheet_id=spreadsheet_id,
        credentials=credentials,
        timeout_seconds=config.sheets_timeout_seconds,
    )
    export_chain = ReportExportChain(
        [
            DirectExportStrategy(
                spreadsheet_id=spreadsheet_id,
                credentials=credentials,
                worksheet_name=layout.report.worksheet,
                timeout_seconds=config.export_timeout_seconds,
                export_gid=layout.report.export_gid,
            ),
            WorkbookStrategy(),
            PdfStrategy(font_path=config.pdf_font_path),
            TextStrategy(),
        ],
        temp_root=config.report_temp_dir,
    )
    db_module.init_db(config.database_path)
    return ReportPipeline(
        directory=DirectoryRegistry(sheets, layout.directory),
        engine=SheetReportEngine(sheets, layout.report, settle_seconds=config.report_settle_seconds),
        export_chain=export_chain,
        guard=RequestDedupGuard(process_lock=ProcessLock(config.database_path, SCRATCH_LOCK_NAME)),
        database_path=config.database_path,
        timezone_name=config.report_timezone,
    )
