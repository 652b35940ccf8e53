from __future__ import annotations

import logging
import shutil
import tempfile
from dataclasses import dataclass, field
from datetime import date, datetime
from io import BytesIO
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence
from zipfile import BadZipFile

import httpx
from openpyxl import Workbook, load_workbook
from openpyxl.styles import Font
from openpyxl.utils import get_column_letter
from openpyxl.utils.exceptions import InvalidFileException
from reportlab.lib.pagesizes import A4
from reportlab.lib.units import mm
from reportlab.lib.utils import simpleSplit
from reportlab.pdfbase import pdfmetrics
from reportlab.pdfbase.ttfonts import TTFError, TTFont
from reportlab.pdfgen import canvas

from report_agent.report_core.errors import ExportChainExhausted
from report_agent.report_core.google_auth import GoogleCredentialProvider
from report_agent.report_core.messages import MessageKey, get_message
from report_agent.report_core.phone import digits_only, format_phone
from report_agent.report_core.report_engine import ReportData

logger = logging.getLogger(__name__)

EXPORT_URL_TEMPLATE = "https://docs.google.com/spreadsheets/d/{spreadsheet_id}/export"
XLSX_CONTENT_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"
TEXT_CONTENT_TYPE = "text/plain; charset=utf-8"
PDF_CONTENT_TYPE = "application/pdf"
DEFAULT_PDF_FONT_FILE = "DejaVuSans.ttf"
PDF_FALLBACK_FONT = "Helvetica"
PDF_MARGIN = 20 * mm
PDF_TITLE_SIZE = 16
PDF_BODY_SIZE = 11
WORKBOOK_COLUMN_WIDTH = 15
TEXT_RULE = "═" * 35


class ExportStrategyError(RuntimeError):
    """A single export strategy could not produce its artifact."""


@dataclass(frozen=True)
class Artifact:
    path: Path
    content_type: str
    extension: str
    strategy: str

    @property
    def filename(self) -> str:
        return self.path.name


@dataclass
class ExportContext:
    report: ReportData
    phone: str
    date_from: date
    date_to: date
    language: str
    display_name: Optional[str]
    work_dir: Path
    generated_at: datetime = field(default_factory=datetime.now)

    def target_path(self, extension: str) -> Path:
        stem = f"hisobot_{digits_only(self.phone)}_{self.date_from.isoformat()}_{self.date_to.isoformat()}"
        return self.work_dir / f"{stem}.{extension}"

    def label(self, key: MessageKey) -> str:
        return get_message(key, self.language)

    def header_lines(self) -> List[tuple[str, str]]:
        lines = [(self.label(MessageKey.LABEL_PHONE), format_phone(self.phone))]
        if self.display_name:
            lines.append((self.label(MessageKey.LABEL_CLIENT), self.display_name))
        lines.extend(
            [
                (self.label(MessageKey.LABEL_FROM), self.date_from.strftime("%d.%m.%Y")),
                (self.label(MessageKey.LABEL_TO), self.date_to.strftime("%d.%m.%Y")),
                (self.label(MessageKey.LABEL_GENERATED_AT), self.generated_at.strftime("%d.%m.%Y %H:%M")),
            ]
        )
        return lines


class ExportStrategy(Protocol):
    name: str
    extension: str
    content_type: str
    attempts: int

    def is_available(self) -> bool:
        ...

    async def produce(self, context: ExportContext) -> Path:
        ...


def keep_only_worksheet(content: bytes, worksheet_name: str) -> bytes:
    """Return ``content`` re-saved with every worksheet but ``worksheet_name`` removed.

    Formulas are replaced by their cached values since they may point at the
    removed tabs.
    """
    try:
        workbook = load_workbook(BytesIO(content), data_only=True)
    except (BadZipFile, InvalidFileException, KeyError, ValueError) as exc:
        raise ExportStrategyError(f"export endpoint returned an unreadable workbook: {exc}") from exc
    if worksheet_name not in workbook.sheetnames:
        raise ExportStrategyError(f"exported workbook has no worksheet {worksheet_name!r}")

    removed = [title for title in workbook.sheetnames if title != worksheet_name]
    for title in removed:
        workbook.remove(workbook[title])
    for name, definition in list(workbook.defined_names.items()):
        reference = definition.attr_text or ""
        if any(title in reference for title in removed):
            del workbook.defined_names[name]
    workbook.active = 0

    buffer = BytesIO()
    workbook.save(buffer)
    return buffer.getvalue()


class DirectExportStrategy:
    """Downloads the live spreadsheet as xlsx, keeping its native formatting.

    Google exports every tab of the spreadsheet, so the download is cut down to
    the report worksheet before it is written. Other tabs (the directory of
    every client phone in particular) never leave the process.
    """

    name = "direct_export"
    extension = "xlsx"
    content_type = XLSX_CONTENT_TYPE
    attempts = 2

    def __init__(
        self,
        spreadsheet_id: str,
        credentials: GoogleCredentialProvider,
        worksheet_name: str,
        timeout_seconds: float = 30.0,
        export_gid: Optional[int] = None,
        client_factory: Callable[..., Any] = httpx.AsyncClient,
    ) -> None:
        self.spreadsheet_id = spreadsheet_id.strip()
        self.worksheet_name = worksheet_name
        self.export_gid = export_gid
        self.credentials = credentials
        self.timeout_seconds = timeout_seconds
        self._client_factory = client_factory

    def is_available(self) -> bool:
        return bool(self.spreadsheet_id and self.credentials.is_configured())

    def _params(self) -> Dict[str, str]:
        params = {"format": "xlsx"}
        if self.export_gid is not None:
            params["gid"] = str(self.export_gid)
        return params

    async def produce(self, context: ExportContext) -> Path:
        token = await self.credentials.get_access_token()
        url = EXPORT_URL_TEMPLATE.format(spreadsheet_id=self.spreadsheet_id)
        async with self._client_factory(follow_redirects=True, timeout=self.timeout_seconds) as client:
            response = await client.get(url, params=self._params(), headers={"Authorization": f"Bearer {token}"})

        if response.status_code != 200:
            raise ExportStrategyError(f"export endpoint returned HTTP {response.status_code}")
        content_type = str(response.headers.get("content-type", "")).lower()
        if "text/html" in content_type:
            raise ExportStrategyError("export endpoint returned an HTML page instead of a workbook")
        content = response.content
        if not content:
            raise ExportStrategyError("export endpoint returned an empty body")

        path = context.target_path(self.extension)
        path.write_bytes(keep_only_worksheet(content, self.worksheet_name))
        return path


class WorkbookStrategy:
    """Builds an xlsx from the raw grid already held in memory."""

    name = "workbook"
    extension = "xlsx"
    content_type = XLSX_CONTENT_TYPE
    attempts = 1

    def is_available(self) -> bool:
        return True

    def build_rows(self, context: ExportContext) -> List[List[Any]]:
        rows: List[List[Any]] = [[f"BPS {context.label(MessageKey.LABEL_TITLE)}"]]
        rows.extend([[label, value] for label, value in context.header_lines()])
        rows.append([])
        raw_rows = context.report.raw_rows
        if not raw_rows:
            rows.append([context.label(MessageKey.LABEL_NO_DATA)])
            return rows
        width = max(len(row) for row in raw_rows)
        for row in raw_rows:
            # Pad ragged rows so every cell keeps its original column.
            rows.append(list(row) + [""] * (width - len(row)))
        return rows

    async def produce(self, context: ExportContext) -> Path:
        workbook = Workbook()
        worksheet = workbook.active
        worksheet.title = context.label(MessageKey.LABEL_TITLE)[:31]

        rows = self.build_rows(context)
        for row in rows:
            worksheet.append(row)
        worksheet.cell(row=1, column=1).font = Font(bold=True, size=14)

        max_columns = max((len(row) for row in rows), default=1)
        for index in range(1, max_columns + 1):
            worksheet.column_dimensions[get_column_letter(index)].width = WORKBOOK_COLUMN_WIDTH

        path = context.target_path(self.extension)
        workbook.save(path)
        return path


def _cell_text(value: Any) -> str:
    if value is None:
        return ""
    return str(value).strip()


def render_text_report(context: ExportContext) -> str:
    lines = [
        TEXT_RULE,
        f"📊 {context.label(MessageKey.LABEL_TITLE)}",
        "🏢 BPS (EUROASIA PRINT)",
        TEXT_RULE,
        "",
    ]
    lines.extend(f"{label}: {value}" for label, value in context.header_lines())
    lines.extend(["", TEXT_RULE, f"📋 {context.label(MessageKey.LABEL_REPORT_DATA)}", TEXT_RULE, ""])

    fields = context.report.computed_fields
    if fields:
        for label, values in fields.items():
            lines.append(f"▪️ {label}:")
            lines.append("   " + ", ".join(_cell_text(value) for value in values))
            lines.append("")
    else:
        lines.extend([f"❌ {context.label(MessageKey.LABEL_NO_DATA)}", ""])

    if context.report.raw_rows:
        lines.append(TEXT_RULE)
        for row in context.report.raw_rows:
            lines.append(" | ".join(_cell_text(value) for value in row))
    lines.append(TEXT_RULE)
    return "\n".join(lines)


class TextStrategy:
    """Terminal fallback: the same header block and data as plain text."""

    name = "text"
    extension = "txt"
    content_type = TEXT_CONTENT_TYPE
    attempts = 1

    def is_available(self) -> bool:
        return True

    async def produce(self, context: ExportContext) -> Path:
        path = context.target_path(self.extension)
        path.write_text(render_text_report(context), encoding="utf-8")
        return path


class PdfStrategy:
    """Draws the header block and computed fields onto A4 pages.

    Cyrillic labels need a TTF font. Without one the standard Helvetica face is
    used, which only covers Latin text.
    """

    name = "pdf"
    extension = "pdf"
    content_type = PDF_CONTENT_TYPE
    attempts = 1

    def __init__(self, font_path: str = "") -> None:
        self.font_path = font_path.strip()
        self._font_name: Optional[str] = None

    def is_available(self) -> bool:
        return True

    def _resolve_font(self) -> str:
        if self._font_name is not None:
            return self._font_name
        self._font_name = PDF_FALLBACK_FONT
        for candidate in (self.font_path, DEFAULT_PDF_FONT_FILE):
            if not candidate:
                continue
            font_name = f"ReportSans-{Path(candidate).stem}"
            try:
                pdfmetrics.registerFont(TTFont(font_name, candidate))
            except (TTFError, OSError) as exc:
                logger.warning("PDF font %s could not be loaded: %s", candidate, exc)
                continue
            self._font_name = font_name
            break
        return self._font_name

    def build_lines(self, context: ExportContext) -> List[str]:
        lines = [context.label(MessageKey.LABEL_TITLE), "BPS (EUROASIA PRINT)", ""]
        lines.extend(f"{label}: {value}" for label, value in context.header_lines())
        lines.extend(["", context.label(MessageKey.LABEL_REPORT_DATA)])
        fields = context.report.computed_fields
        if not fields:
            lines.append(context.label(MessageKey.LABEL_NO_DATA))
        for label, values in fields.items():
            lines.append(f"{label}: " + ", ".join(_cell_text(value) for value in values))
        return lines

    async def produce(self, context: ExportContext) -> Path:
        font_name = self._resolve_font()
        lines = self.build_lines(context)
        if font_name == PDF_FALLBACK_FONT:
            try:
                "\n".join(lines).encode("cp1252")
            except UnicodeEncodeError as exc:
                raise ExportStrategyError("no TTF font available for non-Latin report text") from exc

        path = context.target_path(self.extension)
        pdf = canvas.Canvas(str(path), pagesize=A4)
        page_width, page_height = A4
        text_width = page_width - 2 * PDF_MARGIN
        y = page_height - PDF_MARGIN
        for index, line in enumerate(lines):
            size = PDF_TITLE_SIZE if index == 0 else PDF_BODY_SIZE
            pdf.setFont(font_name, size)
            for piece in simpleSplit(line, font_name, size, text_width) or [""]:
                if y < PDF_MARGIN:
                    pdf.showPage()
                    pdf.setFont(font_name, size)
                    y = page_height - PDF_MARGIN
                pdf.drawString(PDF_MARGIN, y, piece)
                y -= size * 1.4
        pdf.save()
        return path


class ReportExportChain:
    def __init__(self, strategies: Sequence[ExportStrategy], temp_root: Optional[Path] = None) -> None:
        self.strategies = list(strategies)
        self.temp_root = temp_root

    def _make_work_dir(self) -> Path:
        if self.temp_root is not None:
            self.temp_root.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix="report_", dir=str(self.temp_root) if self.temp_root else None))

    async def produce(
        self,
        report_data: ReportData,
        phone: str,
        date_from: date,
        date_to: date,
        locale: str,
        display_name: Optional[str] = None,
    ) -> Artifact:
        work_dir = self._make_work_dir()
        context = ExportContext(
            report=report_data,
            phone=phone,
            date_from=date_from,
            date_to=date_to,
            language=locale,
            display_name=display_name,
            work_dir=work_dir,
        )
        errors: Dict[str, str] = {}
        for strategy in self.strategies:
            if not strategy.is_available():
                errors[strategy.name] = "not configured"
                continue
            for attempt in range(1, max(1, strategy.attempts) + 1):
                try:
                    path = await strategy.produce(context)
                except Exception as exc:  # any failure falls through to the next strategy
                    errors[strategy.name] = str(exc) or type(exc).__name__
                    logger.warning(
                        "Export strategy %s failed for %s (attempt %s): %s",
                        strategy.name,
                        phone,
                        attempt,
                        errors[strategy.name],
                    )
                    continue
                logger.info("Report for %s exported via %s: %s", phone, strategy.name, path.name)
                return Artifact(
                    path=path,
                    content_type=strategy.content_type,
                    extension=strategy.extension,
                    strategy=strategy.name,
                )

        shutil.rmtree(work_dir, ignore_errors=True)
        raise ExportChainExhausted(errors)


def cleanup_artifact(artifact: Artifact) -> None:
    try:
        artifact.path.unlink(missing_ok=True)
        if artifact.path.parent.name.startswith("report_"):
            shutil.rmtree(artifact.path.parent, ignore_errors=True)
    except OSError:
        logger.exception("Failed to remove report artifact %s", artifact.path)
