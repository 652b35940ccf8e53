from __future__ import annotations

import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

CELL_PATTERN = re.compile(r"^[A-Z]{1,3}[1-9][0-9]*$")
RANGE_PATTERN = re.compile(r"^[A-Z]{1,3}[1-9][0-9]*:[A-Z]{1,3}[1-9][0-9]*$")
COLUMN_PATTERN = re.compile(r"^[A-Z]{1,3}$")


class LayoutValidationError(ValueError):
    """Raised when the sheet layout file does not match the expected schema."""


def _upper(value: str) -> str:
    return value.strip().upper()


class DirectoryLayout(BaseModel):
    model_config = ConfigDict(extra="forbid")

    worksheet: str = Field(min_length=1)
    name_column: str = "Q"
    phone_column: str = "R"
    start_row: int = Field(default=2, ge=1)
    end_row: int = Field(default=2000, ge=1)
    suffix_length: int = Field(default=9, ge=6, le=15)

    @field_validator("name_column", "phone_column")
    @classmethod
    def validate_column(cls, value: str) -> str:
        normalized = _upper(value)
        if not COLUMN_PATTERN.match(normalized):
            raise ValueError(f"column must be a letter reference, got {value!r}")
        return normalized

    @model_validator(mode="after")
    def validate_rows(self) -> "DirectoryLayout":
        if self.end_row < self.start_row:
            raise ValueError("end_row must be >= start_row")
        if _column_index(self.phone_column) <= _column_index(self.name_column):
            raise ValueError("phone_column must come after name_column")
        return self

    def range_expr(self) -> str:
        return f"{self.name_column}{self.start_row}:{self.phone_column}{self.end_row}"

    def phone_offset(self) -> int:
        return _column_index(self.phone_column) - _column_index(self.name_column)


class ReportLayout(BaseModel):
    model_config = ConfigDict(extra="forbid")

    worksheet: str = Field(min_length=1)
    phone_cell: str = "B1"
    date_from_cell: str = "C2"
    date_to_cell: str = "D2"
    output_range: str = "A1:Z20"
    header_rows: int = Field(default=4, ge=0)
    settle_seconds: float = Field(default=3.0, ge=0, le=120)
    export_gid: Optional[int] = Field(default=None, ge=0)

    @field_validator("phone_cell", "date_from_cell", "date_to_cell")
    @classmethod
    def validate_cell(cls, value: str) -> str:
        normalized = _upper(value)
        if not CELL_PATTERN.match(normalized):
            raise ValueError(f"cell must be an A1 reference, got {value!r}")
        return normalized

    @field_validator("output_range")
    @classmethod
    def validate_range(cls, value: str) -> str:
        normalized = _upper(value)
        if not RANGE_PATTERN.match(normalized):
            raise ValueError(f"output_range must look like A1:Z20, got {value!r}")
        return normalized

    @model_validator(mode="after")
    def validate_input_cells(self) -> "ReportLayout":
        cells = [self.phone_cell, self.date_from_cell, self.date_to_cell]
        if len(set(cells)) != len(cells):
            raise ValueError("phone_cell, date_from_cell and date_to_cell must be distinct")
        return self

    def input_cells(self) -> tuple[str, str, str]:
        return (self.phone_cell, self.date_from_cell, self.date_to_cell)


class SheetLayout(BaseModel):
    model_config = ConfigDict(extra="forbid")

    spreadsheet_id: Optional[str] = None
    directory: DirectoryLayout
    report: ReportLayout


def _column_index(column: str) -> int:
    index = 0
    for char in column:
        index = index * 26 + (ord(char) - ord("A") + 1)
    return index


def _format_validation_error(error: ValidationError, source: Path) -> str:
    lines = [f"Sheet layout validation failed for {source}:"]
    for item in error.errors():
        location = ".".join(str(part) for part in item.get("loc", ()))
        message = item.get("msg", "validation error")
        lines.append(f"- {location}: {message}")
    return "\n".join(lines)


def parse_layout(raw_data: Dict[str, Any], source: Path) -> SheetLayout:
    try:
        return SheetLayout.model_validate(raw_data)
    except ValidationError as exc:
        raise LayoutValidationError(_format_validation_error(exc, source)) from exc


def load_layout(path: Path) -> SheetLayout:
    if not path.exists():
        raise LayoutValidationError(f"Sheet layout file not found: {path}")
    try:
        raw_data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise LayoutValidationError(f"Sheet layout file is not valid YAML: {path}: {exc}") from exc
    if not isinstance(raw_data, dict):
        raise LayoutValidationError(f"Sheet layout root must be a mapping: {path}")
    return parse_layout(raw_data, path)
