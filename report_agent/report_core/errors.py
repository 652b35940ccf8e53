from __future__ import annotations

from typing import Dict, Optional


class ReportPipelineError(Exception):
    """Base class for failures raised inside the report pipeline."""


class InvalidPhoneFormat(ReportPipelineError):
    def __init__(self, raw_value: str) -> None:
        super().__init__(f"Invalid phone format: {raw_value!r}")
        self.raw_value = raw_value


class DirectoryUnreachable(ReportPipelineError):
    """The directory worksheet could not be read."""


class NotRegistered(ReportPipelineError):
    def __init__(self, phone: str) -> None:
        super().__init__(f"Phone {phone} is not in the directory")
        self.phone = phone


class AlreadyProcessing(ReportPipelineError):
    def __init__(self, phone: str) -> None:
        super().__init__(f"Report for {phone} is already being processed")
        self.phone = phone


class NoDataForPeriod(ReportPipelineError):
    def __init__(self, phone: str, period: str) -> None:
        super().__init__(f"No report data for {phone} in {period}")
        self.phone = phone
        self.period = period


class SpreadsheetError(ReportPipelineError):
    """A spreadsheet read or write failed after the allowed retry."""


class CredentialFailure(ReportPipelineError):
    """Access token acquisition failed. Usually a configuration problem."""


class ExportChainExhausted(ReportPipelineError):
    def __init__(self, errors: Optional[Dict[str, str]] = None) -> None:
        self.errors = dict(errors or {})
        details = "; ".join(f"{name}: {message}" for name, message in self.errors.items())
        super().__init__(f"All export strategies failed ({details or 'no strategies configured'})")
