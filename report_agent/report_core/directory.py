from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from report_agent.report_core.errors import DirectoryUnreachable, SpreadsheetError
from report_agent.report_core.layout import DirectoryLayout
from report_agent.report_core.phone import digit_suffix, is_phone_like, normalize_phone
from report_agent.report_core.sheets import SpreadsheetAPI

logger = logging.getLogger(__name__)

LOOKUP_MATCHED = "matched"
LOOKUP_NOT_REGISTERED = "not_registered"
LOOKUP_INVALID_PHONE = "invalid_phone"

MATCH_CANONICAL = "canonical"
MATCH_RAW = "raw"
MATCH_SUFFIX = "suffix"


@dataclass(frozen=True)
class PhoneCandidate:
    display_name: str
    raw_value: str
    normalized_value: str
    source_row: int


@dataclass(frozen=True)
class DirectoryLookup:
    status: str
    phone: Optional[str]
    candidate: Optional[PhoneCandidate] = None
    match_rule: Optional[str] = None
    directory_size: int = 0

    @property
    def matched(self) -> bool:
        return self.status == LOOKUP_MATCHED and self.candidate is not None


def _cell_text(row: Sequence[object], index: int) -> str:
    if index >= len(row):
        return ""
    value = row[index]
    if value is None:
        return ""
    return str(value).strip()


class DirectoryRegistry:
    """Reads the (name, phone) directory range and matches phones against it.

    Canonical equality is the authoritative rule. Raw-string and digit-suffix
    equality only run after the canonical pass found nothing, and every match
    they produce is logged so drifting directory rows can be fixed at source.
    """

    def __init__(self, sheets: SpreadsheetAPI, layout: DirectoryLayout) -> None:
        self.sheets = sheets
        self.layout = layout

    async def load_all(self) -> List[PhoneCandidate]:
        try:
            rows = await self.sheets.get_values(self.layout.worksheet, self.layout.range_expr())
        except SpreadsheetError as exc:
            raise DirectoryUnreachable(str(exc)) from exc

        phone_index = self.layout.phone_offset()
        candidates: List[PhoneCandidate] = []
        skipped = 0
        for offset, row in enumerate(rows):
            row_number = self.layout.start_row + offset
            raw_phone = _cell_text(row or [], phone_index)
            if not raw_phone:
                continue
            normalized = normalize_phone(raw_phone) if is_phone_like(raw_phone) else None
            if normalized is None:
                skipped += 1
                logger.debug("Directory row %s skipped, not a phone: %r", row_number, raw_phone)
                continue
            candidates.append(
                PhoneCandidate(
                    display_name=_cell_text(row, 0) or "Unknown",
                    raw_value=raw_phone,
                    normalized_value=normalized,
                    source_row=row_number,
                )
            )

        if not candidates:
            logger.warning(
                "Directory %s!%s returned no phone candidates (%s rows read)",
                self.layout.worksheet,
                self.layout.range_expr(),
                len(rows),
            )
        else:
            logger.info("Directory loaded: %s candidates, %s invalid rows skipped", len(candidates), skipped)
        return candidates

    def match_with_rule(
        self,
        target: str,
        candidates: Sequence[PhoneCandidate],
        raw_value: Optional[str] = None,
    ) -> tuple[Optional[PhoneCandidate], Optional[str]]:
        canonical = normalize_phone(target)
        if canonical:
            for candidate in candidates:
                if candidate.normalized_value == canonical:
                    return candidate, MATCH_CANONICAL

        raw_options = {value.strip() for value in (target, raw_value) if value and value.strip()}
        for candidate in candidates:
            if candidate.raw_value in raw_options:
                self._log_fallback(MATCH_RAW, target, candidate)
                return candidate, MATCH_RAW

        suffix = digit_suffix(canonical or target, self.layout.suffix_length)
        if suffix:
            for candidate in candidates:
                if digit_suffix(candidate.raw_value, self.layout.suffix_length) == suffix:
                    self._log_fallback(MATCH_SUFFIX, target, candidate)
                    return candidate, MATCH_SUFFIX
        return None, None

    def match(self, target: str, candidates: Sequence[PhoneCandidate]) -> Optional[PhoneCandidate]:
        candidate, _ = self.match_with_rule(target, candidates)
        return candidate

    async def lookup(self, raw_phone: str) -> DirectoryLookup:
        phone = normalize_phone(raw_phone)
        if phone is None:
            return DirectoryLookup(status=LOOKUP_INVALID_PHONE, phone=None)

        candidates = await self.load_all()
        candidate, rule = self.match_with_rule(phone, candidates, raw_value=raw_phone)
        if candidate is None:
            logger.info("Phone %s not found among %s directory entries", phone, len(candidates))
            return DirectoryLookup(
                status=LOOKUP_NOT_REGISTERED,
                phone=phone,
                directory_size=len(candidates),
            )
        logger.info("Phone %s matched directory row %s (%s)", phone, candidate.source_row, rule)
        return DirectoryLookup(
            status=LOOKUP_MATCHED,
            phone=phone,
            candidate=candidate,
            match_rule=rule,
            directory_size=len(candidates),
        )

    def _log_fallback(self, rule: str, target: str, candidate: PhoneCandidate) -> None:
        logger.warning(
            "Phone %s matched directory row %s only by %s rule (raw=%r, normalized=%s)",
            target,
            candidate.source_row,
            rule,
            candidate.raw_value,
            candidate.normalized_value,
        )
