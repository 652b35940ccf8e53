from __future__ import annotations

import asyncio
import logging
import os
import socket
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from pathlib import Path
from typing import AsyncIterator, Dict, List, Optional
from uuid import uuid4

from report_agent.report_core import db as db_module
from report_agent.report_core.errors import AlreadyProcessing

logger = logging.getLogger(__name__)

STATE_PROCESSING = "processing"
SCRATCH_LOCK_NAME = "report_scratch"
DAILY_RUN_LOCK_NAME = "daily_run"


@dataclass
class ReportRequest:
    phone_number: str
    requested_by: Optional[int] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    enqueued_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    state: str = STATE_PROCESSING


class ProcessLock:
    """A named lock row in the shared SQLite database.

    The bot, the admin API and the CLI scripts are separate processes that
    share one database file, so the row is visible to all of them. A holder
    that dies leaves the row behind only until `ttl_seconds` pass.
    """

    def __init__(
        self,
        database_path: Path,
        name: str,
        ttl_seconds: float = 600.0,
        poll_seconds: float = 0.5,
    ) -> None:
        self.database_path = Path(database_path)
        self.name = name
        self.ttl_seconds = ttl_seconds
        self.poll_seconds = poll_seconds
        self.owner = f"{socket.gethostname()}:{os.getpid()}:{uuid4().hex[:8]}"

    def try_acquire(self) -> bool:
        conn = db_module.get_connection(self.database_path)
        try:
            return db_module.try_acquire_process_lock(conn, self.name, self.owner, self.ttl_seconds)
        finally:
            conn.close()

    def refresh(self) -> bool:
        conn = db_module.get_connection(self.database_path)
        try:
            return db_module.refresh_process_lock(conn, self.name, self.owner, self.ttl_seconds)
        finally:
            conn.close()

    def release(self) -> None:
        conn = db_module.get_connection(self.database_path)
        try:
            if not db_module.release_process_lock(conn, self.name, self.owner):
                logger.warning("Lock %s was no longer held by %s on release", self.name, self.owner)
        finally:
            conn.close()

    def holder(self) -> Optional[str]:
        conn = db_module.get_connection(self.database_path)
        try:
            return db_module.get_process_lock_owner(conn, self.name)
        finally:
            conn.close()

    async def acquire(self) -> None:
        waiting = False
        while not self.try_acquire():
            if not waiting:
                logger.info("Waiting for lock %s held by %s", self.name, self.holder())
                waiting = True
            await asyncio.sleep(self.poll_seconds)


class RequestDedupGuard:
    """Serialises report computations over the shared scratch region.

    A second request for a phone that is already in flight is rejected at
    once. Requests for other phones wait on one global lock, because every
    computation writes the same input cells. With a `process_lock` the same
    holds across processes sharing the database.
    """

    def __init__(self, process_lock: Optional[ProcessLock] = None) -> None:
        self._lock = asyncio.Lock()
        self.process_lock = process_lock
        self._in_flight: Dict[str, ReportRequest] = {}

    def try_acquire(
        self,
        phone: str,
        requested_by: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> bool:
        if phone in self._in_flight:
            return False
        self._in_flight[phone] = ReportRequest(
            phone_number=phone,
            requested_by=requested_by,
            date_from=date_from,
            date_to=date_to,
        )
        return True

    def release(self, phone: str) -> None:
        self._in_flight.pop(phone, None)

    def is_processing(self, phone: str) -> bool:
        return phone in self._in_flight

    def in_flight(self) -> List[ReportRequest]:
        return list(self._in_flight.values())

    @property
    def busy(self) -> bool:
        return self._lock.locked()

    @asynccontextmanager
    async def hold(
        self,
        phone: str,
        requested_by: Optional[int] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
    ) -> AsyncIterator[ReportRequest]:
        if not self.try_acquire(phone, requested_by=requested_by, date_from=date_from, date_to=date_to):
            raise AlreadyProcessing(phone)
        try:
            if self._lock.locked():
                logger.info("Report for %s queued behind another computation", phone)
            async with self._lock:
                if self.process_lock is not None:
                    await self.process_lock.acquire()
                try:
                    yield self._in_flight[phone]
                finally:
                    if self.process_lock is not None:
                        self.process_lock.release()
        finally:
            self.release(phone)
