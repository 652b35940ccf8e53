from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional
from zoneinfo import ZoneInfo

from report_agent.report_core.db import RegisteredUser
from report_agent.report_core.delivery import DocumentDelivery, TelegramDelivery
from report_agent.report_core.guard import DAILY_RUN_LOCK_NAME, ProcessLock
from report_agent.report_core.messages import MessageKey, get_message
from report_agent.report_core.pipeline import (
    OUTCOME_NO_DATA,
    OUTCOME_READY,
    ReportPipeline,
)

logger = logging.getLogger(__name__)

DAILY_JOB_NAME = "daily_reports"
DAILY_RUN_LOCK_TTL_SECONDS = 900.0

RESULT_SENT = "sent"
RESULT_SKIPPED = "skipped"
RESULT_ERROR = "error"


def compute_user_delay(user_count: int, budget_seconds: float, min_delay: float, max_delay: float) -> float:
    if user_count <= 0:
        return 0.0
    per_user = budget_seconds / user_count
    return max(min_delay, min(max_delay, per_user))


@dataclass
class UserRunResult:
    telegram_id: int
    phone_number: str
    result: str
    detail: Optional[str] = None


@dataclass
class DailyRunSummary:
    report_date: date
    started_at: datetime
    finished_at: Optional[datetime] = None
    results: List[UserRunResult] = field(default_factory=list)

    def count(self, result: str) -> int:
        return sum(1 for item in self.results if item.result == result)

    @property
    def sent(self) -> int:
        return self.count(RESULT_SENT)

    @property
    def skipped(self) -> int:
        return self.count(RESULT_SKIPPED)

    @property
    def errors(self) -> int:
        return self.count(RESULT_ERROR)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "report_date": self.report_date.isoformat(),
            "started_at": self.started_at.isoformat(timespec="seconds"),
            "finished_at": self.finished_at.isoformat(timespec="seconds") if self.finished_at else None,
            "total": len(self.results),
            "sent": self.sent,
            "skipped": self.skipped,
            "errors": self.errors,
        }


class DailyBroadcastScheduler:
    """Sends every registered user today's report, one user at a time."""

    def __init__(
        self,
        pipeline: ReportPipeline,
        delivery: Optional[DocumentDelivery] = None,
        timezone_name: str = "Asia/Tashkent",
        run_at: time = time(hour=23, minute=50),
        budget_seconds: float = 1800.0,
        min_delay_seconds: float = 2.0,
        max_delay_seconds: float = 30.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        run_lock: Optional[ProcessLock] = None,
    ) -> None:
        self.pipeline = pipeline
        self.delivery = delivery
        self.timezone_name = timezone_name
        self.run_at = run_at
        self.budget_seconds = budget_seconds
        self.min_delay_seconds = min_delay_seconds
        self.max_delay_seconds = max_delay_seconds
        self._sleep = sleep
        self.run_lock = run_lock
        self._running = False
        self._job: Any = None
        self.last_summary: Optional[DailyRunSummary] = None

    @classmethod
    def from_settings(
        cls,
        pipeline: ReportPipeline,
        settings: Any,
        delivery: Optional[DocumentDelivery] = None,
    ) -> "DailyBroadcastScheduler":
        return cls(
            pipeline,
            delivery=delivery,
            timezone_name=settings.report_timezone,
            run_at=settings.daily_report_time,
            budget_seconds=settings.daily_batch_budget_seconds,
            min_delay_seconds=settings.daily_min_delay_seconds,
            max_delay_seconds=settings.daily_max_delay_seconds,
            run_lock=ProcessLock(
                pipeline.database_path, DAILY_RUN_LOCK_NAME, ttl_seconds=DAILY_RUN_LOCK_TTL_SECONDS
            ),
        )

    @property
    def is_running(self) -> bool:
        """True while a run is active here or in another process sharing the database."""
        if self._running:
            return True
        return self.run_lock is not None and self.run_lock.holder() is not None

    def register(self, job_queue: Any) -> Any:
        run_time = self.run_at.replace(tzinfo=ZoneInfo(self.timezone_name))
        self._job = job_queue.run_daily(self._job_callback, time=run_time, name=DAILY_JOB_NAME)
        logger.info("Daily reports scheduled at %s %s", self.run_at.strftime("%H:%M"), self.timezone_name)
        return self._job

    async def _job_callback(self, context: Any) -> None:
        if self.delivery is None:
            self.delivery = TelegramDelivery(context.bot)
        await self.run_daily()

    def status(self) -> Dict[str, Any]:
        next_run = None
        if self._job is not None and getattr(self._job, "next_t", None) is not None:
            next_run = self._job.next_t.isoformat(timespec="seconds")
        return {
            "running": self.is_running,
            "run_at": self.run_at.strftime("%H:%M"),
            "timezone": self.timezone_name,
            "next_run": next_run,
            "last_summary": self.last_summary.to_dict() if self.last_summary else None,
        }

    async def run_daily(self) -> Optional[DailyRunSummary]:
        if self._running:
            logger.warning("Daily report run already in progress, skipping this trigger")
            return None
        if self.delivery is None:
            raise RuntimeError("DailyBroadcastScheduler has no delivery configured")
        if self.run_lock is not None and not self.run_lock.try_acquire():
            logger.warning(
                "Daily report run already in progress in another process (lock held by %s), skipping",
                self.run_lock.holder(),
            )
            return None

        self._running = True
        try:
            report_date = self.pipeline.today()
            summary = DailyRunSummary(report_date=report_date, started_at=datetime.now(timezone.utc))
            users = self.pipeline.list_registered_users()
            delay = compute_user_delay(
                len(users), self.budget_seconds, self.min_delay_seconds, self.max_delay_seconds
            )
            logger.info(
                "Daily report run started for %s: %s users, %.1fs between users",
                report_date,
                len(users),
                delay,
            )
            for index, user in enumerate(users):
                summary.results.append(await self._process_user(user, report_date))
                if self.run_lock is not None:
                    self.run_lock.refresh()
                if index < len(users) - 1 and delay:
                    await self._sleep(delay)

            summary.finished_at = datetime.now(timezone.utc)
            self.last_summary = summary
            logger.info(
                "Daily report run finished for %s: total=%s sent=%s skipped=%s errors=%s",
                report_date,
                len(summary.results),
                summary.sent,
                summary.skipped,
                summary.errors,
            )
            return summary
        finally:
            self._running = False
            if self.run_lock is not None:
                self.run_lock.release()

    async def _process_user(self, user: RegisteredUser, report_date: date) -> UserRunResult:
        language = user.language_code or "uz"
        label = report_date.strftime("%d.%m.%Y")
        try:
            outcome = await self.pipeline.generate_report(
                user.phone_number,
                report_date,
                report_date,
                language=language,
                display_name=user.display_name or None,
                requested_by=user.telegram_id,
            )
            if outcome.status == OUTCOME_READY:
                caption = get_message(MessageKey.DAILY_CAPTION, language, date=label)
                await self.pipeline.deliver(self.delivery, user.telegram_id, outcome, caption)
                return UserRunResult(user.telegram_id, user.phone_number, RESULT_SENT)
            if outcome.status == OUTCOME_NO_DATA:
                await self._notify_no_data(user, language, label)
                return UserRunResult(user.telegram_id, user.phone_number, RESULT_SKIPPED, "no data")
            return UserRunResult(user.telegram_id, user.phone_number, RESULT_ERROR, outcome.error or outcome.status)
        except Exception as exc:
            # One user's failure never stops the batch.
            logger.exception("Daily report failed for user %s", user.telegram_id)
            return UserRunResult(user.telegram_id, user.phone_number, RESULT_ERROR, str(exc))

    async def _notify_no_data(self, user: RegisteredUser, language: str, label: str) -> None:
        try:
            await self.delivery.send_message(
                user.telegram_id, get_message(MessageKey.DAILY_NO_DATA, language, date=label)
            )
        except Exception:
            logger.warning("Could not send no-data notice to user %s", user.telegram_id, exc_info=True)

    async def send_test_report(self, telegram_id: int) -> UserRunResult:
        if self.delivery is None:
            raise RuntimeError("DailyBroadcastScheduler has no delivery configured")
        user = self.pipeline.get_registered_user(telegram_id)
        if user is None:
            return UserRunResult(telegram_id, "", RESULT_SKIPPED, "not registered")
        return await self._process_user(user, self.pipeline.today())
