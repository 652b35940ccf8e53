import asyncio
import tempfile
import unittest
from datetime import date, time
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock
from zoneinfo import ZoneInfo

try:
    from report_agent.report_core import db
    from report_agent.report_core.db import RegisteredUser
    from report_agent.report_core.export import Artifact
    from report_agent.report_core.guard import DAILY_RUN_LOCK_NAME, ProcessLock
    from report_agent.report_core.pipeline import (
        OUTCOME_FAILED,
        OUTCOME_NO_DATA,
        OUTCOME_READY,
        ReportOutcome,
    )
    from report_agent.report_core.scheduler import (
        DAILY_JOB_NAME,
        RESULT_ERROR,
        RESULT_SENT,
        RESULT_SKIPPED,
        DailyBroadcastScheduler,
        compute_user_delay,
    )

    HAS_SCHEDULER_DEPS = True
except ModuleNotFoundError:
    HAS_SCHEDULER_DEPS = False


TODAY = date(2024, 3, 8)


def _user(telegram_id: int, phone: str, language: str = "uz") -> "RegisteredUser":
    return RegisteredUser(
        telegram_id=telegram_id,
        phone_number=phone,
        display_name=f"Client {telegram_id}",
        language_code=language,
        registered_at="2024-01-01T00:00:00+00:00",
    )


def _outcome(status: str, phone: str) -> "ReportOutcome":
    artifact = None
    if status == OUTCOME_READY:
        artifact = Artifact(path=Path(f"/tmp/report_x/{phone}.xlsx"), content_type="x", extension="xlsx", strategy="workbook")
    return ReportOutcome(status=status, phone=phone, date_from=TODAY, date_to=TODAY, artifact=artifact, error="boom" if status == OUTCOME_FAILED else None)


def _pipeline(users, outcomes):
    pipeline = MagicMock()
    pipeline.today.return_value = TODAY
    pipeline.list_registered_users.return_value = users
    pipeline.get_registered_user.side_effect = lambda telegram_id: next(
        (user for user in users if user.telegram_id == telegram_id), None
    )
    pipeline.generate_report = AsyncMock(side_effect=outcomes)
    pipeline.deliver = AsyncMock()
    return pipeline


def _delivery():
    delivery = MagicMock()
    delivery.send_document = AsyncMock()
    delivery.send_message = AsyncMock()
    return delivery


@unittest.skipUnless(HAS_SCHEDULER_DEPS, "scheduler dependencies are not installed")
class ComputeUserDelayTests(unittest.TestCase):
    def test_delay_is_budget_share_clamped(self) -> None:
        self.assertEqual(compute_user_delay(100, 1800, 2, 30), 18)
        self.assertEqual(compute_user_delay(10, 1800, 2, 30), 30)
        self.assertEqual(compute_user_delay(5000, 1800, 2, 30), 2)
        self.assertEqual(compute_user_delay(0, 1800, 2, 30), 0)


@unittest.skipUnless(HAS_SCHEDULER_DEPS, "scheduler dependencies are not installed")
class DailyBroadcastSchedulerTests(unittest.IsolatedAsyncioTestCase):
    async def test_run_daily_classifies_each_user_and_continues_after_errors(self) -> None:
        users = [
            _user(1, "998900000001", "ru"),
            _user(2, "998900000002"),
            _user(3, "998900000003"),
            _user(4, "998900000004"),
        ]
        outcomes = [
            _outcome(OUTCOME_READY, "998900000001"),
            _outcome(OUTCOME_NO_DATA, "998900000002"),
            RuntimeError("unexpected"),
            _outcome(OUTCOME_FAILED, "998900000004"),
        ]
        pipeline = _pipeline(users, outcomes)
        sleep = AsyncMock()
        delivery = _delivery()
        scheduler = DailyBroadcastScheduler(pipeline, delivery=delivery, sleep=sleep)

        with self.assertLogs("report_agent.report_core.scheduler", level="INFO") as logs:
            summary = await scheduler.run_daily()

        self.assertEqual([item.result for item in summary.results], [RESULT_SENT, RESULT_SKIPPED, RESULT_ERROR, RESULT_ERROR])
        self.assertEqual((summary.sent, summary.skipped, summary.errors), (1, 1, 2))
        self.assertEqual(pipeline.generate_report.await_count, 4)
        first_call = pipeline.generate_report.await_args_list[0]
        self.assertEqual(first_call.args, ("998900000001", TODAY, TODAY))
        self.assertEqual(first_call.kwargs["language"], "ru")
        pipeline.deliver.assert_awaited_once()
        self.assertIn("08.03.2024", pipeline.deliver.await_args.args[3])
        delivery.send_message.assert_awaited_once()
        self.assertEqual(delivery.send_message.await_args.args[0], 2)
        self.assertIn("08.03.2024", delivery.send_message.await_args.args[1])
        self.assertEqual(sleep.await_count, 3)
        sleep.assert_awaited_with(30.0)
        self.assertTrue(any("sent=1 skipped=1 errors=2" in line for line in logs.output))
        self.assertFalse(scheduler.is_running)
        self.assertEqual(scheduler.status()["last_summary"]["total"], 4)

    async def test_overlapping_run_is_noop(self) -> None:
        gate = asyncio.Event()
        started = asyncio.Event()

        async def _slow_report(*args, **kwargs):
            started.set()
            await gate.wait()
            return _outcome(OUTCOME_NO_DATA, "998900000001")

        pipeline = _pipeline([_user(1, "998900000001")], None)
        pipeline.generate_report = AsyncMock(side_effect=_slow_report)
        scheduler = DailyBroadcastScheduler(pipeline, delivery=_delivery(), sleep=AsyncMock())

        first = asyncio.create_task(scheduler.run_daily())
        await started.wait()
        with self.assertLogs("report_agent.report_core.scheduler", level="WARNING") as logs:
            second = await scheduler.run_daily()

        self.assertIsNone(second)
        self.assertIn("already in progress", logs.output[0])
        gate.set()
        summary = await first
        self.assertEqual(summary.skipped, 1)
        self.assertEqual(pipeline.generate_report.await_count, 1)

    async def test_no_data_notice_failure_keeps_user_skipped(self) -> None:
        delivery = _delivery()
        delivery.send_message.side_effect = RuntimeError("chat not found")
        pipeline = _pipeline([_user(5, "998900000005")], [_outcome(OUTCOME_NO_DATA, "998900000005")])
        scheduler = DailyBroadcastScheduler(pipeline, delivery=delivery, sleep=AsyncMock())

        with self.assertLogs("report_agent.report_core.scheduler", level="WARNING"):
            summary = await scheduler.run_daily()

        self.assertEqual([item.result for item in summary.results], [RESULT_SKIPPED])

    async def test_run_held_by_another_process_is_noop(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            db_path = Path(tmpdir) / "reports.db"
            db.init_db(db_path)
            other_process = ProcessLock(db_path, DAILY_RUN_LOCK_NAME)
            self.assertTrue(other_process.try_acquire())
            pipeline = _pipeline([_user(1, "998900000001")], [_outcome(OUTCOME_NO_DATA, "998900000001")])
            scheduler = DailyBroadcastScheduler(
                pipeline, delivery=_delivery(), sleep=AsyncMock(), run_lock=ProcessLock(db_path, DAILY_RUN_LOCK_NAME)
            )

            self.assertTrue(scheduler.is_running)
            with self.assertLogs("report_agent.report_core.scheduler", level="WARNING") as logs:
                self.assertIsNone(await scheduler.run_daily())

            self.assertIn(other_process.owner, logs.output[0])
            pipeline.generate_report.assert_not_awaited()
            self.assertEqual(other_process.holder(), other_process.owner)

            other_process.release()
            summary = await scheduler.run_daily()
            self.assertEqual(summary.skipped, 1)
            self.assertIsNone(other_process.holder())
            self.assertFalse(scheduler.is_running)

    async def test_run_without_users_finishes_quietly(self) -> None:
        sleep = AsyncMock()
        scheduler = DailyBroadcastScheduler(_pipeline([], []), delivery=_delivery(), sleep=sleep)
        summary = await scheduler.run_daily()
        self.assertEqual(summary.results, [])
        sleep.assert_not_awaited()

    async def test_run_requires_delivery(self) -> None:
        scheduler = DailyBroadcastScheduler(_pipeline([], []))
        with self.assertRaises(RuntimeError):
            await scheduler.run_daily()
        self.assertFalse(scheduler.is_running)

    async def test_send_test_report_for_unknown_user_is_skipped(self) -> None:
        scheduler = DailyBroadcastScheduler(_pipeline([], []), delivery=_delivery())
        result = await scheduler.send_test_report(999)
        self.assertEqual(result.result, RESULT_SKIPPED)

    async def test_send_test_report_notifies_when_no_data(self) -> None:
        delivery = _delivery()
        pipeline = _pipeline([_user(7, "998900000007", "en")], [_outcome(OUTCOME_NO_DATA, "998900000007")])
        scheduler = DailyBroadcastScheduler(pipeline, delivery=delivery)

        result = await scheduler.send_test_report(7)

        self.assertEqual(result.result, RESULT_SKIPPED)
        delivery.send_message.assert_awaited_once()
        self.assertIn("08.03.2024", delivery.send_message.await_args.args[1])

    async def test_job_callback_builds_telegram_delivery(self) -> None:
        scheduler = DailyBroadcastScheduler(_pipeline([], []), sleep=AsyncMock())
        await scheduler._job_callback(SimpleNamespace(bot=MagicMock()))
        self.assertIsNotNone(scheduler.delivery)
        self.assertIsNotNone(scheduler.last_summary)

    def test_register_uses_run_daily_with_timezone(self) -> None:
        job_queue = MagicMock()
        scheduler = DailyBroadcastScheduler(_pipeline([], []), run_at=time(23, 50), timezone_name="Asia/Tashkent")

        scheduler.register(job_queue)

        kwargs = job_queue.run_daily.call_args.kwargs
        self.assertEqual(kwargs["name"], DAILY_JOB_NAME)
        self.assertEqual(kwargs["time"].hour, 23)
        self.assertEqual(kwargs["time"].minute, 50)
        self.assertEqual(kwargs["time"].tzinfo, ZoneInfo("Asia/Tashkent"))

    def test_from_settings_copies_schedule(self) -> None:
        settings = SimpleNamespace(
            report_timezone="Asia/Tashkent",
            daily_report_time=time(22, 0),
            daily_batch_budget_seconds=600.0,
            daily_min_delay_seconds=1.0,
            daily_max_delay_seconds=10.0,
        )
        pipeline = _pipeline([], [])
        pipeline.database_path = Path("/data/reports.db")
        scheduler = DailyBroadcastScheduler.from_settings(pipeline, settings)
        self.assertEqual(scheduler.run_at, time(22, 0))
        self.assertEqual(scheduler.run_lock.name, DAILY_RUN_LOCK_NAME)
        self.assertEqual(scheduler.run_lock.database_path, Path("/data/reports.db"))
        self.assertEqual(scheduler.budget_seconds, 600.0)
        self.assertEqual(scheduler.status()["run_at"], "22:00")


if __name__ == "__main__":
    unittest.main()
