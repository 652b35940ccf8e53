from __future__ import annotations

import asyncio
import logging
import secrets
from contextlib import asynccontextmanager
from dataclasses import asdict
from typing import Any, Dict, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from telegram import Bot

from report_agent.report_core.config import Settings, get_settings
from report_agent.report_core.db import (
    clear_all_registrations,
    clear_user_registration,
    get_connection,
    init_db,
    list_registered_users,
)
from report_agent.report_core.delivery import TelegramDelivery
from report_agent.report_core.errors import CredentialFailure, DirectoryUnreachable
from report_agent.report_core.layout import LayoutValidationError
from report_agent.report_core.pipeline import ReportPipeline, build_pipeline
from report_agent.report_core.scheduler import DailyBroadcastScheduler


security = HTTPBasic()
logger = logging.getLogger(__name__)


def _log_daily_task_result(task: "asyncio.Task[Any]") -> None:
    if task.cancelled():
        logger.warning("Manually triggered daily run was cancelled")
        return
    exc = task.exception()
    if exc is not None:
        logger.error("Manually triggered daily run failed", exc_info=exc)


def create_app(
    settings: Settings | None = None,
    pipeline: Optional[ReportPipeline] = None,
    scheduler: Optional[DailyBroadcastScheduler] = None,
) -> FastAPI:
    cfg = settings or get_settings()
    init_db(cfg.database_path)
    runtime: Dict[str, Any] = {"pipeline": pipeline, "scheduler": scheduler, "daily_task": None}

    @asynccontextmanager
    async def lifespan(app_instance: FastAPI):
        yield
        daily_task = runtime["daily_task"]
        if daily_task is not None and not daily_task.done():
            daily_task.cancel()
            try:
                await daily_task
            except asyncio.CancelledError:
                pass
            logger.info("Pending daily run stopped on shutdown")

    app = FastAPI(title="report-agent", lifespan=lifespan)

    def require_admin(credentials: HTTPBasicCredentials = Depends(security)) -> str:
        if not cfg.admin_user or not cfg.admin_pass:
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail="Admin auth is not configured. Set ADMIN_USER and ADMIN_PASS.",
            )

        user_ok = secrets.compare_digest(credentials.username, cfg.admin_user)
        pass_ok = secrets.compare_digest(credentials.password, cfg.admin_pass)
        if not (user_ok and pass_ok):
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid admin credentials",
                headers={"WWW-Authenticate": "Basic"},
            )
        return credentials.username

    def _pipeline() -> ReportPipeline:
        if runtime["pipeline"] is None:
            try:
                runtime["pipeline"] = build_pipeline(cfg)
            except LayoutValidationError as exc:
                raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
        return runtime["pipeline"]

    def _scheduler() -> DailyBroadcastScheduler:
        if runtime["scheduler"] is None:
            if not cfg.telegram_bot_token:
                raise HTTPException(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    detail="TELEGRAM_BOT_TOKEN is not set; daily delivery is unavailable.",
                )
            runtime["scheduler"] = DailyBroadcastScheduler.from_settings(
                _pipeline(),
                cfg,
                delivery=TelegramDelivery(Bot(cfg.telegram_bot_token)),
            )
        return runtime["scheduler"]

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "service": "report-agent"}

    @app.get("/admin/registrations")
    async def admin_registrations(_: str = Depends(require_admin)):
        conn = get_connection(cfg.database_path)
        try:
            users = list_registered_users(conn)
        finally:
            conn.close()
        return {"total": len(users), "items": [user.to_dict() for user in users]}

    @app.delete("/admin/registrations/{telegram_id}")
    async def admin_clear_registration(telegram_id: int, _: str = Depends(require_admin)):
        conn = get_connection(cfg.database_path)
        try:
            removed = clear_user_registration(conn, telegram_id)
        finally:
            conn.close()
        if not removed:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Registration not found.")
        logger.info("Admin cleared registration of telegram user %s", telegram_id)
        return {"ok": True, "removed": removed}

    @app.delete("/admin/registrations")
    async def admin_clear_all_registrations(_: str = Depends(require_admin)):
        conn = get_connection(cfg.database_path)
        try:
            removed = clear_all_registrations(conn)
        finally:
            conn.close()
        logger.warning("Admin cleared all %s registrations", removed)
        return {"ok": True, "removed": removed}

    @app.get("/admin/daily/status")
    async def admin_daily_status(_: str = Depends(require_admin)):
        if runtime["scheduler"] is None and not cfg.telegram_bot_token:
            return {"configured": False, "running": False, "enabled": cfg.daily_reports_enabled}
        payload = _scheduler().status()
        payload["configured"] = True
        payload["enabled"] = cfg.daily_reports_enabled
        return payload

    @app.post("/admin/daily/run", status_code=status.HTTP_202_ACCEPTED)
    async def admin_daily_run(_: str = Depends(require_admin)):
        scheduler_instance = _scheduler()
        pending = runtime["daily_task"]
        if scheduler_instance.is_running or (pending is not None and not pending.done()):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Daily run is already in progress.")
        task = asyncio.create_task(scheduler_instance.run_daily())
        task.add_done_callback(_log_daily_task_result)
        runtime["daily_task"] = task
        logger.info("Daily run triggered from admin API")
        return {"ok": True, "started": True}

    @app.get("/admin/directory/lookup")
    async def admin_directory_lookup(
        phone: str = Query(..., min_length=1, max_length=64),
        _: str = Depends(require_admin),
    ):
        try:
            lookup = await _pipeline().lookup_phone(phone)
        except (DirectoryUnreachable, CredentialFailure) as exc:
            raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=str(exc)) from exc
        payload = asdict(lookup)
        payload["matched"] = lookup.matched
        return payload

    return app


app = create_app()
