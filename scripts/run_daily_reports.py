#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys
from pathlib import Path

from telegram import Bot

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from report_agent.report_core.config import get_settings
from report_agent.report_core.delivery import TelegramDelivery
from report_agent.report_core.layout import LayoutValidationError
from report_agent.report_core.pipeline import build_pipeline
from report_agent.report_core.scheduler import DailyBroadcastScheduler


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Send today's report to every registered user once.")
    parser.add_argument("--telegram-id", type=int, default=None, help="Send only to this registered user")
    parser.add_argument("--no-delay", action="store_true", help="Do not wait between users")
    return parser


async def _run(settings, telegram_id: int | None, no_delay: bool) -> dict:
    pipeline = build_pipeline(settings)
    bot = Bot(settings.telegram_bot_token)
    scheduler = DailyBroadcastScheduler.from_settings(pipeline, settings, delivery=TelegramDelivery(bot))
    if no_delay:
        scheduler.min_delay_seconds = 0.0
        scheduler.max_delay_seconds = 0.0
    async with bot:
        if telegram_id is not None:
            result = await scheduler.send_test_report(telegram_id)
            return {"telegram_id": result.telegram_id, "result": result.result, "detail": result.detail}
        summary = await scheduler.run_daily()
    return summary.to_dict() if summary is not None else {"skipped": True}


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)
    logging.basicConfig(
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s", level=logging.INFO
    )

    settings = get_settings()
    if not settings.telegram_bot_token:
        print("[ERROR] TELEGRAM_BOT_TOKEN is not set.", file=sys.stderr)
        return 1
    try:
        payload = asyncio.run(_run(settings, args.telegram_id, args.no_delay))
    except LayoutValidationError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1

    print(json.dumps(payload, ensure_ascii=False, indent=2))
    if payload.get("errors") or payload.get("result") == "error":
        return 2
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
