#!/usr/bin/env python3
from __future__ import annotations

import argparse
import asyncio
import json
import sys
from dataclasses import asdict
from pathlib import Path

PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from report_agent.report_core.config import get_settings
from report_agent.report_core.errors import CredentialFailure, DirectoryUnreachable
from report_agent.report_core.layout import LayoutValidationError
from report_agent.report_core.pipeline import build_pipeline


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Load the phone directory and optionally match one phone.")
    parser.add_argument("--phone", default=None, help="Phone number to look up in the directory")
    parser.add_argument("--json", action="store_true", help="Print machine-readable JSON")
    return parser


async def _collect(phone: str | None) -> dict:
    pipeline = build_pipeline(get_settings())
    candidates = await pipeline.directory.load_all()
    payload: dict = {"directory_size": len(candidates)}
    if phone:
        lookup = await pipeline.lookup_phone(phone)
        payload["lookup"] = asdict(lookup)
        payload["lookup"]["matched"] = lookup.matched
    return payload


def main(argv: list[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    try:
        payload = asyncio.run(_collect(args.phone))
    except LayoutValidationError as exc:
        print(f"[ERROR] {exc}", file=sys.stderr)
        return 1
    except (DirectoryUnreachable, CredentialFailure) as exc:
        print(f"[ERROR] Directory is unavailable: {exc}", file=sys.stderr)
        return 2

    if args.json:
        print(json.dumps(payload, ensure_ascii=False, indent=2))
    else:
        print(f"[OK] Directory loaded: {payload['directory_size']} phones")
        lookup = payload.get("lookup")
        if lookup is not None:
            if lookup["matched"]:
                candidate = lookup["candidate"]
                print(
                    f"[MATCH] {lookup['phone']} -> {candidate['display_name']} "
                    f"(row {candidate['source_row']}, rule={lookup['match_rule']})"
                )
            else:
                print(f"[MISS] {args.phone}: {lookup['status']}")

    lookup = payload.get("lookup")
    if lookup is not None and not lookup["matched"]:
        return 3
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
