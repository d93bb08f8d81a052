from __future__ import annotations

import argparse
import asyncio
import json
import sys

from tenantgate.core.logging import configure_logging
from tenantgate.persistence.db import SessionLocal
from tenantgate.services.lifecycle.trial import run_trial_sweep


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run one trial lifecycle sweep")
    parser.add_argument(
        "--interval-s",
        type=int,
        default=None,
        help="Debounce window; tenants checked more recently are skipped",
    )
    return parser


async def _sweep(interval_s: int | None) -> int:
    report = await run_trial_sweep(SessionLocal, interval_s=interval_s)
    print(json.dumps(report.as_dict()))
    return 1 if report.failed else 0


def main() -> int:
    configure_logging()
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_sweep(args.interval_s))
    except Exception as exc:  # noqa: BLE001 - surface sweep failures clearly
        print(f"trial_sweep failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
