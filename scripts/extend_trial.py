from __future__ import annotations

import argparse
import asyncio
import sys

from tenantgate.core.errors import TenantGateError
from tenantgate.persistence.db import SessionLocal
from tenantgate.services.lifecycle.trial import extend_trial


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Extend a tenant's trial window")
    parser.add_argument("tenant_id", help="Tenant id whose trial is extended")
    parser.add_argument("--days", type=int, default=None, help="Days to add to the current trial end")
    return parser


async def _extend(tenant_id: str, days: int | None) -> int:
    async with SessionLocal() as session:
        tenant = await extend_trial(session, tenant_id, days)
    print(f"Trial for tenant {tenant.id} now ends at {tenant.trial_end_date}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_extend(args.tenant_id, args.days))
    except (TenantGateError, ValueError) as exc:
        print(f"extend_trial failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
