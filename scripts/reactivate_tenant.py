from __future__ import annotations

import argparse
import asyncio
import sys

from tenantgate.core.errors import TenantGateError
from tenantgate.persistence.db import SessionLocal
from tenantgate.services.lifecycle.trial import reactivate_tenant


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Reactivate a suspended tenant and its users")
    parser.add_argument("tenant_id", help="Tenant id to reactivate")
    parser.add_argument("--plan", default=None, help="Subscription plan to assign")
    return parser


async def _reactivate(tenant_id: str, plan: str | None) -> int:
    async with SessionLocal() as session:
        tenant = await reactivate_tenant(session, tenant_id, plan)
    print(f"Reactivated tenant {tenant.id} status={tenant.subscription_status} plan={tenant.subscription_plan}")
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    try:
        return asyncio.run(_reactivate(args.tenant_id, args.plan))
    except TenantGateError as exc:
        print(f"reactivate_tenant failed: {exc}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
