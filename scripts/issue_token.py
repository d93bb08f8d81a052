from __future__ import annotations

import argparse
import asyncio
import sys

from sqlalchemy import select

from tenantgate.domain.models import User
from tenantgate.persistence.db import SessionLocal
from tenantgate.services.auth.tokens import issue_token


def _build_parser() -> argparse.ArgumentParser:
    # Local/dev helper; production tokens come from the login flow.
    parser = argparse.ArgumentParser(description="Issue a bearer token for an existing user")
    parser.add_argument("user_id", help="User id to mint a token for")
    parser.add_argument("--ttl-s", type=int, default=None)
    return parser


async def _issue(user_id: str, ttl_s: int | None) -> int:
    async with SessionLocal() as session:
        result = await session.execute(select(User).where(User.id == user_id))
        user = result.scalar_one_or_none()
    if user is None:
        print(f"issue_token failed: user {user_id} not found", file=sys.stderr)
        return 1
    print(issue_token(user, ttl_s=ttl_s))
    return 0


def main() -> int:
    args = _build_parser().parse_args()
    return asyncio.run(_issue(args.user_id, args.ttl_s))


if __name__ == "__main__":
    raise SystemExit(main())
