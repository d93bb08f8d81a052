from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
import logging

import jwt
from pydantic import BaseModel, ConfigDict
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from tenantgate.core.clock import ensure_utc, utc_now
from tenantgate.core.config import get_settings
from tenantgate.domain.models import User
from tenantgate.domain.results import Err, Ok, Result
from tenantgate.persistence.repos.users import get_user


logger = logging.getLogger(__name__)


class AuthErrorKind(str, Enum):
    TOKEN_MISSING = "TOKEN_MISSING"
    TOKEN_EXPIRED = "TOKEN_EXPIRED"
    TOKEN_INVALID = "TOKEN_INVALID"
    USER_NOT_FOUND = "USER_NOT_FOUND"
    ACCOUNT_INACTIVE = "ACCOUNT_INACTIVE"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    AUTH_ERROR = "AUTH_ERROR"


AUTH_ERROR_MESSAGES: dict[AuthErrorKind, str] = {
    AuthErrorKind.TOKEN_MISSING: "Access token required",
    AuthErrorKind.TOKEN_EXPIRED: "Token expired",
    AuthErrorKind.TOKEN_INVALID: "Invalid token",
    AuthErrorKind.USER_NOT_FOUND: "User not found",
    AuthErrorKind.ACCOUNT_INACTIVE: "Account is inactive",
    AuthErrorKind.PASSWORD_CHANGED: "Session expired due to password change. Please log in again.",
    AuthErrorKind.AUTH_ERROR: "Authentication validation failed",
}


class Principal(BaseModel):
    # Authenticated identity derived from a validated credential; never persisted.
    model_config = ConfigDict(frozen=True)

    user_id: str
    tenant_id: str
    role: str
    username: str
    issued_at: datetime
    expires_at: datetime


@dataclass(frozen=True)
class TokenClaims:
    user_id: str
    tenant_id: str
    role: str
    username: str
    issued_at: int
    expires_at: int


def _as_timestamp(value: datetime) -> int:
    return int(value.timestamp())


def _from_timestamp(value: int) -> datetime:
    return datetime.fromtimestamp(value, tz=timezone.utc)


def issue_token(user: User, *, now: datetime | None = None, ttl_s: int | None = None) -> str:
    # Sign the identity claims the validator re-checks against the user store.
    settings = get_settings()
    issued = now or utc_now()
    lifetime = settings.jwt_ttl_s if ttl_s is None else ttl_s
    payload = {
        "userId": user.id,
        "tenantId": user.tenant_id,
        "role": user.role,
        "username": user.username or "",
        "iat": _as_timestamp(issued),
        "exp": _as_timestamp(issued + timedelta(seconds=lifetime)),
    }
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


def decode_token(raw_token: str, *, now: datetime | None = None) -> Result[TokenClaims, AuthErrorKind]:
    """Check signature, claim shape and expiry without touching the user store.

    Expiry is evaluated here against the supplied clock instead of PyJWT's wall clock
    so callers and tests share one notion of "now".
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            raw_token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["iat", "exp"], "verify_exp": False, "verify_iat": False},
        )
    except jwt.InvalidTokenError as exc:
        logger.info("token_decode_failed reason=%s", type(exc).__name__)
        return Err(AuthErrorKind.TOKEN_INVALID)

    user_id = payload.get("userId")
    tenant_id = payload.get("tenantId")
    role = payload.get("role")
    issued_at = payload.get("iat")
    expires_at = payload.get("exp")
    if not user_id or not tenant_id or not role:
        logger.info(
            "token_missing_claims has_user=%s has_tenant=%s has_role=%s",
            bool(user_id),
            bool(tenant_id),
            bool(role),
        )
        return Err(AuthErrorKind.TOKEN_INVALID)
    if not isinstance(issued_at, (int, float)) or not isinstance(expires_at, (int, float)):
        return Err(AuthErrorKind.TOKEN_INVALID)

    current = _as_timestamp(now or utc_now())
    if expires_at + settings.jwt_leeway_s <= current:
        logger.info("token_expired user_id=%s expired_at=%s", user_id, int(expires_at))
        return Err(AuthErrorKind.TOKEN_EXPIRED)

    return Ok(
        TokenClaims(
            user_id=str(user_id),
            tenant_id=str(tenant_id),
            role=str(role),
            username=str(payload.get("username") or ""),
            issued_at=int(issued_at),
            expires_at=int(expires_at),
        )
    )


def issued_before_password_change(user: User, issued_at: int) -> bool:
    # Compare at second resolution because JWT iat carries whole seconds.
    changed_at = ensure_utc(user.password_changed_at)
    if changed_at is None:
        return False
    return _as_timestamp(changed_at) > issued_at


async def verify_token(
    session: AsyncSession,
    raw_token: str | None,
    *,
    now: datetime | None = None,
) -> Result[Principal, AuthErrorKind]:
    """Validate a bearer credential and re-read the authoritative user record.

    Performs exactly one user-store read and no writes. A token minted before the user's
    latest password change is revoked even while its own expiry is still in the future.
    """
    if not raw_token:
        return Err(AuthErrorKind.TOKEN_MISSING)
    decoded = decode_token(raw_token, now=now)
    if isinstance(decoded, Err):
        return decoded
    claims = decoded.value

    try:
        user = await get_user(session, claims.user_id, claims.tenant_id)
    except SQLAlchemyError:
        logger.exception("token_user_lookup_failed user_id=%s", claims.user_id)
        return Err(AuthErrorKind.AUTH_ERROR)

    if user is None:
        logger.warning("token_user_not_found user_id=%s", claims.user_id)
        return Err(AuthErrorKind.USER_NOT_FOUND)
    if not user.is_active:
        logger.warning("token_user_inactive user_id=%s", claims.user_id)
        return Err(AuthErrorKind.ACCOUNT_INACTIVE)
    if issued_before_password_change(user, claims.issued_at):
        logger.warning("token_revoked_password_changed user_id=%s", claims.user_id)
        return Err(AuthErrorKind.PASSWORD_CHANGED)

    # Role comes from the user record so demotions apply without waiting for token expiry.
    return Ok(
        Principal(
            user_id=user.id,
            tenant_id=user.tenant_id,
            role=user.role,
            username=claims.username,
            issued_at=_from_timestamp(claims.issued_at),
            expires_at=_from_timestamp(claims.expires_at),
        )
    )
