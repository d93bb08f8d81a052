from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import hashlib
import hmac
import json
import logging
import secrets
import time
from typing import Any, Callable

from tenantgate.core.config import get_settings
from tenantgate.domain.results import Err, Ok, Result
from tenantgate.services.state_store import StateStore


logger = logging.getLogger(__name__)

SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})
_KEY_PREFIX = "csrf"


class CsrfFailure(str, Enum):
    CSRF_TOKEN_MISSING = "CSRF_TOKEN_MISSING"
    CSRF_SESSION_INVALID = "CSRF_SESSION_INVALID"
    CSRF_TOKEN_INVALID = "CSRF_TOKEN_INVALID"


CSRF_ERROR_MESSAGES: dict[CsrfFailure, str] = {
    CsrfFailure.CSRF_TOKEN_MISSING: "CSRF token required. Obtain token from GET request first.",
    CsrfFailure.CSRF_SESSION_INVALID: "No CSRF token found for this session. Make a GET request first.",
    CsrfFailure.CSRF_TOKEN_INVALID: "Invalid CSRF token. Token mismatch.",
}


def csrf_error_body(failure: CsrfFailure) -> dict[str, str]:
    return {"error": CSRF_ERROR_MESSAGES[failure], "code": failure.value}


@dataclass(frozen=True)
class CsrfRecord:
    fingerprint: str
    token: str
    issued_at: float

    def to_json(self) -> str:
        return json.dumps(
            {"fingerprint": self.fingerprint, "token": self.token, "issued_at": self.issued_at}
        )

    @classmethod
    def from_json(cls, raw: str) -> "CsrfRecord":
        payload: dict[str, Any] = json.loads(raw)
        return cls(
            fingerprint=str(payload["fingerprint"]),
            token=str(payload["token"]),
            issued_at=float(payload["issued_at"]),
        )


def fingerprint(client_ip: str | None, client_id: str | None) -> str:
    # Requester identity without a server-side session: hash of source address and client header.
    material = f"{client_ip or ''}{client_id or ''}"
    return hashlib.sha256(material.encode("utf-8")).hexdigest()


def tokens_match(expected: str, supplied: str) -> bool:
    expected_bytes = expected.encode("utf-8")
    supplied_bytes = supplied.encode("utf-8")
    # Unequal lengths are rejected before any content comparison.
    if len(expected_bytes) != len(supplied_bytes):
        return False
    return hmac.compare_digest(expected_bytes, supplied_bytes)


class CsrfGuard:
    """Stateful anti-forgery tokens keyed by requester fingerprint.

    A safe request mints (or reuses) the fingerprint's token; an unsafe request must echo
    it back. Records live in the injected state store with a TTL equal to the token max
    age, so a rotated-out token is indistinguishable from a forged one.
    """

    def __init__(
        self,
        store: StateStore,
        *,
        time_provider: Callable[[], float] | None = None,
        max_age_s: int | None = None,
    ) -> None:
        # Allow injecting time for deterministic tests.
        self._store = store
        self._time_provider = time_provider or time.time
        self._max_age_s = max_age_s if max_age_s is not None else get_settings().csrf_token_max_age_s

    @property
    def max_age_s(self) -> int:
        return self._max_age_s

    def _key(self, fp: str) -> str:
        return f"{_KEY_PREFIX}:{fp}"

    async def _load(self, fp: str) -> CsrfRecord | None:
        raw = await self._store.get(self._key(fp))
        if raw is None:
            return None
        try:
            return CsrfRecord.from_json(raw)
        except (ValueError, KeyError, TypeError):
            logger.warning("csrf_record_corrupt fingerprint=%s", fp[:12])
            await self._store.delete(self._key(fp))
            return None

    def _is_stale(self, record: CsrfRecord, now: float) -> bool:
        return now - record.issued_at > self._max_age_s

    async def issue(self, fp: str) -> str:
        now = self._time_provider()
        record = await self._load(fp)
        if record is not None and not self._is_stale(record, now):
            return record.token
        record = CsrfRecord(fingerprint=fp, token=secrets.token_hex(32), issued_at=now)
        await self._store.set(self._key(fp), record.to_json(), ttl_s=self._max_age_s)
        logger.debug("csrf_token_issued fingerprint=%s", fp[:12])
        return record.token

    async def validate(self, fp: str, supplied: str | None) -> Result[None, CsrfFailure]:
        if not supplied:
            return Err(CsrfFailure.CSRF_TOKEN_MISSING)
        record = await self._load(fp)
        if record is None or self._is_stale(record, self._time_provider()):
            logger.warning("csrf_session_invalid fingerprint=%s", fp[:12])
            return Err(CsrfFailure.CSRF_SESSION_INVALID)
        if not tokens_match(record.token, supplied):
            logger.warning("csrf_token_mismatch fingerprint=%s", fp[:12])
            return Err(CsrfFailure.CSRF_TOKEN_INVALID)
        return Ok(None)

    async def purge_stale(self) -> int:
        removed = await self._store.purge_expired()
        if removed:
            logger.info("csrf_records_purged count=%s", removed)
        return removed
