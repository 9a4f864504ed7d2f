"""Attempt gate: decides whether a 2FA attempt may reach the origin."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from pydantic import ValidationError
from starlette.responses import Response

from .audit import AttemptEvent, log_event
from .config import Settings, get_settings
from .schemas import ClientRecord
from .store import KeyValueStore

logger = logging.getLogger(__name__)

REJECTION_STATUS = 403
REJECTION_CONTENT_TYPE = "application/json;charset=utf-8"
REJECTION_BODY = '{"error": "too many failed 2FA codes"}'


@dataclass(frozen=True)
class GateDecision:
    allowed: bool
    failed_attempts: int
    max_attempts: int


def resolve_max_attempts(raw: Any, default: int = 3) -> int:
    """Parse a per-transaction max attempts value.

    Missing, empty, non-numeric and non-positive values fall back to ``default``.
    """

    if raw is None or isinstance(raw, bool):
        return default
    if isinstance(raw, int):
        value = raw
    else:
        try:
            value = int(str(raw).strip())
        except ValueError:
            return default
    if value < 1:
        return default
    return value


def failed_attempts_from(record: Any) -> int:
    if record is None:
        return 0
    try:
        return ClientRecord.model_validate(record).failed_attempts
    except ValidationError:
        logger.warning("Ignoring malformed client record: %r", record)
        return 0


def rejection_response() -> Response:
    return Response(
        content=REJECTION_BODY,
        status_code=REJECTION_STATUS,
        headers={"Content-Type": REJECTION_CONTENT_TYPE},
    )


class AttemptGate:
    """Looks up the failure counter of a client and compares it with the limit.

    The lookup is bounded by ``kv_timeout_ms``. Any failure to read, including
    a missing key, counts as zero failures so store trouble never blocks logins.
    """

    def __init__(self, store: KeyValueStore, settings: Settings | None = None) -> None:
        self.store = store
        self.settings = settings or get_settings()

    async def read_failed_attempts(self, client_identity: str) -> int:
        try:
            record = await self.store.get_json(client_identity, timeout_ms=self.settings.kv_timeout_ms)
        except Exception as exc:
            logger.warning("Failure counter lookup for %s failed: %s", client_identity, exc)
            return 0
        return failed_attempts_from(record)

    async def check(self, client_identity: str, max_attempts: int) -> GateDecision:
        failed_attempts = await self.read_failed_attempts(client_identity)
        logger.info("Client %s has %d failed attempts (max %d)", client_identity, failed_attempts, max_attempts)

        if failed_attempts >= max_attempts:
            log_event(
                event_type=AttemptEvent.ATTEMPT_REJECTED,
                client_identity=client_identity,
                failed_attempts=failed_attempts,
                metadata={"max_attempts": max_attempts},
            )
            return GateDecision(allowed=False, failed_attempts=failed_attempts, max_attempts=max_attempts)

        log_event(
            event_type=AttemptEvent.ATTEMPT_ALLOWED,
            client_identity=client_identity,
            failed_attempts=failed_attempts,
            metadata={"max_attempts": max_attempts},
        )
        return GateDecision(allowed=True, failed_attempts=failed_attempts, max_attempts=max_attempts)
