"""Audit logging utilities."""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

audit_logger = logging.getLogger("twofa_guard.audit")


class AttemptEvent(str, Enum):
    ATTEMPT_ALLOWED = "attempt_allowed"
    ATTEMPT_REJECTED = "attempt_rejected"
    CODE_APPROVED = "code_approved"
    CODE_REJECTED = "code_rejected"
    CLIENT_IP_MISSING = "client_ip_missing"


def log_event(
    *,
    event_type: AttemptEvent,
    client_identity: Optional[str] = None,
    failed_attempts: Optional[int] = None,
    metadata: Optional[dict[str, Any]] = None,
) -> None:
    audit_logger.info(
        "%s identity=%s failed_attempts=%s",
        event_type.value,
        client_identity,
        failed_attempts,
        extra={
            "event_type": event_type.value,
            "client_identity": client_identity,
            "failed_attempts": failed_attempts,
            "details": metadata,
            "logged_at": datetime.now(timezone.utc).isoformat(),
        },
    )
