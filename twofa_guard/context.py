"""Per-transaction state shared between the inbound and outbound phases."""
from __future__ import annotations

from dataclasses import dataclass

from starlette.requests import Request

STATE_ATTRIBUTE = "twofa"


@dataclass
class TransactionContext:
    client_identity: str
    max_attempts: int
    failure_count_at_entry: int = 0


def attach_context(request: Request, context: TransactionContext) -> None:
    setattr(request.state, STATE_ATTRIBUTE, context)


def get_context(request: Request) -> TransactionContext | None:
    return getattr(request.state, STATE_ATTRIBUTE, None)
