"""Outcome recorder: bumps the failure counter after a rejected 2FA code."""
from __future__ import annotations

import logging

from .audit import AttemptEvent, log_event
from .context import TransactionContext
from .schemas import ClientRecord
from .store import KeyValueStore

logger = logging.getLogger(__name__)

APPROVED_STATUS = 200


class OutcomeRecorder:
    """Persists ``failure_count_at_entry + 1`` for every non-200 origin response.

    The write is handed to the store without waiting for it. Concurrent
    failures from one client may all start from the same count, so bursts can
    be undercounted.
    """

    def __init__(self, store: KeyValueStore) -> None:
        self.store = store

    def record(self, context: TransactionContext, status_code: int) -> bool:
        logger.debug("Origin responded %d for %s", status_code, context.client_identity)
        if status_code == APPROVED_STATUS:
            logger.info("2FA code approved for %s", context.client_identity)
            log_event(
                event_type=AttemptEvent.CODE_APPROVED,
                client_identity=context.client_identity,
                failed_attempts=context.failure_count_at_entry,
            )
            return False

        record = ClientRecord(failed_attempts=context.failure_count_at_entry + 1)
        logger.info("New failed attempts for %s: %d", context.client_identity, record.failed_attempts)
        log_event(
            event_type=AttemptEvent.CODE_REJECTED,
            client_identity=context.client_identity,
            failed_attempts=record.failed_attempts,
            metadata={"status_code": status_code},
        )
        try:
            self.store.put_json_nowait(context.client_identity, record.to_store())
        except Exception as exc:
            logger.warning("Failure counter write for %s failed: %s", context.client_identity, exc)
        return True
