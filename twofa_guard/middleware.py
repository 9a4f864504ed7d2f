"""Wires the attempt gate and the outcome recorder around each transaction."""
from __future__ import annotations

import logging

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from .audit import AttemptEvent, log_event
from .config import Settings
from .context import TransactionContext, attach_context, get_context
from .gate import AttemptGate, rejection_response, resolve_max_attempts
from .identity import client_identity
from .recorder import OutcomeRecorder
from .schemas import ErrorBody
from .store import KeyValueStore

logger = logging.getLogger(__name__)

_EXEMPT_PATHS = {"/health"}


def _matches_prefix(path: str, prefix: str) -> bool:
    if prefix == "/":
        return True
    prefix = prefix.rstrip("/")
    return path == prefix or path.startswith(prefix + "/")


def is_protected(path: str, protected_paths: list[str]) -> bool:
    if path in _EXEMPT_PATHS:
        return False
    return any(_matches_prefix(path, prefix) for prefix in protected_paths)


def max_attempts_for(path: str, settings: Settings) -> int:
    """Resolve the attempt limit for ``path`` from the route override table.

    The longest matching prefix wins; paths without an override, or whose
    override is unusable, get ``default_max_attempts``.
    """

    matches = [prefix for prefix in settings.max_attempts_overrides if _matches_prefix(path, prefix)]
    if not matches:
        return settings.default_max_attempts
    raw = settings.max_attempts_overrides[max(matches, key=len)]
    return resolve_max_attempts(raw, default=settings.default_max_attempts)


class TwoFactorGuardMiddleware(BaseHTTPMiddleware):
    def __init__(self, app, *, store: KeyValueStore, settings: Settings) -> None:
        super().__init__(app)
        self.settings = settings
        self.gate = AttemptGate(store, settings)
        self.recorder = OutcomeRecorder(store)

    def _resolve_identity(self, request: Request) -> str | None:
        real_ip = request.headers.get(self.settings.client_ip_header)
        if not real_ip:
            policy = self.settings.missing_client_ip_policy
            log_event(event_type=AttemptEvent.CLIENT_IP_MISSING, metadata={"policy": policy})
            if policy == "reject":
                return None
            if policy == "sentinel":
                return self.settings.missing_client_ip_key
            real_ip = ""
        return client_identity(real_ip, ipv6_policy=self.settings.ipv6_key_policy)

    async def dispatch(self, request: Request, call_next) -> Response:
        if not is_protected(request.url.path, self.settings.protected_paths):
            return await call_next(request)

        identity = self._resolve_identity(request)
        if identity is None:
            return JSONResponse(
                status_code=status.HTTP_400_BAD_REQUEST,
                content=ErrorBody(error="missing client ip").model_dump(),
            )
        logger.info("Client identity %s", identity)

        max_attempts = max_attempts_for(request.url.path, self.settings)
        decision = await self.gate.check(identity, max_attempts)
        if not decision.allowed:
            return rejection_response()

        attach_context(
            request,
            TransactionContext(
                client_identity=identity,
                max_attempts=max_attempts,
                failure_count_at_entry=decision.failed_attempts,
            ),
        )

        response = await call_next(request)
        self.on_origin_response(request)
        return response

    def on_origin_response(self, request: Request) -> bool:
        """Record the outcome of the attempt carried by this request's context.

        Returns ``True`` when a failure write was issued.
        """

        context = get_context(request)
        if context is None:
            return False
        origin_status = getattr(request.state, "origin_status", None)
        if origin_status is None:
            logger.warning("No origin response for %s; attempt not recorded", context.client_identity)
            return False
        return self.recorder.record(context, origin_status)
