"""FastAPI entrypoint guarding the 2FA endpoints of an authentication origin."""
from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
from fastapi import FastAPI, Request, Response, status
from fastapi.responses import JSONResponse
from starlette.datastructures import Headers

from .config import Settings, get_settings
from .middleware import TwoFactorGuardMiddleware
from .schemas import ErrorBody
from .store import KeyValueStore, build_store

logger = logging.getLogger(__name__)

_HOP_BY_HOP_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailers",
    "transfer-encoding",
    "upgrade",
}
# httpx recomputes these for the request and decodes the body of the response.
_REQUEST_SKIP_HEADERS = _HOP_BY_HOP_HEADERS | {"host", "content-length"}
_RESPONSE_SKIP_HEADERS = _HOP_BY_HOP_HEADERS | {"content-length", "content-encoding"}

_PROXY_METHODS = ["GET", "POST", "PUT", "PATCH", "DELETE", "OPTIONS", "HEAD"]


def _forward_headers(headers: Headers) -> list[tuple[str, str]]:
    return [(name, value) for name, value in headers.items() if name.lower() not in _REQUEST_SKIP_HEADERS]


def create_app(
    settings: Settings | None = None,
    store: KeyValueStore | None = None,
    transport: httpx.AsyncBaseTransport | None = None,
) -> FastAPI:
    settings = settings or get_settings()
    logging.basicConfig(level=settings.log_level.upper())
    store = store or build_store(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        app.state.origin_client = httpx.AsyncClient(
            base_url=settings.origin_url,
            timeout=settings.origin_timeout_seconds,
            transport=transport,
        )
        try:
            yield
        finally:
            await app.state.origin_client.aclose()
            await store.aclose()

    app = FastAPI(title=settings.app_name, version="1.0.0", lifespan=lifespan)
    app.add_middleware(TwoFactorGuardMiddleware, store=store, settings=settings)

    @app.get("/health", tags=["health"])
    def healthcheck() -> dict:
        return {"status": "ok"}

    @app.api_route("/{path:path}", methods=_PROXY_METHODS, include_in_schema=False)
    async def proxy(path: str, request: Request) -> Response:
        client: httpx.AsyncClient = request.app.state.origin_client
        url = request.url.path
        if request.url.query:
            url = f"{url}?{request.url.query}"
        upstream_request = client.build_request(
            request.method,
            url,
            headers=_forward_headers(request.headers),
            content=await request.body(),
        )
        try:
            upstream = await client.send(upstream_request)
        except httpx.HTTPError as exc:
            logger.error("Authentication origin unreachable for %s %s: %s", request.method, url, exc)
            return JSONResponse(
                status_code=status.HTTP_502_BAD_GATEWAY,
                content=ErrorBody(error="authentication origin unavailable").model_dump(),
            )

        request.state.origin_status = upstream.status_code
        response = Response(content=upstream.content, status_code=upstream.status_code)
        for name, value in upstream.headers.multi_items():
            if name.lower() not in _RESPONSE_SKIP_HEADERS:
                response.headers.append(name, value)
        return response

    return app


app = create_app()
