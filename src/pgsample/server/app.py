# src/pgsample/server/app.py
"""Starlette ASGI application for the sync service.

Routes:
    POST /postgres/all   sync a schema (DDL + sampled rows)
    POST /postgres/live  recent queries only
    GET  /health         liveness
    GET  /               redirect to the project page
    OPTIONS *            CORS preflight

Usage:
    from pgsample.server.app import create_app

    app = create_app(settings)
"""

from __future__ import annotations

import json
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from email.utils import formatdate
from typing import Any
from urllib.parse import urlencode

import structlog
from pydantic import ValidationError
from starlette.applications import Starlette
from starlette.middleware import Middleware
from starlette.requests import Request
from starlette.responses import JSONResponse, PlainTextResponse, RedirectResponse, Response
from starlette.routing import Route
from starlette.types import ASGIApp, Receive, Scope, Send

from pgsample import __version__
from pgsample.contracts.errors import (
    InvalidRequestError,
    MaxTableIterationsReached,
    SyncCancelledError,
    SyncError,
)
from pgsample.contracts.url import Connectable, sanitize_postgres_url
from pgsample.core.config import PgSampleSettings
from pgsample.core.rate_limit import ClientRateLimiter, NoOpLimiter, RateLimitDecision, create_rate_limiter
from pgsample.server.requests import LiveQueryRequest, SyncRequest, describe_validation_error
from pgsample.sync.syncer import PostgresSyncer

logger = structlog.get_logger(__name__)

_MAX_ITERATIONS_MESSAGE = "Max table iterations reached. This is a bug with the syncer"
_HIDDEN_ERROR_MESSAGE = "Internal Server Error"


class SyncJSONResponse(JSONResponse):
    """JSONResponse that renders driver types (Decimal, UUID, datetime) as strings."""

    def render(self, content: Any) -> bytes:
        return json.dumps(content, ensure_ascii=False, separators=(",", ":"), default=str).encode("utf-8")


def _error_body(error_type: str, message: str) -> dict[str, str]:
    return {"kind": "error", "type": error_type, "error": message}


def _window_label(seconds: int) -> str:
    if seconds % 60 == 0:
        return f"{seconds // 60}m"
    return f"{seconds}s"


def rate_limit_headers(decision: RateLimitDecision) -> dict[str, str]:
    """X-RateLimit-* headers; Retry-After replaces X-RateLimit-Reset once limited."""
    reset = formatdate(decision.reset_at, usegmt=True)
    headers = {
        "X-RateLimit-Limit": str(decision.limit),
        "X-RateLimit-Window": _window_label(decision.window_seconds),
        "X-RateLimit-Remaining": str(decision.remaining),
    }
    headers["Retry-After" if decision.limited else "X-RateLimit-Reset"] = reset
    return headers


class PreflightMiddleware:
    """Answers CORS preflight on any path ahead of routing."""

    def __init__(self, app: ASGIApp, headers: dict[str, str]) -> None:
        self.app = app
        self.headers = headers

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] == "http" and scope["method"] == "OPTIONS":
            response = PlainTextResponse("OK", status_code=200, headers=self.headers)
            await response(scope, receive, send)
            return
        await self.app(scope, receive, send)


class SyncServer:
    """Main server class.

    Owns the syncer (and through it the connection pools) and the rate
    limiter; both are released by the application's lifespan.
    """

    def __init__(
        self,
        settings: PgSampleSettings | None = None,
        *,
        syncer: PostgresSyncer | None = None,
        limiter: ClientRateLimiter | NoOpLimiter | None = None,
    ) -> None:
        self._settings = settings if settings is not None else PgSampleSettings()
        self._syncer = syncer if syncer is not None else PostgresSyncer(self._settings)
        self._limiter = limiter if limiter is not None else create_rate_limiter(self._settings.rate_limit)
        self._started = time.time()
        self._app = self._create_app()

    def _create_app(self) -> Starlette:
        """Create the Starlette application with all routes."""
        routes = [
            Route("/", self._root_endpoint, methods=["GET"]),
            Route("/health", self._health_endpoint, methods=["GET"]),
            Route("/postgres/all", self._sync_endpoint, methods=["POST"]),
            Route("/postgres/live", self._live_endpoint, methods=["POST"]),
        ]
        middleware = [Middleware(PreflightMiddleware, headers=self._cors_headers())]
        return Starlette(debug=False, routes=routes, middleware=middleware, lifespan=self._lifespan)

    @asynccontextmanager
    async def _lifespan(self, app: Starlette) -> AsyncIterator[None]:
        logger.info("Sync server started", version=__version__, hosted=self._settings.server.hosted)
        try:
            yield
        finally:
            await self._syncer.close()
            self._limiter.close()
            logger.info("Sync server stopped")

    @property
    def app(self) -> Starlette:
        """Get the Starlette ASGI application."""
        return self._app

    @property
    def _hosted(self) -> bool:
        return self._settings.server.hosted

    def _cors_headers(self) -> dict[str, str]:
        return {
            "Access-Control-Allow-Origin": self._settings.server.cors_allow_origin,
            # cache preflight requests for 1 day
            "Access-Control-Max-Age": "86400",
            "Access-Control-Allow-Methods": "POST",
            "Access-Control-Allow-Headers": "Content-Type",
            "Access-Control-Expose-Headers": "Content-Type, X-RateLimit-Limit, X-RateLimit-Remaining, X-RateLimit-Reset",
        }

    def _log_request(self, request: Request) -> None:
        """Log method and path; a db query parameter is replaced by its sanitized form."""
        params = dict(request.query_params)
        if "db" in params:
            params["db"] = sanitize_postgres_url(params["db"], hosted=self._hosted)
        query = f"?{urlencode(params)}" if params else ""
        logger.info("HTTP request", method=request.method, path=f"{request.url.path}{query}")

    def _check_rate_limit(self, request: Request) -> tuple[Response | None, dict[str, str]]:
        client = request.client.host if request.client is not None else "unknown"
        decision = self._limiter.check(request.url.path, client)
        if decision is None:
            return None, {}
        headers = rate_limit_headers(decision)
        if decision.limited:
            return PlainTextResponse("Rate limit exceeded", status_code=429, headers=headers), headers
        return None, headers

    def _finish(self, response: Response, rate_headers: dict[str, str]) -> Response:
        response.headers.update(self._cors_headers())
        response.headers.update(rate_headers)
        return response

    async def _read_json(self, request: Request) -> Any:
        """Decoded body.

        Raises:
            InvalidRequestError: Empty body or not JSON
        """
        body = await request.body()
        if not body:
            raise InvalidRequestError("Missing body")
        try:
            return json.loads(body)
        except json.JSONDecodeError as e:
            raise InvalidRequestError(f"Body is not valid JSON: {e}") from e

    def _sync_defaults(self, payload: Any) -> Any:
        """Fill omitted sampling fields from configured defaults."""
        if not isinstance(payload, dict):
            return payload
        sampling = self._settings.sampling
        return {
            "seed": sampling.seed,
            "requiredRows": sampling.required_rows,
            "maxRows": sampling.max_rows,
            **payload,
        }

    def _error_response(self, error: SyncError) -> SyncJSONResponse:
        if isinstance(error, InvalidRequestError):
            return SyncJSONResponse(_error_body(error.error_type, error.message), status_code=400)
        if isinstance(error, MaxTableIterationsReached):
            return SyncJSONResponse(_error_body(error.error_type, _MAX_ITERATIONS_MESSAGE), status_code=500)
        if isinstance(error, SyncCancelledError):
            return SyncJSONResponse(_error_body(error.error_type, error.message), status_code=503)
        if type(error) is SyncError:
            message = _HIDDEN_ERROR_MESSAGE if self._hosted else error.message
            return SyncJSONResponse(_error_body(error.error_type, message), status_code=500)
        return SyncJSONResponse(_error_body(error.error_type, error.message), status_code=500)

    # === Endpoint handlers ===

    async def _root_endpoint(self, request: Request) -> Response:
        """Handle GET /."""
        self._log_request(request)
        return RedirectResponse(self._settings.server.project_url, status_code=307)

    async def _health_endpoint(self, request: Request) -> JSONResponse:
        """Handle GET /health."""
        return JSONResponse(
            {
                "status": "healthy",
                "version": __version__,
                "uptime_seconds": round(time.time() - self._started, 3),
                **self._syncer.describe(),
            }
        )

    async def _sync_endpoint(self, request: Request) -> Response:
        """Handle POST /postgres/all."""
        started = time.perf_counter()
        self._log_request(request)
        limited, rate_headers = self._check_rate_limit(request)
        if limited is not None:
            return limited

        try:
            body = SyncRequest.model_validate(self._sync_defaults(await self._read_json(request)))
            connectable = Connectable.parse(body.db, hosted=self._hosted)
        except ValidationError as e:
            return self._finish(
                SyncJSONResponse(_error_body("invalid_body", describe_validation_error(e)), status_code=400),
                rate_headers,
            )
        except InvalidRequestError as e:
            return self._finish(self._error_response(e), rate_headers)

        for warning in body.warnings():
            logger.warning("Questionable request options", detail=warning)

        try:
            result = await self._syncer.sync(connectable, body.db_schema, body.resolution_options(self._settings.sampling))
        except SyncError as e:
            logger.error("Sync failed", error_type=e.error_type, error=e.message)
            return self._finish(self._error_response(e), rate_headers)
        except Exception as e:
            logger.exception("Unexpected error during sync")
            message = _HIDDEN_ERROR_MESSAGE if self._hosted else str(e)
            return self._finish(SyncJSONResponse(_error_body("unexpected_error", message), status_code=500), rate_headers)

        logger.info(
            "Sent sync response",
            schema=body.db_schema,
            duration_ms=round((time.perf_counter() - started) * 1000, 1),
            notices=len(result.notices),
        )
        return self._finish(SyncJSONResponse(result.to_dict(), status_code=200), rate_headers)

    async def _live_endpoint(self, request: Request) -> Response:
        """Handle POST /postgres/live."""
        self._log_request(request)
        limited, rate_headers = self._check_rate_limit(request)
        if limited is not None:
            return limited

        try:
            body = LiveQueryRequest.model_validate(await self._read_json(request))
            connectable = Connectable.parse(body.db, hosted=self._hosted)
        except ValidationError as e:
            return self._finish(
                SyncJSONResponse(_error_body("invalid_body", describe_validation_error(e)), status_code=400),
                rate_headers,
            )
        except InvalidRequestError as e:
            return self._finish(self._error_response(e), rate_headers)

        result = await self._syncer.live_queries(connectable)
        status = 200 if result.ok else 500
        return self._finish(SyncJSONResponse(result.to_dict(), status_code=status), rate_headers)


def create_app(
    settings: PgSampleSettings | None = None,
    *,
    syncer: PostgresSyncer | None = None,
    limiter: ClientRateLimiter | NoOpLimiter | None = None,
) -> Starlette:
    """Create the ASGI application.

    Args:
        settings: Server configuration; defaults when None
        syncer: Injected syncer (tests); built from settings when None
        limiter: Injected rate limiter (tests); built from settings when None

    Returns:
        Starlette ASGI application
    """
    server = SyncServer(settings, syncer=syncer, limiter=limiter)
    return server.app
