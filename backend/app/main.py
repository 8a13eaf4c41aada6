from __future__ import annotations

import logging
import time
import uuid

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from backend.app.api.chat import router as chat_router
from backend.app.api.health import router as health_router
from backend.app.api.providers import router as providers_router
from backend.app.config.settings import Settings, settings
from backend.app.core.errors import APIError
from backend.app.core.logging import request_id_var, setup_logging
from backend.app.db.session import get_sessionmaker
from backend.app.providers.registry import ProviderRegistry
from backend.app.services.blob_store import HTTPBlobStore
from backend.app.services.config_resolver import ConfigResolver
from backend.app.services.context_builder import ContextBuilder
from backend.app.services.demo_responder import DemoResponder
from backend.app.services.dispatcher import ProviderDispatcher
from backend.app.services.image_resolver import ImageResolver

setup_logging(level=settings.log_level, json_output=settings.log_json, log_file=settings.log_file or None)
logger = logging.getLogger("backend")


def configure_gateway(
    app: FastAPI,
    http_client: httpx.AsyncClient,
    session_factory=None,
    config: Settings | None = None,
) -> None:
    """Build the per-process gateway services and hang them on ``app.state``."""
    config = config or settings
    registry = ProviderRegistry()
    registry.build_registry(http_client, config)
    blob_store = HTTPBlobStore(
        base_url=config.blob_base_url,
        bucket=config.blob_bucket,
        client=http_client,
        timeout_seconds=config.blob_timeout_seconds,
    )

    app.state.http_client = http_client
    app.state.registry = registry
    app.state.blob_store = blob_store
    app.state.context_builder = ContextBuilder(ImageResolver(blob_store), config.default_system_prompt)
    app.state.dispatcher = ProviderDispatcher(registry, DemoResponder(config.demo_word_delay_seconds))
    app.state.config_resolver = ConfigResolver(
        session_factory or get_sessionmaker(),
        ttl_seconds=config.config_cache_ttl_seconds,
    )


app = FastAPI(title="LLM Provider Gateway", version="0.1.0")


@app.on_event("startup")
def startup_event():
    """Create the shared upstream client unless one was injected."""
    if getattr(app.state, "dispatcher", None) is None:
        configure_gateway(app, httpx.AsyncClient())
        app.state.owns_http_client = True


@app.on_event("shutdown")
async def shutdown_event():
    if getattr(app.state, "owns_http_client", False):
        await app.state.http_client.aclose()
        app.state.dispatcher = None
        app.state.owns_http_client = False


app.include_router(health_router)
app.include_router(providers_router)
app.include_router(chat_router)


class RequestIDMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
        request.state.request_id = request_id

        token = request_id_var.set(request_id)
        try:
            response = await call_next(request)
            response.headers["X-Request-ID"] = request_id
            return response
        finally:
            request_id_var.reset(token)


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start_time = time.time()
        response = await call_next(request)
        latency = time.time() - start_time

        logger.info(
            "Request completed",
            extra={
                "request_id": getattr(request.state, "request_id", "unknown"),
                "method": request.method,
                "route": request.url.path,
                "status": response.status_code,
                "latency_ms": round(latency * 1000, 2),
            },
        )
        return response


app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(RequestIDMiddleware)


@app.exception_handler(APIError)
async def api_error_handler(request: Request, exc: APIError):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.warning(
        "Gateway error",
        extra={"request_id": request_id, "error_code": exc.code, "status_code": exc.status_code},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={**exc.to_payload(), "request_id": request_id},
    )


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    request_id = getattr(request.state, "request_id", "unknown")
    detail = exc.detail if isinstance(exc.detail, dict) else {"code": "HTTP_ERROR", "message": str(exc.detail)}
    logger.warning(
        "HTTPException",
        extra={"request_id": request_id, "status_code": exc.status_code, "error_code": detail.get("code")},
    )
    return JSONResponse(
        status_code=exc.status_code,
        content={"code": detail.get("code", "HTTP_ERROR"), "message": detail.get("message", "Request failed"), "request_id": request_id},
    )


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.warning("RequestValidationError", extra={"request_id": request_id})
    return JSONResponse(
        status_code=400,
        content={"code": "VALIDATION_ERROR", "message": "Invalid request", "detail": exc.errors(), "request_id": request_id},
    )


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", "unknown")
    logger.error("Unhandled exception", extra={"request_id": request_id}, exc_info=True)
    return JSONResponse(
        status_code=500,
        content={
            "code": "INTERNAL_ERROR",
            "message": "An internal error occurred",
            "request_id": request_id,
        },
    )
