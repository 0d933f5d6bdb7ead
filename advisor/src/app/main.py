"""FastAPI host for the Advisor chat core."""

from __future__ import annotations

import logging
import re
import uuid
from contextlib import asynccontextmanager

import httpx
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .routes import chat as chat_routes
from .routes import conversations as conversations_routes
from .. import config
from ..engine.chat_client import ChatCompletionClient
from ..engine.errors import ConfigurationError
from ..utils.redact import mask_api_key

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    config.configure_logging()
    client_config = config.ChatClientConfig.from_env()
    http_client = httpx.AsyncClient()
    app.state.http_client = http_client
    try:
        app.state.chat_client = ChatCompletionClient(client_config, http_client=http_client)
        logger.info(
            "chat_client_ready model=%s url=%s key=%s",
            client_config.model,
            client_config.url,
            mask_api_key(client_config.api_key),
        )
    except ConfigurationError as e:
        # Chat routes answer 503 until the credential is fixed.
        app.state.chat_client = None
        logger.error("chat_client_unavailable error=%s", e.message)
    try:
        yield
    finally:
        if app.state.chat_client is not None:
            app.state.chat_client.cancel()
        app.state.chat_client = None
        await http_client.aclose()


app = FastAPI(title="Advisor Chat API", lifespan=lifespan)

_cors_origins = config.cors_allow_origins()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins,
    allow_credentials=False if _cors_origins == ["*"] else True,
    allow_methods=["*"],
    allow_headers=["*"],
)


def _safe_detail(detail: object) -> str:
    if isinstance(detail, str):
        return detail
    return "Request failed"


def _maybe_error_code(detail: str) -> str | None:
    if re.fullmatch(r"[a-z0-9_]+", detail or ""):
        return detail
    return None


@app.get("/")
async def root():
    """Health check endpoint."""
    return {"status": "ok", "service": "Advisor Chat API"}


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    request_id = request.headers.get("X-Request-ID") or str(uuid.uuid4())
    request.state.request_id = request_id
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
    detail = _safe_detail(exc.detail)
    payload: dict[str, object] = {"detail": detail, "request_id": request_id}
    code = _maybe_error_code(detail)
    if code:
        payload["error_code"] = code
    logger.info("HTTPException %s request_id=%s detail=%s", exc.status_code, request_id, detail)
    resp = JSONResponse(status_code=exc.status_code, content=payload)
    resp.headers["X-Request-ID"] = request_id
    return resp


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    request_id = getattr(request.state, "request_id", None) or str(uuid.uuid4())
    logger.exception("Unhandled exception request_id=%s", request_id)
    resp = JSONResponse(
        status_code=500,
        content={"detail": "Internal server error", "request_id": request_id, "error_code": "internal_server_error"},
    )
    resp.headers["X-Request-ID"] = request_id
    return resp


app.include_router(conversations_routes.router)
app.include_router(chat_routes.router)


def run() -> None:
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8001)


if __name__ == "__main__":
    run()
