"""
Agent orchestration core entry point.

Builds the FastAPI application that:
  1. Exposes agent lifecycle, status and task routes at /api/agents
  2. Exposes AI convenience routes at /api/ai
  3. Serves health checks at /api/health
  4. Runs the realtime gateway over a WebSocket at /ws
"""
import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from agentcore.api import agents, ai, health, realtime
from agentcore.config import ALLOWED_ORIGINS, HOST, LOG_LEVEL, PORT, SERVICE_VERSION, require_valid_config
from agentcore.errors import AgentCoreError, InternalError, NotFound, RateLimited, ValidationFailed
from agentcore.events import EventKind
from agentcore.services import Services

logging.basicConfig(
    level=getattr(logging, LOG_LEVEL.upper(), logging.INFO),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
)
logger = logging.getLogger("agentcore")


# ── Suppress leftover ASGI RuntimeErrors caused by client disconnects ──────────
class _AsgiDisconnectFilter(logging.Filter):
    """
    Filters uvicorn records caused by realtime clients that vanish mid-frame.
    """
    _NOISE = (
        "Unexpected ASGI message 'websocket.send'",
        "Unexpected ASGI message 'websocket.close'",
        "Cannot call \"send\" once a close message has been sent",
    )

    def filter(self, record: logging.LogRecord) -> bool:
        return not any(n in record.getMessage() for n in self._NOISE)


for _ln in ("uvicorn.error", "uvicorn"):
    logging.getLogger(_ln).addFilter(_AsgiDisconnectFilter())


def _error_response(error: AgentCoreError) -> JSONResponse:
    headers = None
    if isinstance(error, RateLimited):
        headers = {"Retry-After": str(error.retry_after)}
    return JSONResponse(
        status_code=error.status_code,
        content={"success": False, "error": error.to_dict()},
        headers=headers,
    )


def _install_error_handlers(app: FastAPI) -> None:
    @app.exception_handler(AgentCoreError)
    async def core_error(request: Request, exc: AgentCoreError):
        if exc.status_code >= 500:
            logger.warning(f"{request.method} {request.url.path} failed: {exc.code}: {exc.message}")
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def request_validation_error(request: Request, exc: RequestValidationError):
        details = [
            {"path": ".".join(str(p) for p in err.get("loc", ())), "message": err.get("msg", "")}
            for err in exc.errors()
        ]
        return _error_response(ValidationFailed("Validation failed", details=details))

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        if exc.status_code == 404:
            return _error_response(NotFound(f"Route {request.method} {request.url.path} not found"))
        return JSONResponse(
            status_code=exc.status_code,
            content={"success": False, "error": {"code": "HTTPError", "message": str(exc.detail)}},
        )

    @app.exception_handler(Exception)
    async def unexpected_error(request: Request, exc: Exception):
        logger.exception(f"Unhandled error on {request.method} {request.url.path}")
        services = getattr(request.app.state, "services", None)
        if services is not None:
            services.bus.emit(
                EventKind.SYSTEM_ERROR,
                {"message": "Internal server error", "path": request.url.path, "error": type(exc).__name__},
            )
        return _error_response(InternalError("Internal server error"))


def create_app(services: Optional[Services] = None) -> FastAPI:
    """Build the application. Without ``services`` the production collaborators are wired from config."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if getattr(app.state, "services", None) is None:
            require_valid_config()
            app.state.services = Services.from_config()
        svc: Services = app.state.services
        await svc.startup()
        logger.info(f"Agent core running at http://{HOST}:{PORT}")
        yield
        await svc.shutdown()

    app = FastAPI(
        title="Agent Core",
        description="Orchestration core for marketplace AI agents.",
        version=SERVICE_VERSION,
        lifespan=lifespan,
    )
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    _install_error_handlers(app)

    app.include_router(health.router)
    app.include_router(agents.router)
    app.include_router(ai.router)
    app.include_router(realtime.router)
    return app


app = create_app()


# ─────────────────────────────────────────────
# Entry point
# ─────────────────────────────────────────────

if __name__ == "__main__":
    uvicorn.run("agentcore.main:app", host=HOST, port=PORT, reload=True)
