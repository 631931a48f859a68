"""
Standalone FastAPI app wiring for AgentStats.
"""

from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

import core.config as config
from core.db import DB, get_session_factory, init_db
from core.errors import AccessDeniedError, ValidationIssue
from core.primary import HttpAgentDirectory, SqlPrimaryDirectory, bearer_headers_provider
from app.deps import Services, configure_services, reset_services
from app.middleware import configure_middleware
from app.routes.client_statistics import router as client_statistics_router
from app.routes.health import router as health_router
from app.routes.root import router as root_router
from app.routes.statistics import router as statistics_router


def _build_agent_directory() -> HttpAgentDirectory:
    headers_provider = bearer_headers_provider(config.AGENT_MANAGER_API_KEY)
    if headers_provider is None:
        config.logger.warning(
            "agent_directory_unauthenticated",
            extra={"hint": "set AGENT_MANAGER_API_KEY to authenticate agent sync requests"},
        )
    return HttpAgentDirectory(headers_provider=headers_provider)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Initialize on startup, cleanup on shutdown."""
    init_db()
    session_factory = get_session_factory()
    configure_services(
        session_factory,
        SqlPrimaryDirectory(session_factory),
        _build_agent_directory(),
        authentication_method=config.resolve_authentication_method(),
    )
    if config.STATISTICS_SYNC_ON_STARTUP:
        await asyncio.to_thread(Services.sync.run_startup_sync)
    try:
        yield
    finally:
        if Services.agents is not None:
            Services.agents.close()
        reset_services()
        if DB.engine:
            DB.engine.dispose()


def _validation_error_payload(exc: ValidationIssue) -> dict:
    return {
        "status": "error",
        "error_type": "validation_error",
        "field": exc.field,
        "message": str(exc),
    }


async def validation_issue_handler(request: Request, exc: ValidationIssue) -> JSONResponse:
    config.logger.info(
        "request_validation_error",
        extra={"path": request.url.path, "field": exc.field, "error_type": exc.error_type},
    )
    return JSONResponse(status_code=400, content=_validation_error_payload(exc))


async def access_denied_handler(request: Request, exc: AccessDeniedError) -> JSONResponse:
    return JSONResponse(
        status_code=403,
        content={"status": "error", "error_type": "forbidden", "message": str(exc)},
    )


app = FastAPI(title="AgentStats", redirect_slashes=False, lifespan=lifespan)
configure_middleware(app)

app.add_exception_handler(ValidationIssue, validation_issue_handler)
app.add_exception_handler(AccessDeniedError, access_denied_handler)

# Health and root endpoints
app.include_router(health_router)
app.include_router(root_router)

# Statistics read API
app.include_router(statistics_router)
app.include_router(client_statistics_router)
