import logging
import time
from contextlib import asynccontextmanager

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from insightbridge import settings
from insightbridge.api.routes import router
from insightbridge.services.insights import InsightStore, get_insight_store
from insightbridge.services.sessions import SessionRegistry
from insightbridge.services.sweeper import SessionSweeper

logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

SESSION_HEADER = "X-Session-ID"

# Requests to these paths never register a session
SESSIONLESS_PATHS = {"/api/health"}


# ---------------------------------------------------------------------------
# Session middleware
# ---------------------------------------------------------------------------

class SessionMiddleware(BaseHTTPMiddleware):
    """Resolves X-Session-ID into request.state.session_id and echoes it back."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path in SESSIONLESS_PATHS or request.method == "OPTIONS":
            return await call_next(request)

        registry: SessionRegistry = request.app.state.session_registry
        session_id = registry.resolve(request.headers.get(SESSION_HEADER))
        request.state.session_id = session_id

        response = await call_next(request)
        response.headers[SESSION_HEADER] = session_id
        return response


# ---------------------------------------------------------------------------
# Request logging
# ---------------------------------------------------------------------------

class RequestLoggingMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        start = time.perf_counter()
        response = await call_next(request)
        duration_ms = (time.perf_counter() - start) * 1000

        if response.status_code >= 500:
            log = logger.error
        elif response.status_code >= 400:
            log = logger.warning
        else:
            log = logger.debug
        log("%s %s %d %.0fms", request.method, request.url.path, response.status_code, duration_ms)
        return response


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------

@asynccontextmanager
async def lifespan(app: FastAPI):
    settings.validate_env()
    logger.info("Configuration: %s", settings.env_summary())

    sweeper = SessionSweeper(app.state.session_registry, app.state.insight_store)
    if app.state.run_sweeper:
        sweeper.start()
    yield
    await sweeper.stop()
    await app.state.insight_store.close()


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------

async def http_error_handler(request: Request, exc: StarletteHTTPException):
    if isinstance(exc.detail, dict):
        content = exc.detail
    else:
        content = {"error": "HTTP Error", "message": str(exc.detail)}
    return JSONResponse(status_code=exc.status_code, content=content)


async def unhandled_error_handler(request: Request, exc: Exception):
    logger.error("Unhandled error on %s %s: %s", request.method, request.url.path, exc)
    return JSONResponse(status_code=500, content={"error": "Internal Server Error", "message": str(exc)})


def create_app(
    store: InsightStore | None = None,
    registry: SessionRegistry | None = None,
    run_sweeper: bool = True,
) -> FastAPI:
    app = FastAPI(title="InsightBridge API", lifespan=lifespan)

    app.add_middleware(SessionMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=[SESSION_HEADER],
    )
    app.add_middleware(RequestLoggingMiddleware)

    app.add_exception_handler(StarletteHTTPException, http_error_handler)
    app.add_exception_handler(Exception, unhandled_error_handler)

    # Shared state the routes and middleware read from
    app.state.insight_store = store or get_insight_store()
    app.state.session_registry = registry or SessionRegistry()
    app.state.run_sweeper = run_sweeper

    app.include_router(router)

    @app.get("/api/health")
    async def health():
        return {"status": "ok", "message": "Server is running", "environment": settings.APP_ENV}

    return app


app = create_app()


def run() -> None:
    uvicorn.run(
        "insightbridge.main:app",
        host=settings.HOST,
        port=settings.PORT,
        reload=not settings.is_production(),
        log_level=settings.LOG_LEVEL.lower(),
    )


if __name__ == "__main__":
    run()
