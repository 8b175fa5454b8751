from __future__ import annotations
import uuid
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import SQLAlchemyError
from reelrank.config import settings
from reelrank.logging_setup import configure_logging
from reelrank.routes.system import router as system_router
from reelrank.routes.leaderboards import router as leaderboards_router
from reelrank.services.ranking_cache import build_ranking_cache
import structlog

configure_logging()
log = structlog.get_logger()

@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    app.state.ranking_cache = build_ranking_cache()
    log.info("startup", env=settings.environment, version=settings.app_version, git_sha=settings.git_sha,
             cache_backend=settings.ranking_cache_backend)
    yield
    # Shutdown
    await app.state.ranking_cache.close()
    log.info("shutdown")

app = FastAPI(
    title=f"{settings.app_display_name} API",
    version=settings.app_version,
    lifespan=lifespan,
    description=f"{settings.app_display_name} ranking and leaderboard API",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"] if settings.environment == "dev" else settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(system_router)
app.include_router(leaderboards_router)

# The store is the last line: when it is down or slow the request fails, retryably
@app.exception_handler(TimeoutError)
async def store_timeout(request: Request, exc: TimeoutError):
    log.error("store.timeout", path=request.url.path)
    return JSONResponse(status_code=503, content={"detail": "Ranking store timed out"}, headers={"Retry-After": "1"})

@app.exception_handler(SQLAlchemyError)
async def store_unavailable(request: Request, exc: SQLAlchemyError):
    log.error("store.error", path=request.url.path, error=exc.__class__.__name__)
    return JSONResponse(status_code=503, content={"detail": "Ranking store unavailable"}, headers={"Retry-After": "1"})

@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = request.headers.get("x-request-id") or str(uuid.uuid4())
    request.state.request_id = rid
    structlog.contextvars.bind_contextvars(request_id=rid)
    response: Response = await call_next(request)
    response.headers["X-Request-ID"] = rid
    structlog.contextvars.clear_contextvars()
    return response
