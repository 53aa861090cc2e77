import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from coach_core.config import settings
from coach_core.core.errors import register_error_handlers
from coach_core.core.middleware import AccessLogMiddleware, RequestIDMiddleware
from coach_core.dependencies import build_runtime
from coach_core.routers import coach

logger = logging.getLogger("potok")
logger.setLevel(settings.log_level.upper())

VERSION = "0.1.0"


@asynccontextmanager
async def lifespan(application: FastAPI):
    """Build the process-wide coach runtime; create memory tables for the SQL store."""
    engine = None
    session_factory = None
    if settings.memory_backend == "sql":
        from coach_core.models.base import Base
        import coach_core.models  # noqa: F401

        engine = create_async_engine(settings.database_url)
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)
        session_factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        logger.info("Coach memory tables verified/created")

    application.state.coach_runtime = build_runtime(settings, session_factory=session_factory)
    logger.info("Coach runtime ready memory_backend=%s", settings.memory_backend)
    yield
    if engine is not None:
        await engine.dispose()


app = FastAPI(
    title=settings.app_name,
    version=VERSION,
    docs_url="/docs" if settings.debug else None,
    redoc_url="/redoc" if settings.debug else None,
    lifespan=lifespan,
)

# Middleware: last added is outermost; CORS outermost so every response gets headers
cors_kwargs = {
    "allow_origins": settings.cors_origins_list,
    "allow_credentials": True,
    "allow_methods": ["*"],
    "allow_headers": ["*"],
    "expose_headers": ["x-request-id"],
}
if settings.cors_allow_origin_regex:
    cors_kwargs["allow_origin_regex"] = settings.cors_allow_origin_regex
app.add_middleware(RequestIDMiddleware)
app.add_middleware(AccessLogMiddleware)
app.add_middleware(CORSMiddleware, **cors_kwargs)

register_error_handlers(app, memory_reset_timeout_ms=settings.memory_breaker_reset_timeout_ms)

app.include_router(coach.router)


@app.get("/health")
async def health_check():
    return {"status": "ok", "app": settings.app_name, "version": VERSION}
