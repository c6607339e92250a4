import os
import logging
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy.ext.asyncio import AsyncEngine
from starlette.middleware.gzip import GZipMiddleware

# Load environment variables as early as possible
load_dotenv()

from .core.config import Settings, build_pipeline_config, get_settings
from .database import build_engine, build_session_factory, create_db_and_tables, engine as default_engine
from .exceptions import FileServiceError, file_service_exception_handler, http_exception_handler
from .infrastructure.audit.std_logger import StdAuditLogger
from .infrastructure.rate_limit.memory_rate_limiter import InMemoryRateLimiter
from .infrastructure.rate_limit.redis_rate_limiter import RedisRateLimiter
from .infrastructure.scanning.signature_scanner import SignatureScanner
from .middleware import RateLimitMiddleware, SecurityMiddleware, LoggingMiddleware, ErrorHandlingMiddleware, RequestSizeLimitMiddleware
from .routers import files_router
from .routers.dependencies import build_file_services

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format=settings.LOG_FORMAT
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    s: Settings = app.state.settings
    logger.info(f"Starting {s.APP_NAME}...")
    config = build_pipeline_config(s)
    for directory in (config.upload_root, config.temp_root, config.backup_root):
        os.makedirs(directory, exist_ok=True)

    engine: AsyncEngine = app.state.engine
    app.state.db_init_ok = True
    app.state.db_init_error = None
    try:
        await create_db_and_tables(engine)
        logger.info("Database initialized successfully")
    except Exception as e:
        # Do not crash the app; report via health endpoint
        app.state.db_init_ok = False
        app.state.db_init_error = str(e)
        logger.exception("Database initialization failed")

    session_factory = build_session_factory(engine)
    scanner = SignatureScanner(config.blocked_checksums) if config.policy.scan_for_malware else None
    app.state.pipeline_config = config
    app.state.file_services = build_file_services(config, session_factory, StdAuditLogger(), scanner)
    if s.REDIS_URL:
        logger.info("Using Redis rate limiter")
        app.state.rate_limiter = RedisRateLimiter(s.REDIS_URL)
    else:
        app.state.rate_limiter = InMemoryRateLimiter()

    await app.state.file_services.chunked.cleanup_stale()
    yield
    # Shutdown
    logger.info(f"Shutting down {s.APP_NAME}...")
    await engine.dispose()


def create_app(app_settings: Optional[Settings] = None, engine: Optional[AsyncEngine] = None) -> FastAPI:
    s = app_settings or settings
    app = FastAPI(
        title=s.APP_NAME,
        version=s.APP_VERSION,
        debug=s.DEBUG,
        lifespan=lifespan,
        docs_url=("/docs" if s.DOCS_ENABLED else None),
        redoc_url=("/redoc" if s.DOCS_ENABLED else None),
        openapi_url=("/openapi.json" if s.DOCS_ENABLED else None)
    )
    app.state.settings = s
    if engine is None:
        engine = default_engine if app_settings is None else build_engine(s.DATABASE_URL, echo=s.DEBUG)
    app.state.engine = engine

    # Add custom exception handlers
    app.add_exception_handler(HTTPException, http_exception_handler)
    app.add_exception_handler(FileServiceError, file_service_exception_handler)

    # Add middleware
    app.add_middleware(ErrorHandlingMiddleware)
    app.add_middleware(LoggingMiddleware)
    app.add_middleware(SecurityMiddleware)
    app.add_middleware(RequestSizeLimitMiddleware)
    app.add_middleware(RateLimitMiddleware)

    # GZip compression
    app.add_middleware(GZipMiddleware, minimum_size=s.GZIP_MIN_SIZE)

    # Add CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=s.allowed_origins_list,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.include_router(files_router.router)

    @app.get("/health")
    async def health_check():
        return {
            "status": "healthy" if app.state.db_init_ok else "degraded",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "version": s.APP_VERSION,
            "database": {"ok": app.state.db_init_ok, "error": app.state.db_init_error},
        }

    return app


app = create_app()
