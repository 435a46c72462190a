# urlguard/main.py
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import argparse
import asyncio
import logging
import time
from typing import Optional

from .config import Settings, get_settings
from .errors import LoadError
from .routes import admin, check
from .services.classification_service import ClassificationService
from .services.dataset_store import DatasetStore

logger = logging.getLogger(__name__)

VERSION = "1.0.0"


def configure_logging(level: str = "INFO"):
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


async def refresh_dataset_periodically(store: DatasetStore, interval: float):
    """Pick up edits to the dataset file without blocking request handling"""
    while True:
        await asyncio.sleep(interval)
        try:
            await asyncio.to_thread(store.reload_if_changed)
        except LoadError as e:
            logger.error(f"Background reload failed, still serving version "
                         f"{store.snapshot().version}: {e}")
        except Exception as e:
            logger.error(f"Unexpected error in background reload: {e}", exc_info=True)


# ============================================================================
# APP LIFECYCLE
# ============================================================================

def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or get_settings()

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("🚀 URLGuard API starting up...")

        store = DatasetStore(settings.dataset_path)
        try:
            # No dataset means nothing to serve: let startup fail
            await asyncio.to_thread(store.reload)
        except LoadError as e:
            logger.error(f"❌ Startup failed, dataset could not be loaded: {e}")
            raise

        app.state.store = store
        app.state.classifier = ClassificationService(store)
        logger.info(f"✅ Dataset ready: {store.get_stats()['entries']} entries "
                    f"from {settings.dataset_path}")

        refresher = None
        if settings.reload_interval > 0:
            refresher = asyncio.create_task(
                refresh_dataset_periodically(store, settings.reload_interval)
            )
            logger.info(f"✅ Dataset file watched every {settings.reload_interval:.0f}s")

        yield

        logger.info("👋 URLGuard API shutting down...")
        if refresher is not None:
            refresher.cancel()
            try:
                await refresher
            except asyncio.CancelledError:
                pass

    app = FastAPI(
        title="URLGuard API",
        description="Checks URLs against a locally maintained dataset of harmful and safe sites",
        version=VERSION,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )
    app.state.settings = settings

    # Browser extensions call the API from their own origins
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["GET", "POST", "DELETE", "OPTIONS"],
        allow_headers=["*"],
    )

    # ========================================================================
    # REQUEST LOGGING MIDDLEWARE
    # ========================================================================

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        """Log all requests with timing"""
        start_time = time.time()
        response = await call_next(request)
        process_time = time.time() - start_time
        logger.info(f"{request.method} {request.url.path} -> "
                    f"{response.status_code} in {process_time:.3f}s")
        return response

    # ========================================================================
    # ROUTES
    # ========================================================================

    app.include_router(check.router, prefix="/api", tags=["check"])
    app.include_router(admin.router, prefix="/api")
    app.include_router(check.legacy_router, tags=["legacy"])

    @app.get("/")
    async def root():
        """Service information"""
        return {
            "service": "URLGuard API",
            "version": VERSION,
            "status": "healthy",
            "endpoints": {
                "check": "/api/check?url=<url>",
                "legacy_check": "/checking?url=<url>",
                "stats": "/api/admin/stats",
                "reload": "/api/admin/reload",
                "entries": "/api/admin/entries",
                "persist": "/api/admin/persist",
            }
        }

    @app.get("/health")
    async def health():
        """Simple health check"""
        return {"status": "ok"}

    # ========================================================================
    # ERROR HANDLERS
    # ========================================================================

    @app.exception_handler(Exception)
    async def global_exception_handler(request: Request, exc: Exception):
        """Catch-all exception handler"""
        logger.error(f"Unhandled exception: {exc}", exc_info=True)
        return JSONResponse(
            status_code=500,
            content={
                "error": "Internal server error",
                "detail": str(exc) if settings.debug else "An error occurred"
            }
        )

    return app


settings = get_settings()
configure_logging(settings.log_level)
app = create_app(settings)


# ============================================================================
# DEVELOPMENT SERVER
# ============================================================================

def parse_args(settings: Settings) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="URLGuard harmful URL lookup service")
    parser.add_argument("--host", default=settings.host,
                        help=f"IP address to listen on (default: {settings.host})")
    parser.add_argument("--port", type=int, default=settings.port,
                        help=f"Port to listen on (default: {settings.port})")
    parser.add_argument("--dataset", default=settings.dataset_path,
                        help=f"Path to the JSON dataset (default: {settings.dataset_path})")
    parser.add_argument("--reload-interval", type=float, default=settings.reload_interval,
                        help="Seconds between dataset file checks, 0 to disable")
    return parser.parse_args()


def main():
    import uvicorn

    settings = get_settings()
    args = parse_args(settings)
    settings.host = args.host
    settings.port = args.port
    settings.dataset_path = args.dataset
    settings.reload_interval = args.reload_interval

    logger.info(f"Listening on http://{settings.host}:{settings.port}")

    uvicorn.run(
        create_app(settings),
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
