from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from contextlib import asynccontextmanager
import os
import logging
import traceback

from prunarr import __version__
from prunarr.api.routers import health, config, media, rules, pending_deletions, history
from prunarr.api.db.database import init_db, close_db
from prunarr.api.integrations import IntegrationResolver
from prunarr.api.notifications import NotificationService
from prunarr.api.services.config_service import ConfigService
from prunarr.api.services.history import HistoryRecorder
from prunarr.api.services.lifecycle import LifecycleManager
from prunarr.api.services.media_catalog import MediaCatalog
from prunarr.api.services.nats_service import NATSService
from prunarr.api.services.pending_store import PendingStore
from prunarr.api.services.rule_evaluator import RuleEvaluator
from prunarr.api.services.rule_store import RuleStore
from prunarr.exceptions import PrunarrError
from prunarr.worker.deletion_executor import DeletionExecutor
from prunarr.worker.deletion_scheduler import DeletionScheduler
from prunarr.worker.rule_scheduler import RuleScheduler
from prunarr.worker.rules.engine import RulesEngine

# Configure logging
log_level = os.getenv("LOG_LEVEL", "INFO").upper()
logging.basicConfig(
    level=getattr(logging, log_level, logging.INFO),
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Set uvicorn access logger to WARNING to reduce noise
logging.getLogger("uvicorn.access").setLevel(logging.WARNING)

# Lifespan context manager
@asynccontextmanager
async def lifespan(app: FastAPI):
    # Startup
    logger.info("Starting Prunarr API...")

    # Initialize configuration
    logger.info("Initializing configuration...")
    config_service = ConfigService()
    config = await config_service.load_config()
    app.state.config = config_service
    logger.info("Configuration initialized")

    # Initialize database
    logger.info("Initializing database...")
    await init_db()
    logger.info("Database initialized")

    # Initialize NATS (optional event bus)
    logger.info("Initializing NATS...")
    nats_service = NATSService()
    try:
        await nats_service.connect()
    except Exception as e:
        logger.error(f"NATS unavailable, continuing without event publishing: {e}")
    app.state.nats = nats_service

    # Initialize notifications
    notification_service = NotificationService()
    await notification_service.initialize(config.notifications)
    app.state.notifications = notification_service

    # Deletion workflow services
    pending_store = PendingStore()
    rule_store = RuleStore()
    app.state.media_catalog = MediaCatalog()
    app.state.rule_store = rule_store
    app.state.pending_store = pending_store
    app.state.lifecycle = LifecycleManager(pending_store)
    app.state.history = HistoryRecorder()
    app.state.rule_evaluator = RuleEvaluator(
        catalog=app.state.media_catalog,
        rules=rule_store,
        pending=pending_store,
        engine=RulesEngine(),
        nats_service=nats_service,
        notification_service=notification_service,
    )
    app.state.deletion_executor = DeletionExecutor(
        config_service,
        lifecycle=app.state.lifecycle,
        pending=pending_store,
        history=app.state.history,
        resolver=IntegrationResolver(config_service),
        nats_service=nats_service,
        notification_service=notification_service,
    )

    # Schedulers
    app.state.deletion_scheduler = DeletionScheduler(
        app.state.deletion_executor, config_service, notification_service
    )
    if config.auto_start_executor:
        await app.state.deletion_scheduler.start()

    app.state.rule_scheduler = RuleScheduler(app.state.rule_evaluator, config.rule_check_interval_sec)
    if config.rule_scheduler_enabled:
        await app.state.rule_scheduler.start()

    logger.info("Prunarr API started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Prunarr API...")

    await app.state.rule_scheduler.stop()
    await app.state.deletion_scheduler.stop()

    # Close NATS connection
    await app.state.nats.disconnect()

    # Close database
    await close_db()

    logger.info("Prunarr API shutdown complete")

# Create FastAPI app
app = FastAPI(
    title="Prunarr API",
    description="Rule-based cleanup of media libraries",
    version=__version__,
    lifespan=lifespan
)

# Ensure "no slash" and "slash" both resolve cleanly
app.router.redirect_slashes = True

# Configure CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "http://localhost:3000").split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

@app.exception_handler(PrunarrError)
async def domain_exception_handler(request: Request, exc: PrunarrError):
    """Map domain errors to their HTTP status"""
    if exc.status_code >= 500:
        logger.error(f"{type(exc).__name__} on {request.method} {request.url.path}: {exc}")
    content = {"detail": str(exc), "error_type": type(exc).__name__}
    current_status = getattr(exc, "current_status", None)
    if current_status:
        content["current_status"] = current_status
    return JSONResponse(status_code=exc.status_code, content=content)

# Add exception handler middleware
@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler to log all unhandled errors"""
    logger.error(f"Unhandled exception on {request.method} {request.url.path}: {str(exc)}")
    logger.error(f"Traceback: {traceback.format_exc()}")

    # Return a proper error response
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error: {str(exc)}"}
    )

# Include API routers
app.include_router(health.router, prefix="/health", tags=["health"])
app.include_router(config.router, prefix="/api/config", tags=["config"])
app.include_router(media.router, prefix="/api/media", tags=["media"])
app.include_router(rules.router, prefix="/api/rules", tags=["rules"])
app.include_router(pending_deletions.router, prefix="/api/pending-deletions", tags=["pending-deletions"])
app.include_router(history.router, prefix="/api/history", tags=["history"])


def run():
    """Console entry point"""
    import uvicorn
    from prunarr.api.utils.logging_config import setup_logging

    setup_logging("prunarr-api")
    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=int(os.getenv("PORT", "7878")),
        log_config=None,
    )


if __name__ == "__main__":
    run()
