"""
FastAPI application factory and entry point.

This module creates and configures the FastAPI application:
  1. Lifespan manager — logging, table creation, and the long-lived
     services (point-of-sale client, mirror, reconciler, notifications,
     background task queue)
  2. CORS middleware — allows frontend origins to make cross-origin requests
  3. Exception handlers — maps domain errors to HTTP responses
  4. Router registration — mounts all API endpoint groups

Running locally:
    uvicorn brewledger.main:app --reload
"""

from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from brewledger import models  # noqa: F401
from brewledger.config import PosPlatformConfig, settings
from brewledger.database import engine, Base
from brewledger.exceptions import register_exception_handlers
from brewledger.logging import configure_logging, get_logger
from brewledger.routers import admin, auth, credit_transfers, credits, orders, sync, users, webhooks
from brewledger.services.mirror_service import OrderMirror
from brewledger.services.notification_service import NotificationService
from brewledger.services.pos_client import PosClient
from brewledger.services.reconciler_service import OrderReconciler
from brewledger.services.task_queue import TaskQueue

logger = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Application lifespan manager.

    Startup:
      Configures logging, creates tables if they don't exist, and builds
      the point-of-sale configuration ONCE. The config is handed to the
      client, mirror and reconciler; none of them read settings directly.

    Shutdown:
      Stops the task queue (pending mirror jobs are dropped; the admin
      sync endpoint can re-run them) and disposes of the engine.
    """
    # --- Startup ---
    configure_logging()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    pos_config = PosPlatformConfig.from_settings(settings)
    if not pos_config.is_configured:
        logger.warning("Point-of-sale platform not configured; orders will not be mirrored")

    task_queue = TaskQueue()
    notifier = NotificationService(task_queue=task_queue)
    pos_client = PosClient(pos_config)

    app.state.pos_config = pos_config
    app.state.notifier = notifier
    app.state.mirror = OrderMirror(pos_client, pos_config)
    app.state.reconciler = OrderReconciler(pos_client, pos_config, notifier)
    app.state.task_queue = task_queue

    task_queue.start()
    logger.info("%s %s started", settings.APP_NAME, settings.APP_VERSION)
    yield
    # --- Shutdown ---
    await task_queue.stop()
    await engine.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    version=settings.APP_VERSION,
    description="Coffee-shop credit ledger, orders and point-of-sale sync",
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware
# ---------------------------------------------------------------------------

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ---------------------------------------------------------------------------
# Exception handlers
# ---------------------------------------------------------------------------

register_exception_handlers(app)

# ---------------------------------------------------------------------------
# Routers
# ---------------------------------------------------------------------------

app.include_router(auth.router, prefix="/auth", tags=["Auth"])
app.include_router(users.router, prefix="/users", tags=["Users"])
app.include_router(credits.router, prefix="/credits", tags=["Credits"])
app.include_router(orders.router, prefix="/orders", tags=["Orders"])
app.include_router(credit_transfers.router, prefix="/credit-transfers", tags=["Credit Transfers"])
app.include_router(webhooks.router, prefix="/webhooks", tags=["Webhooks"])
app.include_router(sync.router, prefix="/sync", tags=["Sync"])
app.include_router(admin.router, prefix="/admin", tags=["Admin"])


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

@app.get("/health", tags=["Health"])
async def health_check():
    """Health check endpoint for the deployment platform."""
    return {"status": "ok", "version": settings.APP_VERSION}
