# FastAPI entrypoint for the receipt storage gateway

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Callable, Optional

import uvicorn
from fastapi import APIRouter, Depends, FastAPI
from fastapi.middleware.cors import CORSMiddleware
from loguru import logger
from starlette.middleware.gzip import GZipMiddleware

from apps.api.config import GatewayConfig
from apps.api.log_setup import configure_logging
from apps.api.middleware import (
    AccessLogMiddleware,
    SecurityHeadersMiddleware,
    UploadSizeLimitMiddleware,
)
from backup.reconciler import BackupReconciler
from backup.scheduler import BackupScheduler
from receipts.receipt_routes import router as receipt_router
from security.auth.api_keys import APIKeyGate
from storage.context import StorageContext
from storage.errors import ContainerEnsureFailed
from storage.object_store.access import AccessIssuer
from storage.object_store.buckets import ObjectStore


# ==================== SERVICE WIRING ====================

def wire_services(
    app: FastAPI,
    context: StorageContext,
    config: GatewayConfig,
    clock: Optional[Callable[[], datetime]] = None,
) -> None:
    """Build the storage services once and attach them to app.state."""
    store = ObjectStore(context, clock=clock)
    issuer = AccessIssuer(context, clock=clock)
    reconciler = BackupReconciler(store, issuer)

    app.state.storage_context = context
    app.state.object_store = store
    app.state.access_issuer = issuer
    app.state.backup_scheduler = BackupScheduler(
        reconciler,
        interval_seconds=config.backup_interval_seconds,
        offset_seconds=config.backup_offset_seconds,
        sweep_orphans=config.backup_sweep_orphans,
    )
    app.state.max_upload_bytes = config.max_upload_bytes


# ==================== LIFECYCLE ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    config: GatewayConfig = app.state.config

    if getattr(app.state, "storage_context", None) is None:
        wire_services(app, StorageContext.from_config(), config)
    context: StorageContext = app.state.storage_context
    scheduler: BackupScheduler = app.state.backup_scheduler

    if config.bootstrap_storage:
        try:
            await context.ensure_containers()
            logger.info("✓ Containers ready")
        except ContainerEnsureFailed as e:
            logger.error(f"❌ Startup error: {e}")
            await context.close()
            raise
        await context.ensure_permanent_policy()

    if config.backup_enabled:
        scheduler.start()

    logger.info(f"Storage Service listening on :{config.port}")
    try:
        yield
    finally:
        if scheduler.running:
            await scheduler.stop()
        await context.close()


# ==================== APP FACTORY ====================

def create_app(
    context: Optional[StorageContext] = None,
    config: Optional[GatewayConfig] = None,
    gate: Optional[APIKeyGate] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> FastAPI:
    config = config or GatewayConfig()
    gate = gate or APIKeyGate(config.api_keys)

    app = FastAPI(
        title="Receipt Storage Gateway",
        description="Stores PDF receipts in Azure Blob Storage, issues SAS URLs and backs them up",
        version="1.0.0",
        lifespan=lifespan,
    )
    app.state.config = config
    app.state.api_key_gate = gate
    if context is not None:
        wire_services(app, context, config, clock=clock)

    # ==================== MIDDLEWARE ====================

    app.add_middleware(UploadSizeLimitMiddleware)
    app.add_middleware(AccessLogMiddleware)
    app.add_middleware(GZipMiddleware, minimum_size=1000)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allow_origins or ["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Accept", "Origin", "x-api-key"],
        expose_headers=["Content-Disposition", "Content-Type", "Content-Length"],
        max_age=86400,
    )

    # ==================== ROUTES ====================

    @app.get("/health")
    async def health_check():
        """Unauthenticated liveness probe."""
        return {"ok": True}

    api_router = APIRouter(prefix="/api", dependencies=[Depends(gate)])
    api_router.include_router(receipt_router)
    app.include_router(api_router)     # /api/receipts

    return app


def main():
    config = GatewayConfig()
    configure_logging(config.log_level, config.log_json)
    uvicorn.run(create_app(config=config), host=config.host, port=config.port)


if __name__ == "__main__":
    main()
