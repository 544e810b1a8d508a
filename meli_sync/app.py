"""Application wiring: builds the component graph and the FastAPI app.

Control flow per notification:
    POST /notifications -> parse_notification -> NotificationWorkerPool
    -> OrderReconciler -> (EnrichmentPipeline -> UpstreamGateway -> CredentialManager)
    -> store -> DownstreamDispatcher
"""

from __future__ import annotations

import logging
import threading
from contextlib import asynccontextmanager
from dataclasses import dataclass

from fastapi import FastAPI

from meli_sync.auth.credentials import CredentialManager, RedisRefreshLock
from meli_sync.config import Settings, get_settings
from meli_sync.gateway.marketplace import UpstreamGateway
from meli_sync.gateway.process import BusinessProcessClient
from meli_sync.gateway.spreadsheet import SpreadsheetWebhook
from meli_sync.reconcile.backoff import CancellableBackoff
from meli_sync.reconcile.dispatcher import DownstreamDispatcher
from meli_sync.reconcile.drift import ItemDriftDetector
from meli_sync.reconcile.enrichment import EnrichmentPipeline
from meli_sync.reconcile.reconciler import OrderReconciler
from meli_sync.store import OrderStore, build_store
from meli_sync.webhooks.handlers import register_notification_routes
from meli_sync.webhooks.worker import NotificationWorkerPool

logger = logging.getLogger(__name__)


@dataclass
class Services:
    """Long-lived components shared by all workers."""

    settings: Settings
    store: OrderStore
    credentials: CredentialManager
    gateway: UpstreamGateway
    dispatcher: DownstreamDispatcher
    reconciler: OrderReconciler
    worker_pool: NotificationWorkerPool


def build_services(settings: Settings, store: OrderStore | None = None) -> Services:
    cancel_event = threading.Event()
    store = store if store is not None else build_store(settings.database_url)

    refresh_lock = None
    if settings.redis_url:
        refresh_lock = RedisRefreshLock(settings.redis_url, settings.refresh_lock_timeout_seconds)

    credentials = CredentialManager(store, settings, refresh_lock=refresh_lock)
    gateway = UpstreamGateway(credentials, settings)
    enrichment = EnrichmentPipeline(
        gateway,
        settings,
        CancellableBackoff(
            attempts=settings.fee_retry_attempts,
            delay_seconds=settings.fee_retry_delay_seconds,
            cancel_event=cancel_event,
        ),
    )
    dispatcher = DownstreamDispatcher(
        store,
        gateway,
        BusinessProcessClient(settings),
        SpreadsheetWebhook(settings),
        settings,
    )
    reconciler = OrderReconciler(
        store,
        gateway,
        enrichment,
        dispatcher,
        ItemDriftDetector(store, gateway),
    )
    pool = NotificationWorkerPool(reconciler.handle, settings.worker_count, cancel_event)
    return Services(
        settings=settings,
        store=store,
        credentials=credentials,
        gateway=gateway,
        dispatcher=dispatcher,
        reconciler=reconciler,
        worker_pool=pool,
    )


def create_app(settings: Settings | None = None, services: Services | None = None) -> FastAPI:
    """FastAPI app with the notification routes and a draining shutdown."""
    settings = settings or get_settings()
    services = services or build_services(settings)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        logger.info("meli-sync started with %d workers", services.worker_pool.worker_count)
        yield
        services.worker_pool.shutdown(wait=True)
        logger.info("meli-sync stopped")

    app = FastAPI(title="meli-sync", lifespan=lifespan)
    app.state.services = services
    app.state.worker_pool = services.worker_pool
    register_notification_routes(app)
    return app


def main() -> None:
    import uvicorn

    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
