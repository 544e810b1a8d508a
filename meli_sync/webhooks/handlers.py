"""Notification HTTP handlers: FastAPI routes for the marketplace callback.

Each request:
1. Reads the JSON body
2. Validates topic and resource
3. Submits to the worker pool
4. Returns 200 immediately

The marketplace penalizes non-200 answers and redelivers on its own, so
malformed JSON, unsupported topics and submission failures all still get 200.
Nothing about processing outcomes is returned to the caller.
"""

from __future__ import annotations

import json
import logging
import time

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from meli_sync.errors import ValidationError
from meli_sync.webhooks.notifications import parse_notification
from meli_sync.webhooks.worker import NotificationWorkerPool

logger = logging.getLogger(__name__)

_RECEIVED = {"status": "received"}

# Receive counters by status, for /health
_notification_counts: dict[str, int] = {}


def _count(status: str) -> None:
    _notification_counts[status] = _notification_counts.get(status, 0) + 1


async def _handle_notification(request: Request) -> JSONResponse:
    start = time.time()
    body = await request.body()

    try:
        payload = json.loads(body)
    except (json.JSONDecodeError, UnicodeDecodeError):
        logger.info("Notification with invalid JSON dropped")
        _count("invalid_json")
        return JSONResponse(_RECEIVED, status_code=200)

    try:
        notification = parse_notification(payload)
    except ValidationError as e:
        logger.info("Notification ignored: %s", e)
        _count("ignored")
        return JSONResponse(_RECEIVED, status_code=200)

    pool: NotificationWorkerPool = request.app.state.worker_pool
    try:
        pool.submit(notification)
        _count("queued")
    except RuntimeError:
        # Executor already shut down
        logger.warning("Worker pool unavailable, dropping %s", notification.resource)
        _count("dropped")

    elapsed_ms = (time.time() - start) * 1000
    logger.debug("Notification %s accepted in %.1fms", notification.resource, elapsed_ms)
    return JSONResponse(_RECEIVED, status_code=200)


def register_notification_routes(app: FastAPI) -> None:
    """Register the callback and health routes.

    Expects ``app.state.worker_pool`` to be set before requests arrive.
    """

    @app.post("/notifications")
    async def marketplace_notification(request: Request):
        """Receive marketplace notifications."""
        return await _handle_notification(request)

    @app.post("/")
    async def marketplace_notification_root(request: Request):
        """Same as /notifications, for callbacks registered on the site root."""
        return await _handle_notification(request)

    @app.get("/health")
    async def health(request: Request):
        pool: NotificationWorkerPool | None = getattr(request.app.state, "worker_pool", None)
        return {
            "status": "ok",
            "workers": pool.worker_count if pool else 0,
            "pending": pool.pending if pool else 0,
            "counts": dict(_notification_counts),
        }

    logger.info("Notification routes registered: /notifications, /")
