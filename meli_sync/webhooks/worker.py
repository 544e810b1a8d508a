"""Background worker pool for notification processing.

The HTTP handler only validates and submits; reconciliation happens here on a
ThreadPoolExecutor. Every error is caught and logged with the notification and
the stage that aborted it, so one bad notification never takes a worker down.
The marketplace redelivers, so aborted work is not requeued.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable

from meli_sync.errors import AuthError, RetryCancelled, UpstreamError, ValidationError
from meli_sync.webhooks.notifications import Notification

logger = logging.getLogger(__name__)


def log_outcome(notification: Notification, status: str) -> None:
    """Audit log line for every processed notification."""
    logger.info(
        "NOTIFICATION_AUDIT topic=%s resource=%s attempts=%d status=%s",
        notification.topic,
        notification.resource,
        notification.attempts,
        status,
    )


class NotificationWorkerPool:
    """Runs a notification handler on parallel worker threads.

    Args:
        handler: Processes one notification, returns an outcome label.
        worker_count: Number of threads.
        cancel_event: Shared with the fee backoff; set on shutdown.
    """

    def __init__(
        self,
        handler: Callable[[Notification], str],
        worker_count: int = 4,
        cancel_event: threading.Event | None = None,
    ):
        self._handler = handler
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, worker_count),
            thread_name_prefix="meli-sync-worker",
        )
        self.worker_count = max(1, worker_count)
        self.cancel_event = cancel_event or threading.Event()
        self._pending = 0
        self._pending_lock = threading.Lock()

    @property
    def pending(self) -> int:
        with self._pending_lock:
            return self._pending

    def submit(self, notification: Notification) -> Future:
        """Queue a notification. Never blocks on upstream work."""
        with self._pending_lock:
            self._pending += 1
        try:
            future = self._executor.submit(self._run, notification)
        except RuntimeError:
            with self._pending_lock:
                self._pending -= 1
            raise
        future.add_done_callback(self._done)
        return future

    def _done(self, _future: Future) -> None:
        with self._pending_lock:
            self._pending -= 1

    def _run(self, notification: Notification) -> str:
        try:
            status = self._handler(notification)
        except AuthError as e:
            logger.error("Aborted %s stage=auth: %s", notification.resource, e)
            status = "auth_failed"
        except UpstreamError as e:
            logger.error(
                "Aborted %s stage=%s status=%s: %s",
                notification.resource,
                e.resource,
                e.status_code,
                e.body[:200],
            )
            status = "upstream_failed"
        except RetryCancelled:
            logger.warning("Aborted %s stage=fee: shutdown during retry", notification.resource)
            status = "cancelled"
        except ValidationError as e:
            logger.info("Dropped %s: %s", notification.resource, e)
            status = "invalid"
        except Exception:
            logger.exception("Unexpected failure processing %s", notification.resource)
            status = "error"

        log_outcome(notification, status)
        return status

    def shutdown(self, wait: bool = True) -> None:
        """Interrupt in-flight retries, drop queued work, wait for running workers."""
        logger.info("Shutting down worker pool (pending=%d)", self.pending)
        self.cancel_event.set()
        self._executor.shutdown(wait=wait, cancel_futures=True)
