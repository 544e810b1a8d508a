"""Order reconciler: one notification in, at most one local transition out.

For each ``orders_v2`` notification:
1. Serialize on the sale number (KeyedLock)
2. Read the local record; terminal records short-circuit without an API call
3. Fetch the order and map its status to OrderState
4. Look up the action in the transition table
5. Commit the local change, then fan out through the DownstreamDispatcher

A create that loses the unique-key race is reported as IGNORE: someone else
already recorded the order. ``items`` notifications go to the drift detector
under their own lock namespace.
"""

from __future__ import annotations

import logging

from meli_sync.gateway.marketplace import UpstreamGateway
from meli_sync.models import state_from_upstream
from meli_sync.reconcile.dispatcher import DownstreamDispatcher
from meli_sync.reconcile.drift import ItemDriftDetector
from meli_sync.reconcile.enrichment import EnrichmentPipeline
from meli_sync.reconcile.locks import KeyedLock
from meli_sync.reconcile.state_machine import Action, decide
from meli_sync.store.protocol import OrderStore
from meli_sync.webhooks.notifications import TOPIC_ITEMS, TOPIC_ORDERS, Notification

logger = logging.getLogger(__name__)


class OrderReconciler:
    """Applies the order state machine to incoming notifications."""

    def __init__(
        self,
        store: OrderStore,
        gateway: UpstreamGateway,
        enrichment: EnrichmentPipeline,
        dispatcher: DownstreamDispatcher,
        drift: ItemDriftDetector,
        locks: KeyedLock | None = None,
    ):
        self._store = store
        self._gateway = gateway
        self._enrichment = enrichment
        self._dispatcher = dispatcher
        self._drift = drift
        self._locks = locks or KeyedLock()

    def handle(self, notification: Notification) -> str:
        """Route a validated notification. Returns the outcome label."""
        if notification.topic == TOPIC_ORDERS:
            return self.reconcile_order(notification.resource_id).value
        if notification.topic == TOPIC_ITEMS:
            with self._locks.hold(f"item:{notification.resource_id}"):
                changes = self._drift.check(notification.resource_id)
            return "item_updated" if changes else "item_unchanged"
        return Action.IGNORE.value

    def reconcile_order(self, order_id: str) -> Action:
        with self._locks.hold(f"order:{order_id}"):
            return self._reconcile_locked(order_id)

    def _reconcile_locked(self, order_id: str) -> Action:
        existing = self._store.get_order(order_id)
        if existing is not None and existing.order_state.is_terminal:
            logger.info("Order %s is %s (terminal), ignoring", order_id, existing.order_state.value)
            return Action.IGNORE

        order = self._gateway.fetch_order(order_id)
        upstream = state_from_upstream(order.get("status"))
        current = existing.order_state if existing else None
        action = decide(current, upstream)
        logger.info(
            "Order %s: local=%s upstream=%s -> %s",
            order_id,
            current.value if current else "absent",
            upstream.value,
            action.value,
        )

        if action is Action.IGNORE:
            return action

        if action is Action.CREATE:
            record = self._enrichment.enrich(order_id, order)
            if not self._store.create_order(record):
                logger.info("Order %s was created concurrently, skipping dispatch", order_id)
                return Action.IGNORE
            logger.info("Order %s saved as paid", order_id)
            self._dispatcher.dispatch_new(record)
            return action

        # UPDATE / CANCEL on an existing record
        if not self._store.update_order_state(order_id, upstream):
            logger.info("Order %s changed concurrently, state not updated", order_id)
            return Action.IGNORE
        existing.order_state = upstream
        self._dispatcher.notify_state_change(existing, upstream)
        if action is Action.CANCEL:
            self._dispatcher.dispatch_cancellation(existing)
        return action
