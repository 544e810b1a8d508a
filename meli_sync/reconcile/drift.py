"""Item drift detection for ``items`` notifications.

Compares the monitored listing fields (price, stock, status) of the tracked
product against a fresh upstream snapshot and writes only what changed.
Independent of the order state machine: it shares no records or locks with it.
"""

from __future__ import annotations

import logging
from typing import Any

from meli_sync.gateway.marketplace import UpstreamGateway
from meli_sync.models import ItemSnapshot, ProductRecord, utcnow
from meli_sync.store.protocol import OrderStore

logger = logging.getLogger(__name__)


def diff_product(product: ProductRecord, snapshot: ItemSnapshot) -> dict[str, Any]:
    """Changed monitored fields, as ``{field: new_value}``."""
    changes: dict[str, Any] = {}
    if product.price != snapshot.price:
        changes["price"] = snapshot.price
    if product.stock != snapshot.stock:
        changes["stock"] = snapshot.stock
    if product.status != snapshot.status:
        changes["status"] = snapshot.status
    return changes


class ItemDriftDetector:
    """Keeps locally tracked products in line with their listings."""

    def __init__(self, store: OrderStore, gateway: UpstreamGateway):
        self._store = store
        self._gateway = gateway

    def check(self, item_id: str) -> dict[str, Any]:
        """Fetch, compare and persist drift. Returns the written changes.

        Untracked items and unchanged items produce no write.
        """
        snapshot = ItemSnapshot.from_payload(self._gateway.fetch_item(item_id))
        publication_id = snapshot.publication_id or item_id

        product = self._store.get_product(publication_id)
        if product is None:
            logger.info("Item %s not tracked locally", publication_id)
            return {}

        changes = diff_product(product, snapshot)
        if not changes:
            logger.info("Item %s unchanged in monitored fields", publication_id)
            return {}

        changes["last_updated"] = utcnow()
        self._store.update_product(publication_id, changes)
        logger.info("Item %s updated: %s", publication_id, sorted(changes))
        return changes
