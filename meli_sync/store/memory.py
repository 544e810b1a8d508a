"""In-memory store with the same semantics as the Postgres store.

Used by the test suite and for local runs without a database. A single lock
guards all tables; records are copied on the way in and out so callers never
hold a reference into the store.
"""

from __future__ import annotations

import logging
import threading
from dataclasses import replace
from typing import Any

from meli_sync.models import Credential, OrderRecord, OrderState, ProductRecord, utcnow

logger = logging.getLogger(__name__)


class InMemoryStore:
    """Thread-safe dict-backed store."""

    def __init__(self):
        self._lock = threading.Lock()
        self._orders: dict[str, OrderRecord] = {}
        self._credentials: list[Credential] = []
        self._products: dict[str, ProductRecord] = {}
        self.writes = 0

    # ── Orders ──────────────────────────────────────────────────────────

    def get_order(self, sale_number: str) -> OrderRecord | None:
        with self._lock:
            record = self._orders.get(sale_number)
            return replace(record) if record else None

    def create_order(self, record: OrderRecord) -> bool:
        with self._lock:
            if record.sale_number in self._orders:
                return False
            self._orders[record.sale_number] = replace(record)
            self.writes += 1
            return True

    def update_order_state(self, sale_number: str, state: OrderState) -> bool:
        with self._lock:
            record = self._orders.get(sale_number)
            if record is None or record.order_state.is_terminal:
                return False
            record.order_state = state
            record.updated_at = utcnow()
            self.writes += 1
            return True

    def set_correlation_id(self, sale_number: str, correlation_id: str) -> bool:
        with self._lock:
            record = self._orders.get(sale_number)
            if record is None or record.process_correlation_id or record.order_state.is_terminal:
                return False
            record.process_correlation_id = correlation_id
            record.updated_at = utcnow()
            self.writes += 1
            return True

    def all_orders(self) -> list[OrderRecord]:
        with self._lock:
            return [replace(r) for r in self._orders.values()]

    # ── Credentials ─────────────────────────────────────────────────────

    def latest_credential(self) -> Credential | None:
        with self._lock:
            if not self._credentials:
                return None
            # Ties on issued_at go to the row appended last
            _, latest = max(enumerate(self._credentials), key=lambda p: (p[1].issued_at, p[0]))
            return latest

    def add_credential(self, credential: Credential) -> None:
        with self._lock:
            self._credentials.append(credential)
            self.writes += 1

    def credential_count(self) -> int:
        with self._lock:
            return len(self._credentials)

    # ── Products ────────────────────────────────────────────────────────

    def add_product(self, product: ProductRecord) -> None:
        with self._lock:
            self._products[product.publication_id] = replace(product)

    def get_product(self, publication_id: str) -> ProductRecord | None:
        with self._lock:
            product = self._products.get(publication_id)
            return replace(product) if product else None

    def update_product(self, publication_id: str, changes: dict[str, Any]) -> None:
        with self._lock:
            product = self._products.get(publication_id)
            if product is None:
                logger.warning("update_product: %s not tracked", publication_id)
                return
            self._products[publication_id] = replace(product, **changes)
            self.writes += 1
