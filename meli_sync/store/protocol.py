"""Store protocol shared by the Postgres and in-memory implementations.

Write methods return whether a row actually changed, so callers can tell a
lost race (someone else already created the order, someone else already set
the correlation id) from a real write.
"""

from __future__ import annotations

from typing import Any, Protocol, runtime_checkable

from meli_sync.models import Credential, OrderRecord, OrderState, ProductRecord


@runtime_checkable
class OrderStore(Protocol):
    """Durable state for the reconciler."""

    def get_order(self, sale_number: str) -> OrderRecord | None:
        ...

    def create_order(self, record: OrderRecord) -> bool:
        """Insert a new order. False if ``sale_number`` already exists."""
        ...

    def update_order_state(self, sale_number: str, state: OrderState) -> bool:
        """Move an order to ``state``. False if missing or already terminal."""
        ...

    def set_correlation_id(self, sale_number: str, correlation_id: str) -> bool:
        """Set the correlation id once. False if already set or the order is terminal."""
        ...

    def latest_credential(self) -> Credential | None:
        ...

    def add_credential(self, credential: Credential) -> None:
        ...

    def get_product(self, publication_id: str) -> ProductRecord | None:
        ...

    def update_product(self, publication_id: str, changes: dict[str, Any]) -> None:
        ...
