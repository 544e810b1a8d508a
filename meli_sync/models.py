"""Domain records: orders, marketplace credentials and tracked products.

OrderRecord is the durable local copy of a marketplace sale. It is created
once per ``sale_number`` and afterwards only its lifecycle fields move.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, fields
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderState(str, Enum):
    """Local order lifecycle state."""

    UNKNOWN = "unknown"
    PENDING = "pending"
    PAID = "paid"
    CANCELLED = "cancelled"
    OTHER = "other"

    @property
    def is_terminal(self) -> bool:
        return self in (OrderState.CANCELLED, OrderState.OTHER)


# Marketplace order statuses that mean "not paid yet, but still alive"
_PENDING_STATUSES = {
    "pending",
    "confirmed",
    "payment_required",
    "payment_in_process",
    "partially_paid",
}


def state_from_upstream(status: str | None) -> OrderState:
    """Map a marketplace order status onto the local state enum.

    A missing status is UNKNOWN (ambiguous); anything unrecognized is OTHER.
    """
    if not status:
        return OrderState.UNKNOWN
    status = status.strip().lower()
    if status == "paid":
        return OrderState.PAID
    if status == "cancelled":
        return OrderState.CANCELLED
    if status in _PENDING_STATUSES:
        return OrderState.PENDING
    return OrderState.OTHER


@dataclass
class OrderRecord:
    """A reconciled marketplace sale."""

    sale_number: str
    order_state: OrderState = OrderState.UNKNOWN
    process_correlation_id: str | None = None
    sale_type: str = "ML"

    # Commercial
    item_id: str | None = None
    pack_id: str | None = None
    seller_id: str | None = None
    buyer_id: str | None = None
    product_name: str | None = None
    sku: str | None = None
    quantity: int = 1
    sale_price: Decimal | None = None
    marketplace_net: Decimal | None = None  # saldo_mercadolibre
    marketplace_fee: Decimal | None = None  # comision_ml
    marketplace_coupon: Decimal | None = None  # aporte_ml
    shipping_cost: Decimal | None = None
    taxes: Decimal | None = None
    sold_at: datetime | None = None
    delivery_estimate: datetime | None = None
    marketplace_link: str | None = None
    external_link: str | None = None

    # Buyer
    buyer_tax_id: str | None = None
    recipient_name: str | None = None
    address: str | None = None
    city: str | None = None
    province: str | None = None
    postal_code: str | None = None

    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["order_state"] = self.order_state.value
        return d

    @staticmethod
    def from_dict(d: dict[str, Any]) -> OrderRecord:
        known = {f.name for f in fields(OrderRecord)}
        data = {k: v for k, v in d.items() if k in known}
        if "order_state" in data:
            data["order_state"] = OrderState(data["order_state"] or OrderState.UNKNOWN.value)
        return OrderRecord(**data)


@dataclass(frozen=True)
class Credential:
    """One issued access/refresh token pair. Rows are append-only."""

    access_token: str
    refresh_token: str
    expires_at: datetime
    issued_at: datetime = field(default_factory=utcnow)

    def is_expired(self, now: datetime | None = None, leeway_seconds: int = 0) -> bool:
        if now is None:
            now = utcnow()
        return now.timestamp() + leeway_seconds >= self.expires_at.timestamp()


@dataclass
class ProductRecord:
    """Locally tracked listing, keyed by marketplace publication id."""

    publication_id: str
    price: Decimal | None = None
    stock: int | None = None
    status: str | None = None
    title: str | None = None
    sku: str | None = None
    last_updated: datetime | None = None


@dataclass(frozen=True)
class ItemSnapshot:
    """The monitored fields of an upstream listing."""

    publication_id: str
    price: Decimal | None
    stock: int | None
    status: str | None

    @staticmethod
    def from_payload(payload: dict[str, Any]) -> ItemSnapshot:
        price = payload.get("price")
        stock = payload.get("available_quantity")
        return ItemSnapshot(
            publication_id=str(payload.get("id", "")),
            price=Decimal(str(price)) if price is not None else None,
            stock=int(stock) if stock is not None else None,
            status=payload.get("status"),
        )
