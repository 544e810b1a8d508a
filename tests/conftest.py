"""Shared fixtures for the meli-sync test suite."""

from __future__ import annotations

import copy
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any
from unittest.mock import MagicMock

import pytest

from meli_sync.config import Settings
from meli_sync.gateway.marketplace import UpstreamGateway
from meli_sync.models import Credential, OrderRecord, OrderState
from meli_sync.reconcile.backoff import CancellableBackoff
from meli_sync.store.memory import InMemoryStore


ORDER_ID = "555"

ORDER_PAYLOAD: dict[str, Any] = {
    "id": 555,
    "status": "paid",
    "date_closed": "2025-07-01T10:15:00.000-03:00",
    "total_amount": 1200.0,
    "shipping_cost": 0,
    "pack_id": None,
    "seller": {"id": 9001},
    "buyer": {"id": 7001},
    "shipping": {"id": 4400},
    "order_items": [
        {
            "item": {"id": "MLA111", "title": "Auriculares Inalambricos", "seller_sku": "B0TEST1"},
            "quantity": 2,
            "sale_fee": 60.0,
        }
    ],
    "payments": [
        {"id": 3001, "status": "approved", "coupon_amount": 0},
        {"id": 3002, "status": "rejected", "coupon_amount": 0},
    ],
}

BILLING_PAYLOAD: dict[str, Any] = {
    "buyer": {
        "billing_info": {
            "name": "Juana",
            "last_name": "Perez",
            "identification": {"type": "CUIT", "number": "20123456789"},
            "address": {
                "street_name": "Av. Corrientes",
                "street_number": "1234",
                "city_name": "CABA",
                "state": {"name": "Buenos Aires"},
                "zip_code": "1043",
            },
        }
    }
}

PAYMENT_PAYLOAD: dict[str, Any] = {
    "id": 3001,
    "status": "approved",
    "transaction_details": {"net_received_amount": 900.0},
    "charges_details": [
        {"type": "tax", "amounts": {"original": 50.0}},
        {"type": "fee", "amounts": {"original": 120.0}},
    ],
}

LEAD_TIME_PAYLOAD: dict[str, Any] = {
    "estimated_delivery_final": {"date": "2025-07-05T00:00:00.000-03:00"},
}


def order_payload(**overrides: Any) -> dict[str, Any]:
    data = copy.deepcopy(ORDER_PAYLOAD)
    data.update(overrides)
    return data


@pytest.fixture()
def settings() -> Settings:
    """Settings that never read the environment or a .env file."""
    return Settings(
        _env_file=None,
        client_id="app-123",
        client_secret="shh",
        bootstrap_refresh_token="TG-bootstrap",
        process_id="proc-1",
        process_api_key="key",
        process_username="ops@example.com",
        spreadsheet_webhook_url="https://sheets.example.com/hook",
        fee_retry_attempts=1,
        fee_retry_delay_seconds=0.0,
    )


@pytest.fixture()
def store() -> InMemoryStore:
    return InMemoryStore()


@pytest.fixture()
def fresh_credential() -> Credential:
    now = datetime.now(timezone.utc)
    return Credential(
        access_token="APP_USR-valid",
        refresh_token="TG-refresh",
        expires_at=now + timedelta(hours=6),
        issued_at=now,
    )


@pytest.fixture()
def gateway() -> MagicMock:
    """Marketplace gateway answering with the canned payloads above."""
    gw = MagicMock(spec=UpstreamGateway)
    gw.fetch_order.side_effect = lambda order_id: order_payload()
    gw.fetch_billing_info.return_value = copy.deepcopy(BILLING_PAYLOAD)
    gw.fetch_shipment_lead_time.return_value = copy.deepcopy(LEAD_TIME_PAYLOAD)
    gw.fetch_payment.return_value = copy.deepcopy(PAYMENT_PAYLOAD)
    gw.post_order_note.return_value = {}
    gw.send_buyer_message.return_value = {}
    gw.update_item_stock.return_value = {}
    return gw


@pytest.fixture()
def no_wait_backoff() -> CancellableBackoff:
    return CancellableBackoff(attempts=1, delay_seconds=0.0)


def paid_record(sale_number: str = ORDER_ID, correlation_id: str | None = "FLK-1") -> OrderRecord:
    return OrderRecord(
        sale_number=sale_number,
        order_state=OrderState.PAID,
        process_correlation_id=correlation_id,
        item_id="MLA111",
        pack_id=sale_number,
        seller_id="9001",
        buyer_id="7001",
        product_name="Auriculares Inalambricos",
        sku="B0TEST1",
        quantity=2,
        sale_price=Decimal("1200.00"),
        marketplace_net=Decimal("900.00"),
        marketplace_fee=Decimal("120.00"),
        taxes=Decimal("50.00"),
    )
