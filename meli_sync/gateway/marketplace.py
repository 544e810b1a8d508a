"""Mercado Libre REST client.

One method per resource. Every call attaches the current bearer token from
the CredentialManager, carries the configured timeout, and reports failure as
UpstreamError (or AuthError if no token could be obtained).
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from meli_sync.auth.credentials import CredentialManager
from meli_sync.config import Settings
from meli_sync.gateway.http import json_body, send

logger = logging.getLogger(__name__)


class UpstreamGateway:
    """Typed wrapper around the marketplace order/billing/shipment/payment endpoints."""

    def __init__(
        self,
        credentials: CredentialManager,
        settings: Settings,
        http_client: httpx.Client | None = None,
    ):
        self._credentials = credentials
        self._http = http_client or httpx.Client(
            base_url=settings.api_base_url,
            timeout=settings.request_timeout_seconds,
        )

    def _call(
        self,
        resource: str,
        method: str,
        path: str,
        headers: dict[str, str] | None = None,
        **kwargs: Any,
    ) -> dict[str, Any]:
        token = self._credentials.get_valid_token()
        all_headers = {"Authorization": f"Bearer {token}"}
        if headers:
            all_headers.update(headers)
        response = send(self._http, resource, method, path, headers=all_headers, **kwargs)
        return json_body(response, resource)

    # ── Orders ──────────────────────────────────────────────────────────

    def fetch_order(self, order_id: str) -> dict[str, Any]:
        return self._call("order", "GET", f"/orders/{order_id}")

    def fetch_billing_info(self, order_id: str) -> dict[str, Any]:
        return self._call(
            "billing_info",
            "GET",
            f"/orders/{order_id}/billing_info",
            headers={"x-version": "2"},
        )

    def post_order_note(self, order_id: str, note: str) -> dict[str, Any]:
        return self._call("order_note", "POST", f"/orders/{order_id}/notes", json={"note": note})

    # ── Shipments & payments ────────────────────────────────────────────

    def fetch_shipment_lead_time(self, shipment_id: str) -> dict[str, Any]:
        return self._call("shipment_lead_time", "GET", f"/shipments/{shipment_id}/lead_time")

    def fetch_payment(self, payment_id: str) -> dict[str, Any]:
        return self._call("payment", "GET", f"/payments/{payment_id}")

    # ── Messaging ───────────────────────────────────────────────────────

    def send_buyer_message(
        self,
        pack_id: str,
        seller_id: str,
        buyer_id: str,
        text: str,
    ) -> dict[str, Any]:
        """Post-sale message to the buyer of a pack (or single order)."""
        return self._call(
            "buyer_message",
            "POST",
            f"/messages/packs/{pack_id}/sellers/{seller_id}",
            params={"tag": "post_sale"},
            json={
                "from": {"user_id": seller_id},
                "to": {"user_id": buyer_id},
                "text": text,
            },
        )

    # ── Items ───────────────────────────────────────────────────────────

    def fetch_item(self, item_id: str) -> dict[str, Any]:
        return self._call("item", "GET", f"/items/{item_id}")

    def update_item_stock(self, item_id: str, available_quantity: int) -> dict[str, Any]:
        return self._call(
            "item_stock",
            "PUT",
            f"/items/{item_id}",
            json={"available_quantity": available_quantity},
        )
