"""Enrichment pipeline: assembles a full OrderRecord for a newly paid order.

Calls, in order:
1. Order detail (mandatory; usually already fetched by the reconciler)
2. Billing info with ``x-version: 2`` (mandatory)
3. Shipment lead time (optional; failure leaves delivery_estimate empty)
4. Payment detail for every approved payment (optional; failure leaves
   net proceeds and taxes empty rather than recording a partial sum)
5. Fee: ``sale_fee * quantity``; when the marketplace has not settled the fee
   yet, the order is re-fetched after a cancellable delay

Mandatory failures raise UpstreamError and nothing is persisted.
"""

from __future__ import annotations

import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any

from meli_sync.config import Settings
from meli_sync.errors import UpstreamError
from meli_sync.gateway.marketplace import UpstreamGateway
from meli_sync.models import OrderRecord, OrderState
from meli_sync.reconcile.backoff import CancellableBackoff

logger = logging.getLogger(__name__)

_TAX_CHARGE_TYPE = "tax"
_TAX_ID_TYPE = "CUIT"


def _money(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        logger.warning("Unparseable amount: %r", value)
        return None


def _parse_datetime(value: Any) -> datetime | None:
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        logger.warning("Unparseable timestamp: %r", value)
        return None


def _join(*parts: Any) -> str:
    return " ".join(str(p) for p in parts if p not in (None, "")).strip()


def _first_item(order: dict[str, Any]) -> dict[str, Any]:
    items = order.get("order_items") or [{}]
    return items[0] or {}


def compute_fee(order: dict[str, Any]) -> Decimal | None:
    """Marketplace fee for the first line: per-unit fee times quantity.

    Zero or missing means "not settled yet" and returns None.
    """
    line = _first_item(order)
    per_unit = _money(line.get("sale_fee"))
    if not per_unit:
        return None
    quantity = int(line.get("quantity") or 1)
    return per_unit * quantity


class EnrichmentPipeline:
    """Builds the record for the Absent -> Paid transition."""

    def __init__(
        self,
        gateway: UpstreamGateway,
        settings: Settings,
        backoff: CancellableBackoff | None = None,
    ):
        self._gateway = gateway
        self._settings = settings
        self._backoff = backoff or CancellableBackoff(
            attempts=settings.fee_retry_attempts,
            delay_seconds=settings.fee_retry_delay_seconds,
        )

    def enrich(self, order_id: str, order: dict[str, Any] | None = None) -> OrderRecord:
        """Return an unsaved OrderRecord in the PAID state.

        Raises:
            UpstreamError: order or billing detail could not be fetched.
            RetryCancelled: shutdown interrupted the fee retry.
        """
        if order is None:
            order = self._gateway.fetch_order(order_id)
        billing = self._gateway.fetch_billing_info(order_id)

        record = self._from_order(order_id, order)
        self._apply_billing(record, billing)
        record.delivery_estimate = self._delivery_estimate(order_id, order)
        self._apply_payments(record, order_id, order)
        record.marketplace_fee = self._fee(order_id, order)
        record.order_state = OrderState.PAID
        return record

    # ── Mapping ─────────────────────────────────────────────────────────

    def _from_order(self, order_id: str, order: dict[str, Any]) -> OrderRecord:
        line = _first_item(order)
        item = line.get("item") or {}
        sku = item.get("seller_sku")
        shipping_cost = _money(order.get("shipping_cost"))
        seller = (order.get("seller") or {}).get("id") or self._settings.seller_id
        buyer = (order.get("buyer") or {}).get("id")

        return OrderRecord(
            sale_number=order_id,
            item_id=item.get("id"),
            pack_id=str(order.get("pack_id") or order_id),
            seller_id=str(seller) if seller else None,
            buyer_id=str(buyer) if buyer else None,
            product_name=item.get("title"),
            sku=sku,
            quantity=int(line.get("quantity") or 1),
            sale_price=_money(order.get("total_amount")),
            shipping_cost=shipping_cost if shipping_cost else None,
            sold_at=_parse_datetime(order.get("date_closed")),
            marketplace_link=self._settings.site_sale_url.format(order_id=order_id),
            external_link=self._settings.external_product_url.format(sku=sku) if sku else None,
        )

    def _apply_billing(self, record: OrderRecord, billing: dict[str, Any]) -> None:
        info = (billing.get("buyer") or {}).get("billing_info") or {}
        identification = info.get("identification") or {}
        address = info.get("address") or {}

        if identification.get("type") == _TAX_ID_TYPE:
            record.buyer_tax_id = identification.get("number")
        record.recipient_name = _join(info.get("name"), info.get("last_name"))
        record.address = _join(address.get("street_name"), address.get("street_number"))
        record.city = address.get("city_name") or ""
        record.province = (address.get("state") or {}).get("name") or ""
        record.postal_code = address.get("zip_code") or ""

    # ── Optional sub-fetches ────────────────────────────────────────────

    def _delivery_estimate(self, order_id: str, order: dict[str, Any]) -> datetime | None:
        shipment_id = (order.get("shipping") or {}).get("id")
        if not shipment_id:
            return None
        try:
            lead_time = self._gateway.fetch_shipment_lead_time(str(shipment_id))
        except UpstreamError as e:
            logger.warning(
                "Lead time unavailable for order %s (shipment %s): %s",
                order_id,
                shipment_id,
                e,
            )
            return None
        final = lead_time.get("estimated_delivery_final") or {}
        return _parse_datetime(final.get("date"))

    def _apply_payments(self, record: OrderRecord, order_id: str, order: dict[str, Any]) -> None:
        approved = [p for p in order.get("payments") or [] if p.get("status") == "approved"]
        if not approved:
            return

        net = Decimal("0")
        taxes = Decimal("0")
        coupon = Decimal("0")
        complete = True
        for payment in approved:
            coupon += _money(payment.get("coupon_amount")) or Decimal("0")
            try:
                detail = self._gateway.fetch_payment(str(payment.get("id")))
            except UpstreamError as e:
                logger.warning("Payment %s of order %s unavailable: %s", payment.get("id"), order_id, e)
                complete = False
                continue

            net += _money((detail.get("transaction_details") or {}).get("net_received_amount")) or Decimal("0")
            for charge in detail.get("charges_details") or []:
                if charge.get("type") == _TAX_CHARGE_TYPE:
                    taxes += _money((charge.get("amounts") or {}).get("original")) or Decimal("0")

        if complete:
            record.marketplace_net = net
            record.taxes = taxes
        record.marketplace_coupon = coupon if coupon else None

    def _fee(self, order_id: str, order: dict[str, Any]) -> Decimal | None:
        fee = compute_fee(order)
        if fee is not None:
            return fee

        def refetch() -> Decimal | None:
            try:
                return compute_fee(self._gateway.fetch_order(order_id))
            except UpstreamError as e:
                logger.warning("Fee re-fetch failed for order %s: %s", order_id, e)
                return None

        fee = self._backoff.poll(refetch, label=f"fee of order {order_id}")
        if fee is None:
            logger.warning("No fee recorded for order %s (not settled upstream)", order_id)
        return fee
