"""Downstream dispatcher: mirrors committed order transitions to collaborators.

Collaborators:
- Business-process system: one process instance per order, correlated by the
  ``identifier`` it returns; cancelled through the same identifier.
- Spreadsheet webhook: receives ``{identifier, estado}`` on state changes.
- Marketplace: order note with the correlation id, post-sale buyer message,
  optional stock adjustment.

Everything here runs after the local record is committed. Failures are logged
and never roll that record back; the local store is the source of truth.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from decimal import Decimal

from meli_sync.config import Settings
from meli_sync.errors import MeliSyncError
from meli_sync.gateway.marketplace import UpstreamGateway
from meli_sync.gateway.process import BusinessProcessClient
from meli_sync.gateway.spreadsheet import SpreadsheetWebhook
from meli_sync.models import OrderRecord, OrderState, utcnow
from meli_sync.store.protocol import OrderStore

logger = logging.getLogger(__name__)

_ELLIPSIS = "..."


def _fmt_date(value: datetime | None) -> str:
    return value.strftime("%Y/%m/%d") if value else ""


def _fmt(value: object) -> str:
    if value is None:
        return ""
    if isinstance(value, Decimal):
        return f"{value:.2f}"
    return str(value)


def build_process_fields(order: OrderRecord) -> dict[str, str]:
    """Form fields expected by the sales process. Nulls become empty strings."""
    return {
        "TIPOVENTA": _fmt(order.sale_type),
        "NROVENTA": _fmt(order.sale_number),
        "FECHAVENTA": _fmt_date(order.sold_at),
        "FECHAENTREGA": _fmt_date(order.delivery_estimate),
        "NOMBREPRODUCTO": _fmt(order.product_name),
        "SKU": _fmt(order.sku),
        "LINKML": _fmt(order.marketplace_link),
        "LINKAMAZON": _fmt(order.external_link),
        "Cantidad de Unidades": _fmt(order.quantity),
        "PRECIOVENTA": _fmt(order.sale_price),
        "SALDOML": _fmt(order.marketplace_net),
        "COMISIONML": _fmt(order.marketplace_fee),
        "COSTOENVIO": _fmt(order.shipping_cost) if order.shipping_cost else "",
        "Impuestos": _fmt(order.taxes),
        "CUITCOMPRADOR": _fmt(order.buyer_tax_id),
        "NOMBREDESTINATARIO": _fmt(order.recipient_name),
        "Datos Cliente": _fmt(order.address),
        "CIUDAD": _fmt(order.city),
        "PROVINCIA": _fmt(order.province),
        "CODIGO POSTAL": _fmt(order.postal_code),
        "APORTE ML": _fmt(order.marketplace_coupon),
    }


def compose_post_sale_message(template: str, product_name: str, max_length: int = 350) -> str:
    """Fill the template, shortening the product name until the text fits."""
    text = template.format(product=product_name)
    if len(text) <= max_length:
        return text

    overflow = len(text) - max_length
    keep = max(len(product_name) - overflow - len(_ELLIPSIS), 0)
    shortened = product_name[:keep].rstrip() + _ELLIPSIS
    return template.format(product=shortened)[:max_length]


class DownstreamDispatcher:
    """Best-effort fan-out of order transitions."""

    def __init__(
        self,
        store: OrderStore,
        gateway: UpstreamGateway,
        process: BusinessProcessClient,
        spreadsheet: SpreadsheetWebhook,
        settings: Settings,
    ):
        self._store = store
        self._gateway = gateway
        self._process = process
        self._spreadsheet = spreadsheet
        self._settings = settings

    # ── New orders ──────────────────────────────────────────────────────

    def dispatch_new(self, order: OrderRecord) -> str | None:
        """Submit a freshly created order to the business-process system.

        Idempotent through the stored correlation id: if one already exists it
        is returned and nothing is resubmitted. Returns None if submission failed.
        """
        stored = self._store.get_order(order.sale_number)
        existing = order.process_correlation_id or (stored.process_correlation_id if stored else None)
        if existing:
            logger.info("Order %s already dispatched (identifier=%s)", order.sale_number, existing)
            return existing

        correlation_id = self._submit(order)
        if correlation_id is not None:
            if not self._store.set_correlation_id(order.sale_number, correlation_id):
                current = self._store.get_order(order.sale_number)
                kept = current.process_correlation_id if current else None
                if current is not None and kept is None and current.order_state.is_terminal:
                    # Closed by another writer while we were submitting
                    logger.warning(
                        "Order %s became %s during submission, cancelling %s",
                        order.sale_number,
                        current.order_state.value,
                        correlation_id,
                    )
                    self.dispatch_cancellation(replace(current, process_correlation_id=correlation_id))
                    return None
                logger.warning(
                    "Order %s already had identifier %s, discarding %s",
                    order.sale_number,
                    kept,
                    correlation_id,
                )
                return kept
            order.process_correlation_id = correlation_id
            self._add_order_note(order.sale_number, correlation_id)

        self._send_post_sale_message(order)
        self._adjust_stock(order)
        return correlation_id

    def _submit(self, order: OrderRecord) -> str | None:
        try:
            correlation_id = self._process.create_instance(build_process_fields(order))
        except MeliSyncError as e:
            logger.error("Order %s not submitted to process system: %s", order.sale_number, e)
            return None
        logger.info("Order %s submitted to process system, identifier=%s", order.sale_number, correlation_id)
        return correlation_id

    def _add_order_note(self, sale_number: str, correlation_id: str) -> None:
        try:
            self._gateway.post_order_note(sale_number, correlation_id)
            logger.info("Note added to order %s with identifier %s", sale_number, correlation_id)
        except MeliSyncError as e:
            logger.warning("Could not add note to order %s: %s", sale_number, e)

    def _send_post_sale_message(self, order: OrderRecord) -> None:
        if not self._settings.post_sale_message_enabled:
            return
        if not (order.seller_id and order.buyer_id):
            logger.info("Order %s: no seller/buyer id, skipping buyer message", order.sale_number)
            return
        text = compose_post_sale_message(
            self._settings.post_sale_message_template,
            order.product_name or "",
            self._settings.post_sale_message_max_length,
        )
        try:
            self._gateway.send_buyer_message(
                order.pack_id or order.sale_number,
                order.seller_id,
                order.buyer_id,
                text,
            )
            logger.info("Post-sale message sent for order %s", order.sale_number)
        except MeliSyncError as e:
            logger.warning("Post-sale message failed for order %s: %s", order.sale_number, e)

    def _adjust_stock(self, order: OrderRecord) -> None:
        if not (self._settings.adjust_stock_on_sale and order.item_id):
            return
        product = self._store.get_product(order.item_id)
        if product is None or product.stock is None:
            return
        new_stock = max(product.stock - order.quantity, 0)
        try:
            self._gateway.update_item_stock(order.item_id, new_stock)
        except MeliSyncError as e:
            logger.warning("Stock adjustment failed for item %s: %s", order.item_id, e)
            return
        self._store.update_product(order.item_id, {"stock": new_stock, "last_updated": utcnow()})
        logger.info("Item %s stock %d -> %d after order %s", order.item_id, product.stock, new_stock, order.sale_number)

    # ── State changes ───────────────────────────────────────────────────

    def notify_state_change(self, order: OrderRecord, new_state: OrderState) -> bool:
        """Post the new state to the spreadsheet. Never touches the process system."""
        if not self._spreadsheet.is_configured:
            logger.debug("Spreadsheet webhook not configured")
            return False
        if not order.process_correlation_id:
            logger.warning("Order %s has no identifier, spreadsheet not updated", order.sale_number)
            return False
        try:
            self._spreadsheet.post_state(order.process_correlation_id, new_state.value)
        except MeliSyncError as e:
            logger.error("Spreadsheet update failed for order %s: %s", order.sale_number, e)
            return False
        logger.info("Spreadsheet updated: order %s -> %s", order.sale_number, new_state.value)
        return True

    def dispatch_cancellation(self, order: OrderRecord) -> bool:
        """Cancel the process instance for this order, if it ever had one."""
        if not order.process_correlation_id:
            logger.info("Order %s was never dispatched, nothing to cancel", order.sale_number)
            return False
        try:
            self._process.cancel_instance(order.process_correlation_id)
        except MeliSyncError as e:
            logger.error("Process cancellation failed for order %s: %s", order.sale_number, e)
            return False
        logger.info(
            "Order %s cancelled in process system (identifier=%s)",
            order.sale_number,
            order.process_correlation_id,
        )
        return True
