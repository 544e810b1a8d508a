"""Tests for EnrichmentPipeline and fee computation."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest
from conftest import ORDER_ID, order_payload

from meli_sync.errors import RetryCancelled, UpstreamError
from meli_sync.models import OrderState
from meli_sync.reconcile.backoff import CancellableBackoff
from meli_sync.reconcile.enrichment import EnrichmentPipeline, compute_fee


def _unsettled_fee(payload: dict) -> dict:
    payload["order_items"][0]["sale_fee"] = 0
    return payload


class TestComputeFee:
    def test_fee_times_quantity(self):
        assert compute_fee(order_payload()) == Decimal("120.0")

    def test_zero_fee_is_unsettled(self):
        assert compute_fee(_unsettled_fee(order_payload())) is None

    def test_missing_items(self):
        assert compute_fee({"order_items": []}) is None


class TestEnrich:
    def test_full_record(self, gateway, settings, no_wait_backoff):
        pipeline = EnrichmentPipeline(gateway, settings, no_wait_backoff)

        record = pipeline.enrich(ORDER_ID, order_payload())

        assert record.sale_number == ORDER_ID
        assert record.order_state == OrderState.PAID
        assert record.process_correlation_id is None
        assert record.item_id == "MLA111"
        assert record.product_name == "Auriculares Inalambricos"
        assert record.sku == "B0TEST1"
        assert record.quantity == 2
        assert record.sale_price == Decimal("1200.0")
        assert record.marketplace_fee == Decimal("120.0")
        assert record.marketplace_net == Decimal("900.0")
        assert record.taxes == Decimal("50.0")
        assert record.marketplace_coupon is None
        assert record.shipping_cost is None
        assert record.buyer_tax_id == "20123456789"
        assert record.recipient_name == "Juana Perez"
        assert record.address == "Av. Corrientes 1234"
        assert record.city == "CABA"
        assert record.province == "Buenos Aires"
        assert record.postal_code == "1043"
        assert record.seller_id == "9001"
        assert record.buyer_id == "7001"
        assert record.pack_id == ORDER_ID
        assert record.marketplace_link == "https://www.mercadolibre.com.ar/ventas/555/detalle"
        assert record.external_link == "https://www.amazon.com/dp/B0TEST1"

    def test_dates_parsed(self, gateway, settings, no_wait_backoff):
        record = EnrichmentPipeline(gateway, settings, no_wait_backoff).enrich(ORDER_ID, order_payload())

        art = timezone(timedelta(hours=-3))
        assert record.sold_at == datetime(2025, 7, 1, 10, 15, tzinfo=art)
        assert record.delivery_estimate == datetime(2025, 7, 5, tzinfo=art)

    def test_only_approved_payments_are_fetched(self, gateway, settings, no_wait_backoff):
        EnrichmentPipeline(gateway, settings, no_wait_backoff).enrich(ORDER_ID, order_payload())

        gateway.fetch_payment.assert_called_once_with("3001")

    def test_fetches_order_when_not_given(self, gateway, settings, no_wait_backoff):
        EnrichmentPipeline(gateway, settings, no_wait_backoff).enrich(ORDER_ID)

        gateway.fetch_order.assert_called_once_with(ORDER_ID)

    def test_non_cuit_identification_is_not_a_tax_id(self, gateway, settings, no_wait_backoff):
        billing = gateway.fetch_billing_info.return_value
        billing["buyer"]["billing_info"]["identification"] = {"type": "DNI", "number": "30111222"}

        record = EnrichmentPipeline(gateway, settings, no_wait_backoff).enrich(ORDER_ID, order_payload())

        assert record.buyer_tax_id is None

    def test_coupon_and_shipping(self, gateway, settings, no_wait_backoff):
        payload = order_payload(shipping_cost=150)
        payload["payments"][0]["coupon_amount"] = 30

        record = EnrichmentPipeline(gateway, settings, no_wait_backoff).enrich(ORDER_ID, payload)

        assert record.marketplace_coupon == Decimal("30")
        assert record.shipping_cost == Decimal("150")

    def test_pack_id_used_when_present(self, gateway, settings, no_wait_backoff):
        record = EnrichmentPipeline(gateway, settings, no_wait_backoff).enrich(
            ORDER_ID, order_payload(pack_id=2000001)
        )
        assert record.pack_id == "2000001"


class TestEnrichFailures:
    def test_billing_failure_aborts(self, gateway, settings, no_wait_backoff):
        gateway.fetch_billing_info.side_effect = UpstreamError("billing_info", 503, "down")

        with pytest.raises(UpstreamError):
            EnrichmentPipeline(gateway, settings, no_wait_backoff).enrich(ORDER_ID, order_payload())

    def test_lead_time_failure_is_not_fatal(self, gateway, settings, no_wait_backoff):
        gateway.fetch_shipment_lead_time.side_effect = UpstreamError("shipment_lead_time", 404, "")

        record = EnrichmentPipeline(gateway, settings, no_wait_backoff).enrich(ORDER_ID, order_payload())

        assert record.delivery_estimate is None
        assert record.buyer_tax_id == "20123456789"

    def test_payment_failure_leaves_net_and_taxes_empty(self, gateway, settings, no_wait_backoff):
        gateway.fetch_payment.side_effect = UpstreamError("payment", None, "timeout")

        record = EnrichmentPipeline(gateway, settings, no_wait_backoff).enrich(ORDER_ID, order_payload())

        assert record.marketplace_net is None
        assert record.taxes is None
        assert record.marketplace_fee == Decimal("120.0")

    def test_no_shipment_skips_lead_time(self, gateway, settings, no_wait_backoff):
        record = EnrichmentPipeline(gateway, settings, no_wait_backoff).enrich(
            ORDER_ID, order_payload(shipping=None)
        )

        gateway.fetch_shipment_lead_time.assert_not_called()
        assert record.delivery_estimate is None


class TestFeeRetry:
    def test_unsettled_fee_is_refetched(self, gateway, settings, no_wait_backoff):
        gateway.fetch_order.side_effect = lambda order_id: order_payload()

        record = EnrichmentPipeline(gateway, settings, no_wait_backoff).enrich(
            ORDER_ID, _unsettled_fee(order_payload())
        )

        assert record.marketplace_fee == Decimal("120.0")
        gateway.fetch_order.assert_called_once_with(ORDER_ID)

    def test_still_unsettled_fee_is_empty(self, gateway, settings, no_wait_backoff):
        gateway.fetch_order.side_effect = lambda order_id: _unsettled_fee(order_payload())

        record = EnrichmentPipeline(gateway, settings, no_wait_backoff).enrich(
            ORDER_ID, _unsettled_fee(order_payload())
        )

        assert record.marketplace_fee is None
        assert gateway.fetch_order.call_count == 1

    def test_refetch_failure_leaves_fee_empty(self, gateway, settings, no_wait_backoff):
        gateway.fetch_order.side_effect = UpstreamError("order", 500, "")

        record = EnrichmentPipeline(gateway, settings, no_wait_backoff).enrich(
            ORDER_ID, _unsettled_fee(order_payload())
        )

        assert record.marketplace_fee is None

    def test_shutdown_interrupts_fee_wait(self, gateway, settings):
        event = threading.Event()
        event.set()
        backoff = CancellableBackoff(attempts=1, delay_seconds=60.0, cancel_event=event)

        with pytest.raises(RetryCancelled):
            EnrichmentPipeline(gateway, settings, backoff).enrich(ORDER_ID, _unsettled_fee(order_payload()))
        gateway.fetch_order.assert_not_called()
