"""Tests for DownstreamDispatcher and the process form builder."""

from __future__ import annotations

from datetime import datetime, timezone
from decimal import Decimal
from unittest.mock import MagicMock

import httpx
import pytest
from conftest import ORDER_ID, paid_record

from meli_sync.auth.credentials import CredentialManager
from meli_sync.errors import UpstreamError
from meli_sync.gateway.marketplace import UpstreamGateway
from meli_sync.gateway.process import BusinessProcessClient
from meli_sync.gateway.spreadsheet import SpreadsheetWebhook
from meli_sync.models import OrderState, ProductRecord
from meli_sync.reconcile.dispatcher import (
    DownstreamDispatcher,
    build_process_fields,
    compose_post_sale_message,
)


@pytest.fixture()
def process() -> MagicMock:
    client = MagicMock(spec=BusinessProcessClient)
    client.create_instance.return_value = "FLK-1"
    return client


@pytest.fixture()
def spreadsheet() -> MagicMock:
    sheet = MagicMock(spec=SpreadsheetWebhook)
    sheet.is_configured = True
    return sheet


@pytest.fixture()
def dispatcher(store, gateway, process, spreadsheet, settings) -> DownstreamDispatcher:
    return DownstreamDispatcher(store, gateway, process, spreadsheet, settings)


def _stored(store, correlation_id=None):
    record = paid_record(correlation_id=correlation_id)
    store.create_order(record)
    return record


class TestBuildProcessFields:
    def test_formats_values(self):
        record = paid_record()
        record.sold_at = datetime(2025, 7, 1, 10, 15, tzinfo=timezone.utc)

        fields = build_process_fields(record)

        assert fields["TIPOVENTA"] == "ML"
        assert fields["NROVENTA"] == ORDER_ID
        assert fields["FECHAVENTA"] == "2025/07/01"
        assert fields["PRECIOVENTA"] == "1200.00"
        assert fields["SALDOML"] == "900.00"
        assert fields["COMISIONML"] == "120.00"
        assert fields["Impuestos"] == "50.00"
        assert fields["Cantidad de Unidades"] == "2"

    def test_nulls_become_empty_strings(self):
        fields = build_process_fields(paid_record())

        assert fields["FECHAENTREGA"] == ""
        assert fields["CUITCOMPRADOR"] == ""
        assert fields["COSTOENVIO"] == ""
        assert fields["APORTE ML"] == ""
        assert all(isinstance(v, str) for v in fields.values())


class TestComposePostSaleMessage:
    def test_short_message_untouched(self):
        assert compose_post_sale_message("Gracias por {product}!", "Mate") == "Gracias por Mate!"

    def test_long_product_name_is_shortened(self):
        template = "Gracias por tu compra de {product}. Saludos."
        text = compose_post_sale_message(template, "X" * 500, max_length=350)

        assert len(text) <= 350
        assert text.startswith("Gracias por tu compra de XXX")
        assert "..." in text
        assert text.endswith("Saludos.")

    def test_default_template_fits(self, settings):
        text = compose_post_sale_message(
            settings.post_sale_message_template,
            "Y" * 400,
            settings.post_sale_message_max_length,
        )
        assert len(text) <= 350


class TestDispatchNew:
    def test_submits_and_records_identifier(self, dispatcher, store, gateway, process):
        record = _stored(store)

        assert dispatcher.dispatch_new(record) == "FLK-1"

        process.create_instance.assert_called_once()
        assert store.get_order(ORDER_ID).process_correlation_id == "FLK-1"
        gateway.post_order_note.assert_called_once_with(ORDER_ID, "FLK-1")
        gateway.send_buyer_message.assert_called_once()
        pack, seller, buyer, text = gateway.send_buyer_message.call_args.args
        assert (pack, seller, buyer) == (ORDER_ID, "9001", "7001")
        assert "Auriculares Inalambricos" in text

    def test_existing_identifier_is_not_resubmitted(self, dispatcher, store, gateway, process):
        record = _stored(store, correlation_id="FLK-OLD")

        assert dispatcher.dispatch_new(record) == "FLK-OLD"

        process.create_instance.assert_not_called()
        gateway.post_order_note.assert_not_called()
        gateway.send_buyer_message.assert_not_called()

    def test_identifier_never_overwritten(self, dispatcher, store, gateway, process):
        record = _stored(store)
        # Another worker recorded an identifier between the read and the write
        def racing_submit(fields):
            store.set_correlation_id(ORDER_ID, "FLK-WINNER")
            return "FLK-LOSER"

        process.create_instance.side_effect = racing_submit

        assert dispatcher.dispatch_new(record) == "FLK-WINNER"
        assert store.get_order(ORDER_ID).process_correlation_id == "FLK-WINNER"
        gateway.post_order_note.assert_not_called()

    def test_process_failure_keeps_record_and_still_messages_buyer(self, dispatcher, store, gateway, process):
        record = _stored(store)
        process.create_instance.side_effect = UpstreamError("process_create", 500, "down")

        assert dispatcher.dispatch_new(record) is None

        stored = store.get_order(ORDER_ID)
        assert stored is not None
        assert stored.order_state == OrderState.PAID
        assert stored.process_correlation_id is None
        gateway.post_order_note.assert_not_called()
        gateway.send_buyer_message.assert_called_once()

    def test_note_failure_is_not_fatal(self, dispatcher, store, gateway):
        record = _stored(store)
        gateway.post_order_note.side_effect = UpstreamError("order_note", 403, "")

        assert dispatcher.dispatch_new(record) == "FLK-1"
        assert store.get_order(ORDER_ID).process_correlation_id == "FLK-1"

    def test_message_disabled(self, dispatcher, store, gateway, settings):
        settings.post_sale_message_enabled = False
        dispatcher.dispatch_new(_stored(store))

        gateway.send_buyer_message.assert_not_called()

    def test_stock_adjusted_when_enabled(self, dispatcher, store, gateway, settings):
        settings.adjust_stock_on_sale = True
        store.add_product(ProductRecord(publication_id="MLA111", price=Decimal("1200"), stock=5))

        dispatcher.dispatch_new(_stored(store))

        gateway.update_item_stock.assert_called_once_with("MLA111", 3)
        assert store.get_product("MLA111").stock == 3

    def test_stock_untouched_by_default(self, dispatcher, store, gateway):
        store.add_product(ProductRecord(publication_id="MLA111", stock=5))

        dispatcher.dispatch_new(_stored(store))

        gateway.update_item_stock.assert_not_called()
        assert store.get_product("MLA111").stock == 5


class TestStateChanges:
    def test_notify_posts_identifier_and_state(self, dispatcher, spreadsheet):
        record = paid_record(correlation_id="FLK-9")

        assert dispatcher.notify_state_change(record, OrderState.CANCELLED) is True
        spreadsheet.post_state.assert_called_once_with("FLK-9", "cancelled")

    def test_notify_without_identifier_skips(self, dispatcher, spreadsheet):
        assert dispatcher.notify_state_change(paid_record(correlation_id=None), OrderState.CANCELLED) is False
        spreadsheet.post_state.assert_not_called()

    def test_notify_unconfigured_skips(self, dispatcher, spreadsheet):
        spreadsheet.is_configured = False

        assert dispatcher.notify_state_change(paid_record(), OrderState.CANCELLED) is False
        spreadsheet.post_state.assert_not_called()

    def test_notify_failure_is_reported(self, dispatcher, spreadsheet):
        spreadsheet.post_state.side_effect = UpstreamError("spreadsheet", 502, "")

        assert dispatcher.notify_state_change(paid_record(), OrderState.CANCELLED) is False

    def test_cancellation_uses_identifier(self, dispatcher, process):
        assert dispatcher.dispatch_cancellation(paid_record(correlation_id="FLK-9")) is True
        process.cancel_instance.assert_called_once_with("FLK-9")

    def test_cancellation_without_identifier(self, dispatcher, process):
        assert dispatcher.dispatch_cancellation(paid_record(correlation_id=None)) is False
        process.cancel_instance.assert_not_called()

    def test_cancellation_failure(self, dispatcher, process):
        process.cancel_instance.side_effect = UpstreamError("process_cancel", None, "timeout")

        assert dispatcher.dispatch_cancellation(paid_record()) is False


class TestDispatchOverHttp:
    """Dispatch against the real gateway with a mocked marketplace transport."""

    def test_non_json_note_answer_does_not_stop_buyer_message(
        self, store, settings, process, spreadsheet, fresh_credential
    ):
        store.add_credential(fresh_credential)
        paths: list[str] = []

        def marketplace(request: httpx.Request) -> httpx.Response:
            paths.append(request.url.path)
            if request.url.path.endswith("/notes"):
                return httpx.Response(200, text="OK")
            return httpx.Response(200, json={})

        client = httpx.Client(base_url="https://api.mercadolibre.com", transport=httpx.MockTransport(marketplace))
        gateway = UpstreamGateway(CredentialManager(store, settings, http_client=client), settings, http_client=client)
        dispatcher = DownstreamDispatcher(store, gateway, process, spreadsheet, settings)

        assert dispatcher.dispatch_new(_stored(store)) == "FLK-1"

        assert paths == [f"/orders/{ORDER_ID}/notes", f"/messages/packs/{ORDER_ID}/sellers/9001"]
        assert store.get_order(ORDER_ID).process_correlation_id == "FLK-1"


class TestCancelledDuringSubmission:
    def test_identifier_not_written_and_instance_cancelled(self, dispatcher, store, gateway, process):
        record = _stored(store)

        def submit_while_cancelled(fields):
            store.update_order_state(ORDER_ID, OrderState.CANCELLED)
            return "FLK-LATE"

        process.create_instance.side_effect = submit_while_cancelled

        assert dispatcher.dispatch_new(record) is None

        stored = store.get_order(ORDER_ID)
        assert stored.order_state == OrderState.CANCELLED
        assert stored.process_correlation_id is None
        process.cancel_instance.assert_called_once_with("FLK-LATE")
        gateway.post_order_note.assert_not_called()
        gateway.send_buyer_message.assert_not_called()
