"""Spreadsheet webhook: mirrors order state changes into the tracking sheet."""

from __future__ import annotations

import logging

import httpx

from meli_sync.config import Settings
from meli_sync.gateway.http import send

logger = logging.getLogger(__name__)


class SpreadsheetWebhook:
    """POSTs ``{identifier, estado}`` to the configured sheet endpoint."""

    def __init__(self, settings: Settings, http_client: httpx.Client | None = None):
        self._url = settings.spreadsheet_webhook_url
        self._http = http_client or httpx.Client(timeout=settings.request_timeout_seconds)

    @property
    def is_configured(self) -> bool:
        return bool(self._url)

    def post_state(self, identifier: str, estado: str) -> None:
        send(
            self._http,
            "spreadsheet",
            "POST",
            self._url,
            json={"identifier": identifier, "estado": estado},
        )
