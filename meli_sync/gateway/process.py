"""Flokzu business-process client.

Orders are submitted as new process instances; the returned ``identifier`` is
the correlation id used for every later update to that instance.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from meli_sync.config import Settings
from meli_sync.errors import UpstreamError
from meli_sync.gateway.http import json_body, send

logger = logging.getLogger(__name__)

CANCELLED_STATE = "CANCELADA"


class BusinessProcessClient:
    """Create and cancel process instances."""

    def __init__(self, settings: Settings, http_client: httpx.Client | None = None):
        self._process_id = settings.process_id
        self._headers = {
            "Content-Type": "application/json",
            "X-Api-Key": settings.process_api_key,
            "X-Username": settings.process_username,
        }
        self._http = http_client or httpx.Client(
            base_url=settings.process_base_url,
            timeout=settings.request_timeout_seconds,
        )

    def create_instance(self, data: dict[str, str]) -> str:
        """Submit a process instance. Returns its identifier."""
        response = send(
            self._http,
            "process_create",
            "POST",
            "/process/instance",
            headers=self._headers,
            json={"processId": self._process_id, "data": data},
        )
        body: dict[str, Any] = json_body(response, "process_create")
        identifier = body.get("identifier")
        if not identifier:
            raise UpstreamError("process_create", response.status_code, "response without identifier")
        return str(identifier)

    def cancel_instance(self, identifier: str) -> None:
        send(
            self._http,
            "process_cancel",
            "PUT",
            "/process/instance",
            headers=self._headers,
            json={"identifier": identifier, "data": {"ESTADO": CANCELLED_STATE}},
        )
