"""Shared request helper that turns transport failures into UpstreamError.

No retries happen here. Callers decide whether a failure means "not yet
available" or "abort", so a timeout is reported exactly like a non-2xx.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from meli_sync.errors import UpstreamError

logger = logging.getLogger(__name__)


def send(
    client: httpx.Client,
    resource: str,
    method: str,
    url: str,
    **kwargs: Any,
) -> httpx.Response:
    """Issue one request; raise UpstreamError on timeout, transport error or non-2xx."""
    try:
        response = client.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        logger.warning("%s timed out: %s %s", resource, method, url)
        raise UpstreamError(resource, None, f"timeout: {e}") from e
    except httpx.HTTPError as e:
        logger.warning("%s transport error: %s", resource, type(e).__name__)
        raise UpstreamError(resource, None, f"{type(e).__name__}: {e}") from e

    if not response.is_success:
        raise UpstreamError(resource, response.status_code, response.text)
    return response


def json_body(response: httpx.Response, resource: str) -> dict[str, Any]:
    """Decode a JSON object body; empty bodies decode to {}.

    A 2xx body that is not JSON raises UpstreamError like any other bad answer.
    """
    if not response.content:
        return {}
    try:
        data = response.json()
    except ValueError as e:
        logger.warning("%s returned a non-JSON body (HTTP %d)", resource, response.status_code)
        raise UpstreamError(resource, response.status_code, response.text) from e
    return data if isinstance(data, dict) else {"data": data}
