"""Notification parsing: turns a raw webhook body into a Notification.

The marketplace sends ``{"topic": ..., "resource": "/orders/123", ...}``.
Only ``orders_v2`` and ``items`` are processed; anything else is a
ValidationError and is dropped without retry.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any

from meli_sync.errors import ValidationError

TOPIC_ORDERS = "orders_v2"
TOPIC_ITEMS = "items"

# topic -> expected resource prefix
_TOPIC_RESOURCES = {
    TOPIC_ORDERS: "orders",
    TOPIC_ITEMS: "items",
}

_RESOURCE_RE = re.compile(r"^/?(?P<kind>[a-z_]+)/(?P<id>[A-Za-z0-9_-]+)/?$")


@dataclass(frozen=True)
class Notification:
    """A validated marketplace notification."""

    topic: str
    resource: str
    resource_id: str
    user_id: str = ""
    application_id: str = ""
    attempts: int = 1


def _int_or(value: Any, default: int) -> int:
    try:
        return int(value)
    except (TypeError, ValueError):
        return default


def parse_notification(payload: Any) -> Notification:
    """Validate a webhook body.

    Raises:
        ValidationError: not an object, unsupported topic, or no resource id.
    """
    if not isinstance(payload, dict):
        raise ValidationError("notification body is not an object")

    topic = payload.get("topic")
    if not isinstance(topic, str) or not topic:
        raise ValidationError("missing topic")
    if topic not in _TOPIC_RESOURCES:
        raise ValidationError(f"unsupported topic: {topic}")

    resource = payload.get("resource")
    if not isinstance(resource, str) or not resource:
        raise ValidationError("missing resource")

    match = _RESOURCE_RE.match(resource.strip())
    if match is None or match.group("kind") != _TOPIC_RESOURCES[topic]:
        raise ValidationError(f"resource {resource!r} does not match topic {topic}")

    return Notification(
        topic=topic,
        resource=resource,
        resource_id=match.group("id"),
        user_id=str(payload.get("user_id") or ""),
        application_id=str(payload.get("application_id") or ""),
        attempts=_int_or(payload.get("attempts"), 1),
    )
