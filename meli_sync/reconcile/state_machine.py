"""Order lifecycle transition table.

Keyed by (local state, upstream state); ``None`` as the local state means no
record exists yet. Anything ambiguous or already terminal maps to IGNORE, which
is what makes duplicate and reordered notifications safe to replay.
"""

from __future__ import annotations

from enum import Enum

from meli_sync.models import OrderState


class Action(str, Enum):
    """What the reconciler does for one notification."""

    CREATE = "create"  # enrich, insert as paid, dispatch new
    UPDATE = "update"  # move state, notify spreadsheet
    CANCEL = "cancel"  # move to cancelled, notify spreadsheet, cancel process instance
    IGNORE = "ignore"


def _build_table() -> dict[tuple[OrderState | None, OrderState], Action]:
    table: dict[tuple[OrderState | None, OrderState], Action] = {}

    for upstream in OrderState:
        # Absent: only a paid order is worth recording
        table[(None, upstream)] = Action.CREATE if upstream is OrderState.PAID else Action.IGNORE

        # Terminal and never-recorded states are frozen
        for frozen in (OrderState.CANCELLED, OrderState.OTHER, OrderState.UNKNOWN):
            table[(frozen, upstream)] = Action.IGNORE

    table.update({
        (OrderState.PAID, OrderState.PAID): Action.IGNORE,
        (OrderState.PAID, OrderState.CANCELLED): Action.CANCEL,
        (OrderState.PAID, OrderState.PENDING): Action.UPDATE,
        (OrderState.PAID, OrderState.OTHER): Action.UPDATE,
        (OrderState.PAID, OrderState.UNKNOWN): Action.IGNORE,
        (OrderState.PENDING, OrderState.PAID): Action.UPDATE,
        (OrderState.PENDING, OrderState.CANCELLED): Action.CANCEL,
        (OrderState.PENDING, OrderState.PENDING): Action.IGNORE,
        (OrderState.PENDING, OrderState.OTHER): Action.UPDATE,
        (OrderState.PENDING, OrderState.UNKNOWN): Action.IGNORE,
    })
    return table


TRANSITIONS = _build_table()


def decide(current: OrderState | None, upstream: OrderState) -> Action:
    return TRANSITIONS.get((current, upstream), Action.IGNORE)
