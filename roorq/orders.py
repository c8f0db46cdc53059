"""
Order status transitions against the data store.

read current row -> normalise -> validate against ORDER_STATUS_FLOW -> conditional write
keyed on the raw status that was read. Zero rows affected means another request moved the
order first: TransitionConflictError, never a silent overwrite. Nothing is retried here.
"""
import logging
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from roorq.metrics import (
    order_transition_conflicts_total,
    order_transitions_rejected_total,
    order_transitions_total,
)
from roorq.order_state import (
    InvalidTransitionError,
    OrderStatus,
    get_order_status_label,
    normalize_order_status,
    validate_transition,
)
from roorq.queue import publish_notification

logger = logging.getLogger(__name__)


def with_status_label(row: dict) -> dict:
    """Copy of an order row with the display label for its status as `statusLabel`."""
    return {**row, "statusLabel": get_order_status_label(row.get("status"))}


class OrderNotFoundError(Exception):
    """Raised when the order row does not exist (or is not visible to the caller)."""


class TransitionConflictError(Exception):
    """Raised when the conditional write matched zero rows: the order changed since it was read."""
    def __init__(self, order_id: str, observed_status: str):
        self.order_id = order_id
        self.observed_status = observed_status
        super().__init__(f"Order {order_id} was updated concurrently (expected status {observed_status})")


async def transition_order(
    store,
    table: str,
    order_id: UUID | str,
    requested: OrderStatus | str,
    extra_fields: dict[str, Any] | None = None,
    *,
    current: dict | None = None,
) -> dict:
    """
    Move one order to `requested`. Returns the updated row.
    `current` may carry an already-fetched row to avoid a second read.
    Raises OrderNotFoundError, InvalidTransitionError, TransitionConflictError.
    """
    row = current if current is not None else await store.get_order(table, order_id)
    if row is None:
        raise OrderNotFoundError(str(order_id))

    observed_raw = row.get("status")
    current_status = normalize_order_status(observed_raw)
    try:
        target = validate_transition(current_status, requested)
    except InvalidTransitionError as e:
        order_transitions_rejected_total.labels(
            current_status=e.current_status.value,
            attempted_status=e.requested_status.value,
        ).inc()
        raise

    fields: dict[str, Any] = {
        "status": target.value,
        "updated_at": datetime.now(timezone.utc),
    }
    if extra_fields:
        fields.update(extra_fields)

    updated = await store.update_order_if_status(table, order_id, observed_raw, fields)
    if updated is None:
        order_transition_conflicts_total.labels(table=table).inc()
        logger.warning(
            "Conflicting update on %s id=%s: expected status %s, write skipped",
            table, order_id, observed_raw,
        )
        raise TransitionConflictError(str(order_id), observed_raw)

    order_transitions_total.labels(table=table, from_status=current_status.value, to_status=target.value).inc()
    logger.info("%s id=%s: %s -> %s", table, order_id, current_status.value, target.value)

    await publish_notification(
        "STATUS_UPDATE",
        {
            "table": table,
            "order_id": str(order_id),
            "old_status": current_status.value,
            "new_status": target.value,
        },
    )
    return updated
