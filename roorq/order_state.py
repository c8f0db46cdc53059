"""
Order lifecycle state machine. Valid transitions enforce the COD fulfilment flow:
pending -> confirmed (packed) -> out_for_delivery -> delivered -> payment_collected.
Pure validation only; persistence and the conditional write live in roorq.orders.
"""
import logging
from enum import Enum

logger = logging.getLogger(__name__)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    OUT_FOR_DELIVERY = "out_for_delivery"
    DELIVERED = "delivered"
    PAYMENT_COLLECTED = "payment_collected"
    CANCELLED = "cancelled"


ORDER_STATUS_LABELS: dict[OrderStatus, str] = {
    OrderStatus.PENDING: "Pending",
    OrderStatus.CONFIRMED: "Packed",
    OrderStatus.OUT_FOR_DELIVERY: "Dispatched",
    OrderStatus.DELIVERED: "Delivered",
    OrderStatus.PAYMENT_COLLECTED: "Payment Collected",
    OrderStatus.CANCELLED: "Cancelled",
}

LEGACY_STATUS_MAP: dict[str, OrderStatus] = {
    "placed": OrderStatus.PENDING,
    "reserved": OrderStatus.PENDING,
    "packed": OrderStatus.CONFIRMED,
}

# Current status -> allowed next status
ORDER_STATUS_FLOW: dict[OrderStatus, list[OrderStatus]] = {
    OrderStatus.PENDING: [OrderStatus.CONFIRMED, OrderStatus.CANCELLED],
    OrderStatus.CONFIRMED: [OrderStatus.OUT_FOR_DELIVERY, OrderStatus.CANCELLED],
    OrderStatus.OUT_FOR_DELIVERY: [OrderStatus.DELIVERED, OrderStatus.CANCELLED],
    OrderStatus.DELIVERED: [OrderStatus.PAYMENT_COLLECTED],
    OrderStatus.PAYMENT_COLLECTED: [],  # terminal
    OrderStatus.CANCELLED: [],  # terminal
}

TERMINAL_STATUSES = frozenset(s for s, nxt in ORDER_STATUS_FLOW.items() if not nxt)


class InvalidTransitionError(Exception):
    """Raised when the requested status is not reachable from the current one. Nothing is written."""
    def __init__(self, current_status: OrderStatus, requested_status: OrderStatus):
        self.current_status = current_status
        self.requested_status = requested_status
        super().__init__(f"Invalid status transition: {current_status.value} -> {requested_status.value}")


def normalize_order_status(status: str | OrderStatus | None) -> OrderStatus:
    """
    Map a stored status onto the canonical enum.
    Legacy aliases are translated; anything unrecognised falls back to pending (logged).
    """
    if isinstance(status, OrderStatus):
        return status
    raw = status or ""
    if raw in LEGACY_STATUS_MAP:
        return LEGACY_STATUS_MAP[raw]
    try:
        return OrderStatus(raw)
    except ValueError:
        logger.warning("Unknown order status %r, treating as pending", status)
        return OrderStatus.PENDING


def get_order_status_label(status: str | OrderStatus | None) -> str:
    return ORDER_STATUS_LABELS[normalize_order_status(status)]


def is_valid_transition(current: str | OrderStatus, requested: str | OrderStatus) -> bool:
    """True if requested is allowed after current (both normalised first)."""
    allowed = ORDER_STATUS_FLOW[normalize_order_status(current)]
    return normalize_order_status(requested) in allowed


def validate_transition(current: str | OrderStatus, requested: str | OrderStatus) -> OrderStatus:
    """Return the canonical target status or raise InvalidTransitionError."""
    current_status = normalize_order_status(current)
    requested_status = normalize_order_status(requested)
    if requested_status not in ORDER_STATUS_FLOW[current_status]:
        raise InvalidTransitionError(current_status, requested_status)
    return requested_status
