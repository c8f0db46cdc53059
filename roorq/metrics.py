"""
Prometheus metrics: access denials, CSRF rejections, order transitions, checkout, notifications.
"""
from prometheus_client import Counter, generate_latest

# Access Control Guard
access_denied_total = Counter(
    "access_denied_total",
    "Total requests denied by the access guard",
    ["action", "reason"],
)

# CSRF Token Gate
csrf_rejected_total = Counter(
    "csrf_rejected_total",
    "Total mutating requests rejected for a missing or mismatched CSRF token",
    ["route"],
)

# Order Status Machine
order_transitions_total = Counter(
    "order_transitions_total",
    "Total order status transitions written",
    ["table", "from_status", "to_status"],
)
order_transitions_rejected_total = Counter(
    "order_transitions_rejected_total",
    "Total order status changes rejected as illegal transitions",
    ["current_status", "attempted_status"],
)
order_transition_conflicts_total = Counter(
    "order_transition_conflicts_total",
    "Total conditional status writes that lost a race (zero rows affected)",
    ["table"],
)

# Checkout / notifications
checkout_orders_total = Counter(
    "checkout_orders_total",
    "Total orders placed through checkout",
    ["payment_method"],
)
notifications_published_total = Counter(
    "notifications_published_total",
    "Total notification messages published for the email consumer",
    ["type"],
)


def get_metrics_content_type():
    return "text/plain; charset=utf-8; version=0.0.4"


def get_metrics_bytes():
    return generate_latest()
