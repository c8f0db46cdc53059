import logging

import asyncpg
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from roorq.audit import get_client_ip
from roorq.auth import SessionUser, require_session
from roorq.config import settings
from roorq.csrf import enforce_csrf
from roorq.db import STORE_ERRORS, Store, get_store
from roorq.errors import BackendError, BadRequest, TooManyRequests
from roorq.metrics import checkout_orders_total
from roorq.observability import get_request_id
from roorq.queue import publish_notification
from roorq.redis_client import RateLimitResult, apply_rate_limit
from roorq.schemas import CheckoutRequest, CheckoutResult, json_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["checkout"])

# raise_exception() inside create_marketplace_order (stock, drop closed, ...) -> client error
CLIENT_ERROR_SQLSTATE = "P0001"


async def checkout_rate_limit(request: Request) -> RateLimitResult:
    return await apply_rate_limit(
        get_client_ip(request) or "unknown",
        "checkout",
        settings.checkout_rate_limit_max,
        settings.checkout_rate_limit_window_seconds,
    )


async def enforce_checkout_rate_limit(rate: RateLimitResult = Depends(checkout_rate_limit)) -> None:
    if not rate.allowed:
        headers = {"Retry-After": str(rate.retry_after)} if rate.retry_after else None
        raise TooManyRequests("Too many checkout attempts. Please try again shortly.", headers=headers)


@router.post("/checkout", dependencies=[Depends(enforce_checkout_rate_limit)])
async def checkout(
    request: Request,
    user: SessionUser = Depends(require_session),
    body: CheckoutRequest = Depends(json_body(CheckoutRequest)),
    store: Store = Depends(get_store),
) -> JSONResponse:
    """
    Place a cash-on-delivery order for the cart. Stock, pricing and vendor split happen
    inside create_marketplace_order; this handler validates, authorises and relays.
    """
    request_id = get_request_id(request)
    enforce_csrf(request, body.csrf)

    shipping_address = {
        "hostel": body.delivery_hostel,
        "room": body.delivery_room,
        "phone": body.phone,
        "campus": settings.campus_name,
    }
    items = [{"productId": str(i.product_id), "quantity": i.quantity} for i in body.items]

    try:
        data = await store.create_marketplace_order(user.id, items, shipping_address, None, body.payment_method)
    except asyncpg.PostgresError as e:
        logger.error("Checkout RPC failed request_id=%s: %s", request_id, e)
        if getattr(e, "sqlstate", None) == CLIENT_ERROR_SQLSTATE:
            raise BadRequest(str(e) or "Checkout failed.")
        raise BackendError("Checkout failed.")
    except STORE_ERRORS:
        logger.exception("Checkout RPC failed request_id=%s", request_id)
        raise BackendError("Checkout failed.")

    try:
        result = CheckoutResult.model_validate(data)
    except ValidationError:
        logger.error("Checkout response validation failed request_id=%s", request_id)
        raise BackendError("Unexpected checkout response. Please try again.")

    checkout_orders_total.labels(payment_method=body.payment_method).inc()
    logger.info("Order %s placed by %s request_id=%s", result.order_number, user.id, request_id)

    await publish_notification(
        "ORDER_CONFIRMATION",
        {
            "order_id": str(result.parent_order_id),
            "order_number": result.order_number,
            "total_amount": result.total_amount,
            "email": user.email,
            "delivery_hostel": body.delivery_hostel,
            "delivery_room": body.delivery_room,
        },
    )

    return JSONResponse(
        status_code=200,
        content={
            "orderId": str(result.parent_order_id),
            "orderNumber": result.order_number,
            "totalAmount": result.total_amount,
        },
    )
