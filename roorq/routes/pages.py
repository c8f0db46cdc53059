"""
Dashboard data for the admin and seller pages. Guards redirect instead of returning 401/403.
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from roorq.auth import AdminUser, require_admin_page, require_vendor_page
from roorq.db import STORE_ERRORS, Store, get_store
from roorq.errors import BackendError
from roorq.observability import get_request_id

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pages"])

ADMIN_PENDING_STATUSES = ["pending", "confirmed", "processing", "ready_to_ship", "out_for_delivery"]
SELLER_PENDING_STATUSES = ["pending", "confirmed", "processing", "ready_to_ship"]


@router.get("/admin")
async def admin_dashboard(
    request: Request,
    admin: AdminUser = Depends(require_admin_page),
    store: Store = Depends(get_store),
) -> JSONResponse:
    start_of_day = datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)
    try:
        pending_orders = await store.count_vendor_orders(ADMIN_PENDING_STATUSES)
        approved_products = await store.count_products(approval_status="approved")
        recent_orders = await store.list_recent_parent_orders(limit=5)
        today_revenue = await store.sum_paid_orders_since(start_of_day)
    except STORE_ERRORS:
        logger.exception("Admin dashboard failed request_id=%s", get_request_id(request))
        raise BackendError()

    return JSONResponse(
        status_code=200,
        content=jsonable_encoder({
            "admin": {"id": admin.id, "email": admin.email, "role": admin.role.value},
            "pendingOrders": pending_orders,
            "approvedProducts": approved_products,
            "recentOrders": recent_orders,
            "todayRevenue": today_revenue,
        }),
    )


@router.get("/seller")
async def seller_dashboard(
    request: Request,
    vendor: dict = Depends(require_vendor_page),
    store: Store = Depends(get_store),
) -> JSONResponse:
    vendor_id = str(vendor["id"])
    try:
        total_products = await store.count_products(vendor_id=vendor_id)
        pending_orders = await store.count_vendor_orders(SELLER_PENDING_STATUSES, vendor_id=vendor_id)
        revenue = await store.sum_vendor_order_subtotals(vendor_id, "delivered")
        notifications = await store.list_vendor_notifications(vendor_id, limit=5)
    except STORE_ERRORS:
        logger.exception("Seller dashboard failed request_id=%s", get_request_id(request))
        raise BackendError()

    return JSONResponse(
        status_code=200,
        content=jsonable_encoder({
            "storeName": vendor.get("store_name") or "Your store",
            "vendorStatus": vendor.get("vendor_status"),
            "totalProducts": total_products,
            "pendingOrders": pending_orders,
            "revenue": revenue,
            "notifications": notifications,
        }),
    )
