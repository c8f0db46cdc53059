import logging
from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from roorq.auth import AdminUser, require_admin, require_super_admin
from roorq.csrf import enforce_csrf
from roorq.db import STORE_ERRORS, Store, get_store
from roorq.errors import BackendError, BadRequest, NotFound
from roorq.observability import get_request_id
from roorq.order_state import OrderStatus, normalize_order_status
from roorq.orders import transition_order, with_status_label
from roorq.schemas import (
    AdminOrderUpdate,
    AdminUserRoleUpdate,
    AdminVendorUpdate,
    RiderCreate,
    RiderUpdate,
    json_body,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/admin", tags=["admin"])


def _order_payload(order: dict) -> dict:
    return {"success": True, "order": with_status_label(order)}


@router.get("/vendors")
async def list_vendors(
    request: Request,
    admin: AdminUser = Depends(require_admin),
    store: Store = Depends(get_store),
) -> JSONResponse:
    try:
        vendors = await store.list_vendors()
    except STORE_ERRORS:
        logger.exception("Loading vendors failed request_id=%s", get_request_id(request))
        raise BackendError("Failed to load vendors.")
    return JSONResponse(status_code=200, content=jsonable_encoder({"vendors": vendors}))


@router.patch("/vendors/{vendor_id}")
async def update_vendor_status(
    vendor_id: UUID,
    request: Request,
    admin: AdminUser = Depends(require_admin),
    body: AdminVendorUpdate = Depends(json_body(AdminVendorUpdate)),
    store: Store = Depends(get_store),
) -> JSONResponse:
    """KYC decision: approve / reject / suspend a vendor. Stamps approval or rejection time."""
    enforce_csrf(request, body.csrf)

    now = datetime.now(timezone.utc)
    fields: dict = {
        "vendor_status": body.status,
        "rejection_reason": body.reason,
    }
    if body.status == "approved":
        fields["vendor_approved_at"] = now
    elif body.status == "rejected":
        fields["vendor_rejected_at"] = now

    try:
        updated = await store.update_user(str(vendor_id), fields)
    except STORE_ERRORS:
        logger.exception("Vendor status update failed request_id=%s", get_request_id(request))
        raise BackendError("Failed to update vendor")
    if not updated:
        raise NotFound("Vendor not found")

    logger.info("Vendor %s set to %s by admin %s", vendor_id, body.status, admin.id)
    return JSONResponse(status_code=200, content={"success": True})


@router.get("/users")
async def list_users(
    request: Request,
    admin: AdminUser = Depends(require_admin),
    store: Store = Depends(get_store),
) -> JSONResponse:
    try:
        users = await store.list_users()
    except STORE_ERRORS:
        logger.exception("Loading users failed request_id=%s", get_request_id(request))
        raise BackendError("Failed to load users.")
    return JSONResponse(status_code=200, content=jsonable_encoder({"users": users}))


@router.patch("/users")
async def update_user_role(
    request: Request,
    admin: AdminUser = Depends(require_super_admin),
    body: AdminUserRoleUpdate = Depends(json_body(AdminUserRoleUpdate)),
    store: Store = Depends(get_store),
) -> JSONResponse:
    enforce_csrf(request, body.csrf)

    if str(body.user_id) == admin.id and body.role != "super_admin":
        raise BadRequest("Cannot remove your own super admin access.")

    try:
        updated = await store.update_user(str(body.user_id), {"role": body.role})
    except STORE_ERRORS:
        logger.exception("Role update failed request_id=%s", get_request_id(request))
        raise BackendError("Failed to update role.")
    if not updated:
        raise NotFound("User not found")

    logger.info("User %s role set to %s by %s", body.user_id, body.role, admin.id)
    return JSONResponse(status_code=200, content={"success": True})


@router.patch("/orders/{order_id}")
async def update_order(
    order_id: UUID,
    request: Request,
    admin: AdminUser = Depends(require_admin),
    body: AdminOrderUpdate = Depends(json_body(AdminOrderUpdate)),
    store: Store = Depends(get_store),
) -> JSONResponse:
    """
    Admin order actions:
    - collect_payment (or status=payment_collected): delivered -> payment_collected
    - cancel (or status=cancelled): any non-terminal -> cancelled
    - status: any other legal transition; dispatch needs a rider
    - riderId alone: (un)assign the rider
    Every status change is a conditional write on the status that was read.
    """
    request_id = get_request_id(request)
    enforce_csrf(request, body.csrf)

    try:
        if body.rider_id is not None:
            rider = await store.get_rider(body.rider_id)
            if not rider:
                raise NotFound("Rider not found")
            if not rider.get("is_active"):
                raise BadRequest("Rider is inactive")

        order = await store.get_order("orders", order_id)
        if not order:
            raise NotFound("Order not found")

        now = datetime.now(timezone.utc)

        if body.action == "collect_payment" or body.status == OrderStatus.PAYMENT_COLLECTED:
            if normalize_order_status(order.get("status")) != OrderStatus.DELIVERED:
                raise BadRequest("Payment can only be collected after delivery")
            collected_by = body.rider_id or order.get("rider_id")
            updated = await transition_order(
                store,
                "orders",
                order_id,
                OrderStatus.PAYMENT_COLLECTED,
                {
                    "payment_status": "collected",
                    "payment_collected_by": collected_by,
                    "payment_collected_at": now,
                },
                current=order,
            )
            return JSONResponse(status_code=200, content=jsonable_encoder(_order_payload(updated)))

        if body.action == "cancel" or body.status == OrderStatus.CANCELLED:
            updated = await transition_order(
                store,
                "orders",
                order_id,
                OrderStatus.CANCELLED,
                {
                    "cancellation_reason": body.cancellation_reason or "admin_cancelled",
                    "cancelled_at": now,
                },
                current=order,
            )
            return JSONResponse(status_code=200, content=jsonable_encoder(_order_payload(updated)))

        if body.status:
            rider_id = body.rider_id if body.rider_provided else order.get("rider_id")
            if body.status == OrderStatus.OUT_FOR_DELIVERY and not rider_id:
                raise BadRequest("Assign a rider before dispatch")
            extra = {"rider_id": body.rider_id} if body.rider_provided else None
            updated = await transition_order(store, "orders", order_id, body.status, extra, current=order)
        else:
            updated = await store.update_order("orders", order_id, {"rider_id": body.rider_id, "updated_at": now})
            if not updated:
                raise NotFound("Order not found")
    except STORE_ERRORS:
        logger.exception("Order update failed order_id=%s request_id=%s", order_id, request_id)
        raise BackendError("Update failed")

    return JSONResponse(status_code=200, content=jsonable_encoder(_order_payload(updated)))


@router.get("/riders")
async def list_riders(
    request: Request,
    admin: AdminUser = Depends(require_admin),
    store: Store = Depends(get_store),
) -> JSONResponse:
    try:
        riders = await store.list_riders()
    except STORE_ERRORS:
        logger.exception("Loading riders failed request_id=%s", get_request_id(request))
        raise BackendError("Failed to load riders.")
    return JSONResponse(status_code=200, content=jsonable_encoder({"riders": riders}))


@router.post("/riders")
async def create_rider(
    request: Request,
    admin: AdminUser = Depends(require_admin),
    body: RiderCreate = Depends(json_body(RiderCreate)),
    store: Store = Depends(get_store),
) -> JSONResponse:
    """Add a delivery rider. New riders start active."""
    enforce_csrf(request, body.csrf)

    try:
        rider = await store.create_rider(body.name, body.phone)
    except STORE_ERRORS:
        logger.exception("Creating rider failed request_id=%s", get_request_id(request))
        raise BackendError("Failed to add rider.")

    logger.info("Rider %s added by admin %s", rider.get("id"), admin.id)
    return JSONResponse(status_code=201, content=jsonable_encoder({"success": True, "rider": rider}))


@router.patch("/riders/{rider_id}")
async def set_rider_active(
    rider_id: UUID,
    request: Request,
    admin: AdminUser = Depends(require_admin),
    body: RiderUpdate = Depends(json_body(RiderUpdate)),
    store: Store = Depends(get_store),
) -> JSONResponse:
    enforce_csrf(request, body.csrf)

    try:
        rider = await store.set_rider_active(rider_id, body.is_active)
    except STORE_ERRORS:
        logger.exception("Rider update failed request_id=%s", get_request_id(request))
        raise BackendError("Failed to update rider.")
    if not rider:
        raise NotFound("Rider not found")

    logger.info("Rider %s active=%s set by admin %s", rider_id, body.is_active, admin.id)
    return JSONResponse(status_code=200, content=jsonable_encoder({"success": True, "rider": rider}))


@router.get("/referrals")
async def list_referrals(
    request: Request,
    admin: AdminUser = Depends(require_admin),
    store: Store = Depends(get_store),
) -> JSONResponse:
    try:
        referrals = await store.list_referrals()
        rewards = await store.list_referral_rewards()
    except STORE_ERRORS:
        logger.exception("Loading referrals failed request_id=%s", get_request_id(request))
        raise BackendError("Failed to load referrals.")
    return JSONResponse(
        status_code=200,
        content=jsonable_encoder({"referrals": referrals, "rewards": rewards}),
    )
