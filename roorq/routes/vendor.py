import logging
from datetime import datetime, timezone
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse

from roorq.auth import SessionUser, require_session, require_vendor
from roorq.csrf import enforce_csrf
from roorq.db import STORE_ERRORS, Store, get_store
from roorq.errors import BackendError, NotFound
from roorq.observability import get_request_id
from roorq.orders import transition_order, with_status_label
from roorq.schemas import VendorBankingUpdate, VendorOrderUpdate, VendorProfileUpdate, VendorSignup, json_body

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/vendor", tags=["vendor"])

ONBOARDING_COMPLETE_STEP = 5


def _url(value) -> str | None:
    return str(value) if value is not None else None


@router.patch("/profile")
async def update_profile(
    request: Request,
    vendor: dict = Depends(require_vendor),
    body: VendorProfileUpdate = Depends(json_body(VendorProfileUpdate)),
    store: Store = Depends(get_store),
) -> JSONResponse:
    enforce_csrf(request, body.csrf)

    fields = {
        "store_name": body.store_name,
        "store_description": body.store_description,
        "store_logo_url": _url(body.store_logo_url),
        "store_banner_url": _url(body.store_banner_url),
        "business_name": body.business_name or body.store_name,
        "business_category": body.business_category,
        "business_email": body.business_email,
        "business_phone": body.business_phone,
    }
    try:
        await store.update_user(str(vendor["id"]), fields)
    except STORE_ERRORS:
        logger.exception("Vendor profile update failed request_id=%s", get_request_id(request))
        raise BackendError("Failed to update profile")
    return JSONResponse(status_code=200, content={"success": True})


@router.patch("/banking")
async def update_banking(
    request: Request,
    vendor: dict = Depends(require_vendor),
    body: VendorBankingUpdate = Depends(json_body(VendorBankingUpdate)),
    store: Store = Depends(get_store),
) -> JSONResponse:
    enforce_csrf(request, body.csrf)

    fields = {
        "bank_account_number": body.bank_account_number,
        "bank_ifsc": body.bank_ifsc,
        "bank_account_name": body.bank_account_name,
        "upi_id": body.upi_id,
    }
    try:
        await store.update_user(str(vendor["id"]), fields)
    except STORE_ERRORS:
        logger.exception("Vendor banking update failed request_id=%s", get_request_id(request))
        raise BackendError("Failed to update banking")
    return JSONResponse(status_code=200, content={"success": True})


@router.post("/register")
async def register_vendor(
    request: Request,
    user: SessionUser = Depends(require_session),
    body: VendorSignup = Depends(json_body(VendorSignup)),
    store: Store = Depends(get_store),
) -> JSONResponse:
    """
    Seller signup: any signed-in user becomes a vendor under_review.
    KYC documents are queued as pending for admin review.
    """
    enforce_csrf(request, body.csrf)

    pickup = body.pickup_address.model_dump(by_alias=True, exclude_none=True) if body.pickup_address else None
    return_address = body.return_address.model_dump(by_alias=True, exclude_none=True) if body.return_address else pickup

    fields = {
        "full_name": body.full_name,
        "phone": body.phone,
        "user_type": "vendor",
        "vendor_status": "under_review",
        "vendor_registered_at": datetime.now(timezone.utc),
        "business_name": body.business_name,
        "business_type": body.business_type,
        "business_category": body.business_category,
        "business_email": body.business_email,
        "business_phone": body.business_phone,
        "pan_number": body.pan_number,
        "gstin": body.gstin,
        "store_name": body.store_name or body.business_name,
        "store_description": body.store_description,
        "bank_account_number": body.bank_account_number,
        "bank_ifsc": body.bank_ifsc,
        "bank_account_name": body.bank_account_name,
        "upi_id": body.upi_id,
        "pickup_address": pickup,
        "return_address": return_address,
        "onboarding_step": ONBOARDING_COMPLETE_STEP,
    }
    request_id = get_request_id(request)
    try:
        await store.update_user(user.id, fields)
    except STORE_ERRORS:
        logger.exception("Vendor signup failed request_id=%s", request_id)
        raise BackendError("Failed to update vendor profile")

    if body.documents:
        documents = [
            {
                "vendor_id": user.id,
                "document_type": doc.document_type,
                "document_url": str(doc.document_url),
                "document_number": doc.document_number,
                "status": "pending",
            }
            for doc in body.documents
        ]
        try:
            await store.insert_vendor_documents(documents)
        except STORE_ERRORS:
            logger.exception("Saving vendor documents failed request_id=%s", request_id)
            raise BackendError("Failed to save documents")

    logger.info("Vendor signup submitted user_id=%s documents=%d", user.id, len(body.documents or []))
    return JSONResponse(status_code=200, content={"success": True})


@router.patch("/orders/{order_id}")
async def update_vendor_order(
    order_id: UUID,
    request: Request,
    vendor: dict = Depends(require_vendor),
    body: VendorOrderUpdate = Depends(json_body(VendorOrderUpdate)),
    store: Store = Depends(get_store),
) -> JSONResponse:
    """Vendor fulfilment update on its own vendor_orders row: status and / or tracking details."""
    enforce_csrf(request, body.csrf)

    tracking: dict = {}
    if "tracking_number" in body.model_fields_set:
        tracking["tracking_number"] = body.tracking_number or None
    if "tracking_url" in body.model_fields_set:
        tracking["tracking_url"] = _url(body.tracking_url)

    try:
        order = await store.get_order("vendor_orders", order_id)
        # Other vendors' orders are reported as missing, not forbidden.
        if not order or str(order.get("vendor_id")) != str(vendor["id"]):
            raise NotFound("Order not found")

        if body.status:
            updated = await transition_order(
                store, "vendor_orders", order_id, body.status, tracking or None, current=order,
            )
        else:
            tracking["updated_at"] = datetime.now(timezone.utc)
            updated = await store.update_order("vendor_orders", order_id, tracking)
            if not updated:
                raise NotFound("Order not found")
    except STORE_ERRORS:
        logger.exception("Vendor order update failed order_id=%s request_id=%s", order_id, get_request_id(request))
        raise BackendError("Failed to update order")

    content = {"success": True, "order": with_status_label(updated)}
    return JSONResponse(status_code=200, content=jsonable_encoder(content))


@router.get("/payouts")
async def list_payouts(
    request: Request,
    vendor: dict = Depends(require_vendor),
    store: Store = Depends(get_store),
) -> JSONResponse:
    try:
        payouts = await store.list_vendor_payouts(str(vendor["id"]))
    except STORE_ERRORS:
        logger.exception("Loading payouts failed request_id=%s", get_request_id(request))
        raise BackendError("Failed to load payouts.")
    return JSONResponse(status_code=200, content=jsonable_encoder({"payouts": payouts}))


@router.get("/payouts/{payout_id}")
async def get_payout(
    payout_id: UUID,
    request: Request,
    vendor: dict = Depends(require_vendor),
    store: Store = Depends(get_store),
) -> JSONResponse:
    try:
        payout = await store.get_vendor_payout(str(vendor["id"]), payout_id)
    except STORE_ERRORS:
        logger.exception("Loading payout failed request_id=%s", get_request_id(request))
        raise BackendError("Failed to load payout.")
    if not payout:
        raise NotFound("Payout not found")
    return JSONResponse(status_code=200, content=jsonable_encoder({"payout": payout}))


@router.get("/analytics")
async def get_analytics(
    request: Request,
    vendor: dict = Depends(require_vendor),
    store: Store = Depends(get_store),
) -> JSONResponse:
    """Last seven daily rows of vendor_analytics plus their totals."""
    try:
        rows = await store.list_vendor_analytics(str(vendor["id"]), limit=7)
    except STORE_ERRORS:
        logger.exception("Loading analytics failed request_id=%s", get_request_id(request))
        raise BackendError("Failed to load analytics.")

    totals = {"gross": 0.0, "net": 0.0, "orders": 0}
    for row in rows:
        totals["gross"] += float(row.get("gross_sales") or 0)
        totals["net"] += float(row.get("net_revenue") or 0)
        totals["orders"] += int(row.get("orders_received") or 0)

    return JSONResponse(status_code=200, content=jsonable_encoder({"analytics": rows, "totals": totals}))
