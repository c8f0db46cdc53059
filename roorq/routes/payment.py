from fastapi import APIRouter
from fastapi.responses import JSONResponse

router = APIRouter(prefix="/api/payment", tags=["payment"])

COD_ONLY_MESSAGE = "UPI payment is disabled. Please use Cash on Delivery (COD)."


@router.post("/create-order")
async def create_payment_order() -> JSONResponse:
    """Online payments are switched off; only cash on delivery is accepted."""
    return JSONResponse(status_code=403, content={"error": COD_ONLY_MESSAGE})


@router.post("/verify")
async def verify_payment() -> JSONResponse:
    return JSONResponse(status_code=403, content={"error": COD_ONLY_MESSAGE})
