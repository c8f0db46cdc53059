"""
Roorq storefront API.
Run: python -m roorq.main
"""
import logging
import sys
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, RedirectResponse, Response

from roorq.config import settings
from roorq.db import STORE_ERRORS, close_pool
from roorq.errors import ApiError, RedirectRequired
from roorq.metrics import get_metrics_bytes, get_metrics_content_type
from roorq.observability import get_request_id
from roorq.order_state import InvalidTransitionError
from roorq.orders import OrderNotFoundError, TransitionConflictError
from roorq.redis_client import close_redis, get_redis
from roorq.routes import admin, auth, checkout, pages, payment, vendor

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(message)s",
    stream=sys.stdout,
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    await get_redis()
    yield
    await close_redis()
    await close_pool()


app = FastAPI(title="Roorq Storefront API", lifespan=lifespan)
app.include_router(auth.router)
app.include_router(admin.router)
app.include_router(vendor.router)
app.include_router(checkout.router)
app.include_router(payment.router)
app.include_router(pages.router)


@app.middleware("http")
async def request_id_header(request: Request, call_next):
    request_id = get_request_id(request)
    response = await call_next(request)
    response.headers["x-request-id"] = request_id
    return response


def _error(status_code: int, message: str, headers: dict[str, str] | None = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message}, headers=headers)


@app.exception_handler(ApiError)
async def api_error_handler(request: Request, exc: ApiError) -> JSONResponse:
    return _error(exc.status_code, exc.message, exc.headers)


@app.exception_handler(RedirectRequired)
async def redirect_handler(request: Request, exc: RedirectRequired) -> RedirectResponse:
    return RedirectResponse(url=exc.location, status_code=303)


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """400 with the first violated field's message."""
    errors = exc.errors()
    if not errors:
        return _error(400, "Invalid request")
    first = errors[0]
    message = str(first.get("msg") or "Invalid request").removeprefix("Value error, ")
    loc = [str(part) for part in first.get("loc", ()) if part != "body"]
    if first.get("type") == "json_invalid":
        # decode errors carry the character offset, not a field
        loc = [part for part in loc if not part.isdigit()]
    if loc:
        message = f"{'.'.join(loc)}: {message}"
    return _error(400, message)


@app.exception_handler(InvalidTransitionError)
async def invalid_transition_handler(request: Request, exc: InvalidTransitionError) -> JSONResponse:
    return _error(400, str(exc))


@app.exception_handler(TransitionConflictError)
async def transition_conflict_handler(request: Request, exc: TransitionConflictError) -> JSONResponse:
    return _error(409, "Order was updated by another request. Reload and try again.")


@app.exception_handler(OrderNotFoundError)
async def order_not_found_handler(request: Request, exc: OrderNotFoundError) -> JSONResponse:
    return _error(404, "Order not found")


async def store_error_handler(request: Request, exc: Exception) -> JSONResponse:
    logger.error("Data store failure request_id=%s", get_request_id(request), exc_info=exc)
    return _error(500, "Internal server error")


for _store_error in STORE_ERRORS:
    app.add_exception_handler(_store_error, store_error_handler)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.get("/metrics")
async def metrics() -> Response:
    """Prometheus scrape endpoint."""
    return Response(
        content=get_metrics_bytes(),
        media_type=get_metrics_content_type(),
    )


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
