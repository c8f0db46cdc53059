"""
Sign-in surface: CSRF token issue, passwordless OTP request / verify, account recovery.
Every attempt is audited (success, failed, or blocked by the per-identifier rate limit).
"""
import logging
from urllib.parse import urlencode, urlsplit

from fastapi import APIRouter, Depends, Request, Response

from roorq.audit import log_auth_event
from roorq.config import settings
from roorq.csrf import enforce_csrf, issue_or_reuse_token, use_secure_cookies
from roorq.db import Store, get_store
from roorq.errors import BadRequest, CsrfError, TooManyRequests
from roorq.redis_client import apply_rate_limit, clear_rate_limit
from roorq.schemas import OtpRequest, OtpVerify, RecoveryRequest
from roorq.supabase_auth import AuthProviderError, send_otp, verify_otp

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])

DEFAULT_REDIRECT = "/"
ALLOWED_REDIRECT_PREFIXES = ("/", "/shop", "/checkout", "/profile", "/orders", "/admin", "/drops", "/products", "/cart")


def sanitize_redirect_path(redirect: str | None, origin: str | None = None) -> str:
    """Only same-origin paths under a known section survive; everything else becomes "/"."""
    if not redirect:
        return DEFAULT_REDIRECT
    if redirect.startswith("http"):
        if not origin:
            return DEFAULT_REDIRECT
        parts = urlsplit(redirect)
        if f"{parts.scheme}://{parts.netloc}" != origin:
            return DEFAULT_REDIRECT
        redirect = parts.path + (f"?{parts.query}" if parts.query else "")
        if parts.fragment:
            redirect += f"#{parts.fragment}"
    if not redirect.startswith("/") or redirect.startswith("//"):
        return DEFAULT_REDIRECT
    allowed = any(redirect == p or redirect.startswith(f"{p}/") for p in ALLOWED_REDIRECT_PREFIXES)
    return redirect if allowed else DEFAULT_REDIRECT


def _origin(request: Request) -> str:
    return str(request.base_url).rstrip("/")


def _callback_url(request: Request, redirect: str | None, **params: str) -> str:
    path = sanitize_redirect_path(redirect, _origin(request))
    # profile pages are not a landing target for email links
    if path.startswith("/profile"):
        path = DEFAULT_REDIRECT
    query = {"redirect": path, **{k: v for k, v in params.items() if v}}
    return f"{_origin(request)}/auth/callback?{urlencode(query)}"


async def _check_csrf(store: Store, request: Request, action: str, identifier: str, token: str | None) -> None:
    try:
        enforce_csrf(request, token)
    except CsrfError as e:
        await log_auth_event(store, request, action=action, status="failed", identifier=identifier,
                             metadata={"message": e.message})
        raise


def _retry_headers(retry_after: int | None) -> dict[str, str] | None:
    return {"Retry-After": str(retry_after)} if retry_after else None


@router.get("/csrf")
async def get_csrf_token(request: Request, response: Response) -> dict:
    """Issue the double-submit token (or return the one already in the auth_csrf cookie)."""
    return {"csrf": issue_or_reuse_token(request, response)}


@router.post("/otp")
async def request_otp(body: OtpRequest, request: Request, store: Store = Depends(get_store)) -> dict:
    """Send a sign-in / sign-up code by email or SMS. Limited per identifier."""
    action = "otp_request"
    identifier = body.identifier
    await _check_csrf(store, request, action, identifier, body.csrf)

    rate = await apply_rate_limit(
        identifier, action, settings.otp_request_max, settings.otp_request_window_seconds,
        block_seconds=settings.otp_request_window_seconds,
    )
    if not rate.allowed:
        await log_auth_event(store, request, action=action, status="blocked", identifier=identifier,
                             metadata={"retryAfter": rate.retry_after})
        raise TooManyRequests("Too many OTP requests. Please try again later.",
                              headers=_retry_headers(rate.retry_after))

    try:
        await send_otp(
            email=body.email,
            phone=body.phone,
            create_user=body.mode == "signup",
            redirect_to=_callback_url(request, body.redirect, ref=body.ref, csrf=body.csrf),
        )
    except AuthProviderError as e:
        await log_auth_event(store, request, action=action, status="failed", identifier=identifier,
                             metadata={"message": e.message})
        raise BadRequest(e.message)

    await log_auth_event(store, request, action=action, status="success", identifier=identifier)
    return {"success": True}


@router.post("/verify")
async def verify_code(
    body: OtpVerify,
    request: Request,
    response: Response,
    store: Store = Depends(get_store),
) -> dict:
    """
    Exchange the code for a session and set the session cookies.
    Failed codes count towards the limit; a success clears it.
    """
    action = "otp_verify"
    identifier = body.identifier
    await _check_csrf(store, request, action, identifier, body.csrf)

    limits = (identifier, action, settings.otp_verify_max, settings.otp_verify_window_seconds)
    check = await apply_rate_limit(*limits, block_seconds=settings.otp_verify_window_seconds, increment=0)
    if not check.allowed:
        await log_auth_event(store, request, action=action, status="blocked", identifier=identifier,
                             metadata={"retryAfter": check.retry_after})
        raise TooManyRequests("Too many attempts. Try again later.", headers=_retry_headers(check.retry_after))

    try:
        session = await verify_otp(token=body.token, email=body.email, phone=body.phone)
    except AuthProviderError as e:
        failure = await apply_rate_limit(*limits, block_seconds=settings.otp_verify_window_seconds)
        await log_auth_event(store, request, action=action, status="failed" if failure.allowed else "blocked",
                             identifier=identifier, metadata={"message": e.message})
        if not failure.allowed:
            raise TooManyRequests(e.message or "Invalid code.", headers=_retry_headers(failure.retry_after))
        raise BadRequest(e.message or "Invalid code.")

    await clear_rate_limit(identifier, action)
    user_id = (session.get("user") or {}).get("id")
    await log_auth_event(store, request, action=action, status="success", user_id=user_id, identifier=identifier)

    secure = use_secure_cookies(request)
    response.set_cookie(
        settings.access_token_cookie, session["access_token"],
        max_age=int(session.get("expires_in") or 3600), path="/", httponly=True, samesite="lax", secure=secure,
    )
    if session.get("refresh_token"):
        response.set_cookie(
            settings.refresh_token_cookie, session["refresh_token"],
            max_age=60 * 60 * 24 * 30, path="/", httponly=True, samesite="lax", secure=secure,
        )
    return {"success": True}


@router.post("/recovery")
async def request_recovery(body: RecoveryRequest, request: Request, store: Store = Depends(get_store)) -> dict:
    """Email a sign-in link to an existing account. Never creates users."""
    action = "account_recovery"
    await _check_csrf(store, request, action, body.email, body.csrf)

    rate = await apply_rate_limit(
        body.email, "otp_recovery", settings.recovery_request_max, settings.recovery_request_window_seconds,
        block_seconds=settings.recovery_request_window_seconds,
    )
    if not rate.allowed:
        await log_auth_event(store, request, action=action, status="blocked", identifier=body.email,
                             metadata={"retryAfter": rate.retry_after})
        raise TooManyRequests("Too many recovery requests. Please try again later.",
                              headers=_retry_headers(rate.retry_after))

    try:
        await send_otp(
            email=body.email,
            create_user=False,
            redirect_to=_callback_url(request, body.redirect, recovery="1", csrf=body.csrf),
        )
    except AuthProviderError as e:
        await log_auth_event(store, request, action=action, status="failed", identifier=body.email,
                             metadata={"message": e.message})
        raise BadRequest(e.message)

    await log_auth_event(store, request, action=action, status="success", identifier=body.email)
    return {"success": True}
