"""
Double-submit CSRF cookie. The server never stores tokens: a mutating request is
accepted only if the token echoed in its body equals the auth_csrf cookie value.
This stops cross-site form posts; role checks in roorq.auth remain the authorization boundary.
"""
import logging
import secrets
from dataclasses import dataclass

from fastapi import Request, Response

from roorq.config import settings
from roorq.errors import CsrfError
from roorq.metrics import csrf_rejected_total

logger = logging.getLogger(__name__)

INVALID_CSRF_MESSAGE = "Invalid CSRF token."


@dataclass(frozen=True)
class CsrfCheck:
    ok: bool
    error: str | None = None


def use_secure_cookies(request: Request) -> bool:
    return settings.app_env == "production" or request.url.scheme == "https"


def get_csrf_cookie(request: Request) -> str | None:
    return request.cookies.get(settings.csrf_cookie_name) or None


def create_csrf_token() -> str:
    return secrets.token_hex(16)


def issue_or_reuse_token(request: Request, response: Response) -> str:
    existing = get_csrf_cookie(request)
    if existing:
        return existing
    token = create_csrf_token()
    response.set_cookie(
        settings.csrf_cookie_name,
        token,
        max_age=settings.csrf_max_age_seconds,
        path="/",
        samesite="lax",
        secure=use_secure_cookies(request),
    )
    return token


def validate_csrf_token(request: Request, token: str | None) -> CsrfCheck:
    cookie = get_csrf_cookie(request)
    if not token or not cookie or token != cookie:
        return CsrfCheck(ok=False, error=INVALID_CSRF_MESSAGE)
    return CsrfCheck(ok=True)


def enforce_csrf(request: Request, token: str | None) -> None:
    """Raise CsrfError (403) unless the token matches the cookie."""
    check = validate_csrf_token(request, token)
    if not check.ok:
        route = request.scope.get("route")
        csrf_rejected_total.labels(route=getattr(route, "path", request.url.path)).inc()
        logger.info("CSRF check failed on %s %s", request.method, request.url.path)
        raise CsrfError(check.error)
