"""
Access Control Guard.

Resolves the caller from the Supabase access token (Bearer header or sb-access-token cookie),
looks up the role through the get_user_role() database function, and gates admin / vendor
operations. API guards raise Unauthenticated / Forbidden; page guards raise RedirectRequired.
Every denial is written to the audit trail (best-effort) and counted in access_denied_total.
"""
import logging
from dataclasses import dataclass
from enum import Enum
from typing import NoReturn

import jwt
from fastapi import Depends, Request

from roorq.audit import log_auth_event
from roorq.config import settings
from roorq.db import Store, get_store
from roorq.errors import Forbidden, RedirectRequired, Unauthenticated
from roorq.metrics import access_denied_total

logger = logging.getLogger(__name__)


class Role(str, Enum):
    CUSTOMER = "customer"
    VENDOR = "vendor"
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"
    UNKNOWN = "unknown"

    @classmethod
    def parse(cls, value: str | None) -> "Role":
        """Unrecognised role strings map to UNKNOWN, which is never granted anything."""
        try:
            return cls(value)
        except ValueError:
            return cls.UNKNOWN


ADMIN_ROLES = frozenset({Role.ADMIN, Role.SUPER_ADMIN})
SUPER_ADMIN_ROLES = frozenset({Role.SUPER_ADMIN})


def is_admin_role(role: str | Role | None) -> bool:
    return Role.parse(role) in ADMIN_ROLES


def is_super_admin(role: str | Role | None) -> bool:
    return Role.parse(role) is Role.SUPER_ADMIN


@dataclass(frozen=True)
class SessionUser:
    id: str
    email: str | None


@dataclass(frozen=True)
class AdminUser:
    id: str
    email: str
    role: Role


# Page redirects, by failure reason
ADMIN_PAGE_REDIRECTS = {
    "not_authenticated": "/auth?error=unauthorized&message=Please+login+to+continue",
    "role_check_failed": "/?error=role-check-failed",
    "insufficient_role": "/?error=admin-access-denied&message=You+do+not+have+admin+privileges",
    "unknown_role": "/?error=admin-access-denied&message=You+do+not+have+admin+privileges",
}
VENDOR_PAGE_REDIRECTS = {
    "not_authenticated": "/auth?redirect=/sell/signup",
    "profile_not_found": "/sell",
    "not_vendor": "/sell",
}


def get_access_token(request: Request) -> str | None:
    header = request.headers.get("authorization", "")
    if header.lower().startswith("bearer "):
        token = header[7:].strip()
        if token:
            return token
    return request.cookies.get(settings.access_token_cookie) or None


def decode_access_token(token: str) -> SessionUser | None:
    """Verify a Supabase access token. Expired / tampered / wrong-audience tokens resolve to no session."""
    try:
        claims = jwt.decode(
            token,
            settings.supabase_jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
        )
    except jwt.PyJWTError as e:
        logger.info("Rejected access token: %s", e)
        return None
    user_id = claims.get("sub")
    if not user_id:
        return None
    return SessionUser(id=str(user_id), email=claims.get("email"))


async def get_current_user(request: Request) -> SessionUser | None:
    token = get_access_token(request)
    if not token:
        return None
    return decode_access_token(token)


async def _deny(
    store: Store,
    request: Request,
    *,
    action: str,
    reason: str,
    user: SessionUser | None,
    page: bool,
    redirects: dict[str, str],
    status: str = "failed",
) -> NoReturn:
    """Record the denial, then exit the handler: redirect for pages, 401/403 for APIs."""
    access_denied_total.labels(action=action, reason=reason).inc()
    await log_auth_event(
        store,
        request,
        action=action,
        status=status,
        user_id=user.id if user else None,
        identifier=user.email if user else None,
        metadata={"reason": reason, "path": request.url.path},
    )
    if page:
        raise RedirectRequired(redirects[reason])
    if reason == "not_authenticated":
        raise Unauthenticated()
    raise Forbidden()


async def check_role_access(
    request: Request,
    store: Store,
    allowed_roles: frozenset[Role],
    *,
    page: bool = False,
) -> AdminUser:
    action = "admin_access"
    user = await get_current_user(request)
    if user is None:
        await _deny(store, request, action=action, reason="not_authenticated", user=None, page=page,
                    redirects=ADMIN_PAGE_REDIRECTS)

    try:
        raw_role = await store.get_user_role(user.id)
    except Exception as e:
        logger.error("Failed to fetch user role for %s: %s", user.id, e)
        await _deny(store, request, action=action, reason="role_check_failed", user=user, page=page,
                    redirects=ADMIN_PAGE_REDIRECTS)

    role = Role.parse(raw_role)
    if role is Role.UNKNOWN:
        await _deny(store, request, action=action, reason="unknown_role", user=user, page=page,
                    redirects=ADMIN_PAGE_REDIRECTS, status="blocked")
    if role not in allowed_roles:
        await _deny(store, request, action=action, reason="insufficient_role", user=user, page=page,
                    redirects=ADMIN_PAGE_REDIRECTS)

    return AdminUser(id=user.id, email=user.email or "", role=role)


async def check_vendor_access(request: Request, store: Store, *, page: bool = False) -> dict:
    action = "vendor_access"
    user = await get_current_user(request)
    if user is None:
        await _deny(store, request, action=action, reason="not_authenticated", user=None, page=page,
                    redirects=VENDOR_PAGE_REDIRECTS)

    try:
        profile = await store.get_user_profile(user.id)
    except Exception as e:
        logger.error("Failed to load vendor profile for %s: %s", user.id, e)
        profile = None
    if not profile:
        await _deny(store, request, action=action, reason="profile_not_found", user=user, page=page,
                    redirects=VENDOR_PAGE_REDIRECTS)

    if profile.get("user_type") != Role.VENDOR.value:
        await _deny(store, request, action=action, reason="not_vendor", user=user, page=page,
                    redirects=VENDOR_PAGE_REDIRECTS)

    return profile


# ---- FastAPI dependencies ----

async def require_session(request: Request) -> SessionUser:
    user = await get_current_user(request)
    if user is None:
        raise Unauthenticated()
    return user


async def require_admin(request: Request, store: Store = Depends(get_store)) -> AdminUser:
    return await check_role_access(request, store, ADMIN_ROLES)


async def require_super_admin(request: Request, store: Store = Depends(get_store)) -> AdminUser:
    return await check_role_access(request, store, SUPER_ADMIN_ROLES)


async def require_admin_page(request: Request, store: Store = Depends(get_store)) -> AdminUser:
    return await check_role_access(request, store, ADMIN_ROLES, page=True)


async def require_vendor(request: Request, store: Store = Depends(get_store)) -> dict:
    return await check_vendor_access(request, store)


async def require_vendor_page(request: Request, store: Store = Depends(get_store)) -> dict:
    return await check_vendor_access(request, store, page=True)
