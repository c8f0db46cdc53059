"""
Supabase Auth (GoTrue) REST calls used by the OTP sign-in and account recovery routes.
Blocking urllib calls run in a worker thread.
"""
import asyncio
import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any

from roorq.config import settings

logger = logging.getLogger(__name__)


class AuthProviderError(Exception):
    """The auth provider refused the request (bad code, unknown user, provider down)."""
    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


def _error_message(raw: bytes) -> str | None:
    try:
        body = json.loads(raw.decode() or "{}")
    except ValueError:
        return None
    if not isinstance(body, dict):
        return None
    return body.get("msg") or body.get("error_description") or body.get("message") or body.get("error")


def _post(path: str, body: dict, query: dict[str, str] | None = None) -> dict:
    url = f"{settings.supabase_url.rstrip('/')}/auth/v1/{path}"
    if query:
        url = f"{url}?{urllib.parse.urlencode(query)}"
    req = urllib.request.Request(
        url,
        data=json.dumps(body).encode(),
        headers={
            "Content-Type": "application/json",
            "apikey": settings.supabase_anon_key,
            "Authorization": f"Bearer {settings.supabase_anon_key}",
        },
        method="POST",
    )
    try:
        with urllib.request.urlopen(req, timeout=settings.supabase_auth_timeout_seconds) as resp:
            raw = resp.read()
    except urllib.error.HTTPError as e:
        message = _error_message(e.read()) or f"Auth request failed ({e.code})"
        raise AuthProviderError(message, e.code) from e
    except (urllib.error.URLError, OSError) as e:
        logger.error("Auth provider unreachable at %s: %s", path, e)
        raise AuthProviderError("Authentication service unavailable. Please try again.") from e
    return json.loads(raw.decode() or "{}")


async def send_otp(
    *,
    email: str | None = None,
    phone: str | None = None,
    create_user: bool,
    redirect_to: str | None = None,
) -> None:
    """Email a magic link / code, or text an SMS code. Email links land on redirect_to."""
    body: dict[str, Any] = {"create_user": create_user}
    if email:
        body["email"] = email
    else:
        body["phone"] = phone
    query = {"redirect_to": redirect_to} if email and redirect_to else None
    await asyncio.to_thread(_post, "otp", body, query)


async def verify_otp(*, token: str, email: str | None = None, phone: str | None = None) -> dict:
    """Exchange a one-time code for a session: {access_token, refresh_token, expires_in, user}."""
    if email:
        body = {"type": "email", "email": email, "token": token}
    else:
        body = {"type": "sms", "phone": phone, "token": token}
    session = await asyncio.to_thread(_post, "verify", body)
    if not session.get("access_token"):
        raise AuthProviderError("Invalid code.")
    return session
