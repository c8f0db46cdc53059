import pytest
from starlette.requests import Request

from _helper import CSRF_TOKEN, auth_headers

from roorq.config import settings
from roorq.csrf import INVALID_CSRF_MESSAGE, create_csrf_token, validate_csrf_token


def make_request(cookie: str | None = None) -> Request:
    headers = [(b"cookie", cookie.encode())] if cookie else []
    return Request({"type": "http", "method": "PATCH", "path": "/", "query_string": b"", "headers": headers})


def test_create_csrf_token_is_random_hex():
    token = create_csrf_token()
    assert len(token) == 32
    int(token, 16)
    assert token != create_csrf_token()


def test_matching_token_passes():
    check = validate_csrf_token(make_request(f"auth_csrf={CSRF_TOKEN}"), CSRF_TOKEN)
    assert check.ok
    assert check.error is None


@pytest.mark.parametrize(
    "cookie,token",
    [
        (None, CSRF_TOKEN),
        (f"auth_csrf={CSRF_TOKEN}", None),
        (f"auth_csrf={CSRF_TOKEN}", ""),
        (f"auth_csrf={CSRF_TOKEN}", "f" * 32),
        ("auth_csrf=", CSRF_TOKEN),
    ],
)
def test_mismatch_fails(cookie, token):
    check = validate_csrf_token(make_request(cookie), token)
    assert not check.ok
    assert check.error == INVALID_CSRF_MESSAGE


def test_csrf_endpoint_issues_cookie(client):
    client.cookies.clear()
    resp = client.get("/api/auth/csrf")
    assert resp.status_code == 200
    token = resp.json()["csrf"]
    assert len(token) == 32
    set_cookie = resp.headers["set-cookie"]
    assert f"auth_csrf={token}" in set_cookie
    assert "Max-Age=3600" in set_cookie
    assert "Path=/" in set_cookie
    assert "samesite=lax" in set_cookie.lower()
    assert "secure" not in set_cookie.lower()


def test_csrf_endpoint_reuses_existing_cookie(client):
    resp = client.get("/api/auth/csrf")
    assert resp.status_code == 200
    assert resp.json() == {"csrf": CSRF_TOKEN}
    assert "set-cookie" not in resp.headers


def test_mismatched_token_rejected_before_write(client, store):
    vendor_id = store.add_user(user_type="vendor", vendor_status="approved", store_name="Old Name")
    resp = client.patch(
        "/api/vendor/profile",
        json={"storeName": "New Name", "csrf": "a" * 32},
        headers=auth_headers(vendor_id),
    )
    assert resp.status_code == 403
    assert resp.json() == {"error": "Invalid CSRF token."}
    assert store.users[vendor_id]["store_name"] == "Old Name"
    assert store.writes == 0


def test_missing_cookie_rejected(client, store):
    vendor_id = store.add_user(user_type="vendor", vendor_status="approved")
    client.cookies.clear()
    resp = client.patch(
        "/api/vendor/profile",
        json={"storeName": "Thrift Hub", "csrf": CSRF_TOKEN},
        headers=auth_headers(vendor_id),
    )
    assert resp.status_code == 403
    assert store.writes == 0


def test_csrf_cookie_is_secure_in_production(client, monkeypatch):
    monkeypatch.setattr(settings, "app_env", "production")
    client.cookies.clear()
    resp = client.get("/api/auth/csrf")
    assert resp.status_code == 200
    assert "secure" in resp.headers["set-cookie"].lower()
