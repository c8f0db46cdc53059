import uuid

import pytest

from _helper import CSRF_TOKEN, auth_headers, make_token

from roorq.auth import Role, is_admin_role, is_super_admin

VENDOR_STATUS_BODY = {"status": "approved", "csrf": CSRF_TOKEN}


def test_role_parse():
    assert Role.parse("admin") is Role.ADMIN
    assert Role.parse("super_admin") is Role.SUPER_ADMIN
    assert Role.parse("root") is Role.UNKNOWN
    assert Role.parse(None) is Role.UNKNOWN
    assert is_admin_role("super_admin")
    assert not is_admin_role("vendor")
    assert is_super_admin("super_admin")
    assert not is_super_admin("admin")


@pytest.mark.parametrize("role", ["customer", "vendor"])
def test_non_admin_cannot_change_vendor_status(client, store, role):
    caller = store.add_user(role=role)
    vendor_id = store.add_user(user_type="vendor", vendor_status="under_review")

    resp = client.patch(f"/api/admin/vendors/{vendor_id}", json=VENDOR_STATUS_BODY, headers=auth_headers(caller))

    assert resp.status_code == 403
    assert resp.json() == {"error": "Forbidden"}
    assert store.users[vendor_id]["vendor_status"] == "under_review"
    assert store.writes == 0
    assert len(store.audit_events) == 1
    event = store.audit_events[0]
    assert event["action"] == "admin_access"
    assert event["status"] == "failed"
    assert event["user_id"] == caller
    assert event["metadata"] == {"reason": "insufficient_role", "path": f"/api/admin/vendors/{vendor_id}"}


@pytest.mark.parametrize(
    "method,path,body",
    [
        ("PATCH", "/api/admin/vendors/{id}", VENDOR_STATUS_BODY),
        ("PATCH", "/api/admin/orders/{id}", {"status": "confirmed", "csrf": CSRF_TOKEN}),
        ("PATCH", "/api/admin/users", {"userId": "{id}", "role": "admin", "csrf": CSRF_TOKEN}),
        ("PATCH", "/api/vendor/profile", {"storeName": "Thrift Hub", "csrf": CSRF_TOKEN}),
        ("PATCH", "/api/vendor/orders/{id}", {"status": "confirmed", "csrf": CSRF_TOKEN}),
        ("GET", "/api/admin/vendors", None),
        ("GET", "/api/vendor/payouts", None),
    ],
)
def test_unauthenticated_gets_401_without_mutation(client, store, method, path, body):
    target = str(uuid.uuid4())
    if body is not None:
        body = {k: (target if v == "{id}" else v) for k, v in body.items()}
    resp = client.request(method, path.format(id=target), json=body)

    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}
    assert store.writes == 0


def test_unauthenticated_denial_is_audited(client, store):
    client.patch(f"/api/admin/vendors/{uuid.uuid4()}", json=VENDOR_STATUS_BODY)
    assert store.audit_events[0]["user_id"] is None
    assert store.audit_events[0]["metadata"]["reason"] == "not_authenticated"


def test_expired_token_is_unauthenticated(client, store):
    admin = store.add_user(role="admin")
    token = make_token(admin, expires_in=-60)
    resp = client.get("/api/admin/vendors", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_wrong_audience_is_unauthenticated(client, store):
    admin = store.add_user(role="admin")
    token = make_token(admin, audience="anon")
    resp = client.get("/api/admin/vendors", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 401


def test_session_cookie_is_accepted(client, store):
    admin = store.add_user(role="admin")
    client.cookies.set("sb-access-token", make_token(admin))
    resp = client.get("/api/admin/vendors")
    assert resp.status_code == 200


def test_unknown_role_is_blocked(client, store):
    caller = store.add_user(role="moderator")
    resp = client.get("/api/admin/vendors", headers=auth_headers(caller))
    assert resp.status_code == 403
    event = store.audit_events[0]
    assert event["status"] == "blocked"
    assert event["metadata"]["reason"] == "unknown_role"


def test_role_lookup_failure_denies(client, store):
    caller = store.add_user(role="admin")
    store.fail_role_lookup = True
    resp = client.get("/api/admin/vendors", headers=auth_headers(caller))
    assert resp.status_code == 403
    assert store.audit_events[0]["metadata"]["reason"] == "role_check_failed"


def test_audit_failure_does_not_change_outcome(client, store):
    caller = store.add_user(role="customer")
    store.fail_audit = True
    resp = client.get("/api/admin/vendors", headers=auth_headers(caller))
    assert resp.status_code == 403
    assert store.audit_events == []


def test_admin_passes_guard(client, store):
    admin = store.add_user(role="admin")
    store.add_user(user_type="vendor", store_name="Thrift Hub")
    resp = client.get("/api/admin/vendors", headers=auth_headers(admin))
    assert resp.status_code == 200
    assert [v["store_name"] for v in resp.json()["vendors"]] == ["Thrift Hub"]
    assert store.audit_events == []


def test_admin_is_not_super_admin(client, store):
    admin = store.add_user(role="admin")
    other = store.add_user(role="customer")
    resp = client.patch(
        "/api/admin/users",
        json={"userId": other, "role": "admin", "csrf": CSRF_TOKEN},
        headers=auth_headers(admin),
    )
    assert resp.status_code == 403
    assert store.users[other]["role"] == "customer"


@pytest.mark.parametrize("user_type,reason", [("customer", "not_vendor"), (None, "not_vendor")])
def test_non_vendor_cannot_use_vendor_api(client, store, user_type, reason):
    caller = store.add_user(user_type=user_type)
    resp = client.get("/api/vendor/payouts", headers=auth_headers(caller))
    assert resp.status_code == 403
    event = store.audit_events[0]
    assert event["action"] == "vendor_access"
    assert event["metadata"]["reason"] == reason


def test_missing_profile_is_denied(client, store):
    resp = client.get("/api/vendor/payouts", headers=auth_headers(str(uuid.uuid4())))
    assert resp.status_code == 403
    assert store.audit_events[0]["metadata"]["reason"] == "profile_not_found"


# ---- page guards redirect instead of 401/403 ----

def test_admin_page_redirects_anonymous_to_login(client):
    resp = client.get("/admin", follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/auth?error=unauthorized&message=Please+login+to+continue"


def test_admin_page_redirects_customer(client, store):
    caller = store.add_user(role="customer")
    resp = client.get("/admin", headers=auth_headers(caller), follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"].startswith("/?error=admin-access-denied")


def test_admin_page_role_lookup_failure(client, store):
    caller = store.add_user(role="admin")
    store.fail_role_lookup = True
    resp = client.get("/admin", headers=auth_headers(caller), follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/?error=role-check-failed"


def test_admin_page_renders_for_admin(client, store):
    admin = store.add_user(role="super_admin")
    store.add_order("vendor_orders", status="pending")
    store.add_order("vendor_orders", status="delivered")
    store.products.append({"approval_status": "approved"})
    resp = client.get("/admin", headers=auth_headers(admin))
    assert resp.status_code == 200
    data = resp.json()
    assert data["admin"]["role"] == "super_admin"
    assert data["pendingOrders"] == 1
    assert data["approvedProducts"] == 1


def test_seller_page_redirects(client, store):
    resp = client.get("/seller", follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/auth?redirect=/sell/signup"

    customer = store.add_user(user_type="customer")
    resp = client.get("/seller", headers=auth_headers(customer), follow_redirects=False)
    assert resp.status_code == 303
    assert resp.headers["location"] == "/sell"


def test_seller_page_renders_for_vendor(client, store):
    vendor_id = store.add_user(user_type="vendor", vendor_status="approved", store_name="Thrift Hub")
    store.add_order("vendor_orders", status="delivered", vendor_id=vendor_id, subtotal=250)
    store.add_order("vendor_orders", status="confirmed", vendor_id=vendor_id, subtotal=100)
    resp = client.get("/seller", headers=auth_headers(vendor_id))
    assert resp.status_code == 200
    data = resp.json()
    assert data["storeName"] == "Thrift Hub"
    assert data["pendingOrders"] == 1
    assert data["revenue"] == 250.0


# ---- the guard runs before the body is read ----

TRUNCATED_JSON = '{"status": "approved", "csrf": '


@pytest.mark.parametrize(
    "path,action",
    [
        ("/api/admin/vendors/{id}", "admin_access"),
        ("/api/admin/orders/{id}", "admin_access"),
        ("/api/vendor/profile", "vendor_access"),
    ],
)
def test_malformed_body_from_anonymous_caller_is_401(client, store, path, action):
    resp = client.patch(
        path.format(id=uuid.uuid4()),
        content=TRUNCATED_JSON,
        headers={"Content-Type": "application/json"},
    )

    assert resp.status_code == 401
    assert resp.json() == {"error": "Unauthorized"}
    assert len(store.audit_events) == 1
    assert store.audit_events[0]["action"] == action
    assert store.audit_events[0]["metadata"]["reason"] == "not_authenticated"
    assert store.writes == 0


def test_malformed_body_from_customer_is_403(client, store):
    caller = store.add_user(role="customer")
    resp = client.patch(
        f"/api/admin/vendors/{uuid.uuid4()}",
        content=TRUNCATED_JSON,
        headers={"Content-Type": "application/json", **auth_headers(caller)},
    )
    assert resp.status_code == 403
    assert store.audit_events[0]["metadata"]["reason"] == "insufficient_role"


def test_malformed_checkout_body_without_session_is_401(client, store):
    resp = client.post("/api/checkout", content="{", headers={"Content-Type": "application/json"})
    assert resp.status_code == 401
    assert store.checkout_calls == []


def test_malformed_body_from_admin_is_400(client, store):
    admin = store.add_user(role="admin")
    resp = client.patch(
        f"/api/admin/vendors/{uuid.uuid4()}",
        content=TRUNCATED_JSON,
        headers={"Content-Type": "application/json", **auth_headers(admin)},
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "JSON decode error"}
    assert store.audit_events == []
