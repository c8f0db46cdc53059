import asyncio

from starlette.requests import Request

from _helper import FakeStore

from roorq.audit import get_client_ip, log_auth_event


def test_health(client):
    resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json() == {"status": "ok"}


def test_metrics_endpoint(client):
    resp = client.get("/metrics")
    assert resp.status_code == 200
    assert "access_denied_total" in resp.text
    assert "order_transitions_total" in resp.text


def test_request_id_is_echoed(client):
    resp = client.get("/health", headers={"x-request-id": "req-123"})
    assert resp.headers["x-request-id"] == "req-123"


def test_request_id_is_generated(client):
    resp = client.get("/health")
    assert len(resp.headers["x-request-id"]) == 36


def make_request(headers: dict) -> Request:
    raw = [(k.lower().encode(), v.encode()) for k, v in headers.items()]
    return Request({"type": "http", "method": "GET", "path": "/admin", "query_string": b"", "headers": raw})


def test_client_ip_prefers_first_forwarded_hop():
    assert get_client_ip(make_request({"X-Forwarded-For": "203.0.113.7, 10.0.0.2"})) == "203.0.113.7"
    assert get_client_ip(make_request({"X-Real-IP": "198.51.100.4"})) == "198.51.100.4"
    assert get_client_ip(make_request({})) is None


def test_audit_event_shape():
    store = FakeStore()
    request = make_request({"X-Forwarded-For": "203.0.113.7", "User-Agent": "pytest"})

    asyncio.run(log_auth_event(
        store, request, action="admin_access", status="failed", user_id="u-1",
        identifier="u@iitr.ac.in", metadata={"reason": "insufficient_role"},
    ))

    [event] = store.audit_events
    assert event["action"] == "admin_access"
    assert event["status"] == "failed"
    assert event["ip"] == "203.0.113.7"
    assert event["user_agent"] == "pytest"
    assert event["metadata"] == {"reason": "insufficient_role"}
    assert event["created_at"].tzinfo is not None


def test_malformed_json_message_has_no_offset(client):
    resp = client.post("/api/auth/otp", content='{"method": "email", ', headers={"Content-Type": "application/json"})
    assert resp.status_code == 400
    assert resp.json() == {"error": "JSON decode error"}
