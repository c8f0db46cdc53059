import pytest
from fastapi.testclient import TestClient

from _helper import CSRF_TOKEN, FakeStore

from roorq.db import get_store
from roorq.main import app
from roorq.redis_client import RateLimitResult
from roorq.routes.checkout import checkout_rate_limit


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture(autouse=True)
def notifications(monkeypatch):
    """Capture published notifications instead of hitting Redis / SQS."""
    published = []

    async def fake_publish(notification_type, data):
        published.append((notification_type, data))
        return True

    monkeypatch.setattr("roorq.orders.publish_notification", fake_publish)
    monkeypatch.setattr("roorq.routes.checkout.publish_notification", fake_publish)
    return published


@pytest.fixture
def rate_limit():
    """Mutable rate-limit verdict returned to the checkout route."""
    return {"result": RateLimitResult(allowed=True)}


@pytest.fixture
def client(store, rate_limit):
    app.dependency_overrides[get_store] = lambda: store
    app.dependency_overrides[checkout_rate_limit] = lambda: rate_limit["result"]
    with TestClient(app) as c:
        c.cookies.set("auth_csrf", CSRF_TOKEN)
        yield c
    app.dependency_overrides.clear()
