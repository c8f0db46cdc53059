import uuid

from fastapi import Request


def get_request_id(request: Request) -> str:
    """Caller-supplied x-request-id / x-correlation-id, else a fresh UUID. Cached on request.state."""
    existing = getattr(request.state, "request_id", None)
    if existing:
        return existing
    header = request.headers.get("x-request-id") or request.headers.get("x-correlation-id")
    request_id = header or str(uuid.uuid4())
    request.state.request_id = request_id
    return request_id
