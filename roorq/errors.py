"""
API error taxonomy. Route handlers raise these; main.py renders them as {"error": message}.
"""


class ApiError(Exception):
    status_code = 500
    message = "Internal server error"

    def __init__(self, message: str | None = None, headers: dict[str, str] | None = None):
        self.message = message or self.message
        self.headers = headers
        super().__init__(self.message)


class BadRequest(ApiError):
    status_code = 400
    message = "Invalid request"


class Unauthenticated(ApiError):
    status_code = 401
    message = "Unauthorized"


class Forbidden(ApiError):
    status_code = 403
    message = "Forbidden"


class CsrfError(Forbidden):
    message = "Invalid CSRF token."


class NotFound(ApiError):
    status_code = 404
    message = "Not found"


class Conflict(ApiError):
    status_code = 409
    message = "Conflict"


class TooManyRequests(ApiError):
    status_code = 429
    message = "Too many requests"


class BackendError(ApiError):
    """Data store unavailable or write failed. Message stays generic; details go to the log."""
    status_code = 500


class RedirectRequired(Exception):
    """Non-local exit for page routes: rendered as a 303 to `location`, no handler code runs after it."""
    def __init__(self, location: str):
        self.location = location
        super().__init__(location)
