"""Error taxonomy shared by services and routes.

Services raise these; ``app.main`` renders them into the response envelope
``{"success": false, "message": ..., "error": {"code": ...}}``. Only
``GatewayError``, ``ServiceUnavailable`` and ``StoreTimeout`` are retryable,
and retrying them is the job of the background sweeps, not of the caller.
"""
from __future__ import annotations


class BookingError(Exception):
    status_code = 500
    code = "error"

    def __init__(self, message: str, *, code: str | None = None, data: dict | None = None):
        super().__init__(message)
        self.message = message
        if code:
            self.code = code
        self.data = data

    @property
    def retryable(self) -> bool:
        return self.status_code >= 500


class InvalidRequest(BookingError):
    status_code = 400
    code = "invalid_request"


class AuthenticityError(BookingError):
    status_code = 400
    code = "invalid_signature"


class Forbidden(BookingError):
    status_code = 403
    code = "forbidden"


class NotFound(BookingError):
    status_code = 404
    code = "not_found"


class Conflict(BookingError):
    status_code = 409
    code = "conflict"


class GatewayError(BookingError):
    status_code = 502
    code = "gateway_error"


class ServiceUnavailable(BookingError):
    status_code = 503
    code = "service_unavailable"


class StoreTimeout(BookingError):
    status_code = 504
    code = "store_timeout"
