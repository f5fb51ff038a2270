"""Error taxonomy for the calendar gateway.

Every error carries the HTTP status it maps to, so transports can render it
without knowing the concrete type.
"""


class GatewayError(Exception):
    """Base exception for all calendar gateway errors."""

    status_code = 500

    def __init__(self, detail: str = "Internal Server Error"):
        super().__init__(detail)
        self.detail = detail


class AuthenticationError(GatewayError):
    """Raised when the calendar token is missing, unknown, inactive or expired."""

    status_code = 401

    def __init__(self, detail: str = "Unauthorized"):
        super().__init__(detail)


class AuthorizationError(GatewayError):
    """Raised when the token scope does not cover the request or the target is read-only."""

    status_code = 403

    def __init__(self, detail: str = "Forbidden"):
        super().__init__(detail)


class NotFoundError(GatewayError):
    """Raised for unknown paths and for ids outside the token scope."""

    status_code = 404

    def __init__(self, detail: str = "Not found"):
        super().__init__(detail)


class CalendarValidationError(GatewayError):
    """Raised when inbound calendar data or query input is malformed."""

    status_code = 400

    def __init__(self, detail: str = "Bad Request"):
        super().__init__(detail)


class UpstreamError(GatewayError):
    """Raised when the Scheduling Store fails."""

    status_code = 500

    def __init__(self, detail: str = "Scheduling store unavailable"):
        super().__init__(detail)
