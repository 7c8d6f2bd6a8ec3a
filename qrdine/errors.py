"""Error taxonomy shared by the ordering core and the HTTP layer.

Every error the core raises is an ``OrderingError``; the request boundary in
``qrdine.main`` turns it into ``{"error": kind, "detail": message}`` with the
class's status code. Anything else is reported as ``InternalError``.
"""


class OrderingError(Exception):
    kind = "internal_error"
    status_code = 500
    default_message = "Something went wrong, please retry"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(OrderingError):
    kind = "validation_error"
    status_code = 400
    default_message = "Invalid request"


class NotFoundError(OrderingError):
    kind = "not_found"
    status_code = 404
    default_message = "Not found"


class AuthenticationError(OrderingError):
    kind = "authentication_error"
    status_code = 401
    default_message = "Not authenticated"


class AuthorizationError(OrderingError):
    kind = "authorization_error"
    status_code = 403
    default_message = "Not permitted"


class ConflictError(OrderingError):
    kind = "conflict"
    status_code = 409
    default_message = "Conflict"


class VerificationFailed(OrderingError):
    kind = "verification_failed"
    status_code = 402
    default_message = "Payment verification failed"


class InternalError(OrderingError):
    pass


INVALID_TABLE = "Invalid or inactive table"
