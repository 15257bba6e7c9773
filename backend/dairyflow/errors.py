# Overview: Domain error taxonomy shared by services and routes.

"""
Every business-rule failure raised by the service layer is a DomainError.

Each subclass carries a stable machine-readable `code` and the HTTP status the
routes answer with. `details` holds structured context (e.g. which product ran
short) and is returned to the caller verbatim; stack traces never are.
"""


class DomainError(Exception):
    """Base class for recoverable-by-caller business errors."""

    code = "domain_error"
    http_status = 400

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "code": self.code,
            "details": self.details,
        }


class NotFoundError(DomainError):
    """Entity id does not resolve."""

    code = "not_found"
    http_status = 404


class InsufficientStockError(DomainError):
    """A reserve asked for more than the product has on hand."""

    code = "insufficient_stock"
    http_status = 409


class InvalidTransitionError(DomainError):
    """The state machine rejects the requested move."""

    code = "invalid_transition"
    http_status = 409


class ValidationError(DomainError, ValueError):
    """400-level input problem."""

    code = "validation_error"
    http_status = 400


class ConcurrencyConflictError(DomainError):
    """Lost a race after bounded retries; the whole operation may be retried."""

    code = "concurrency_conflict"
    http_status = 409
