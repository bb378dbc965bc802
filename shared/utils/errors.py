"""
shared/utils/errors.py
Domain error taxonomy. Raised by service modules, rendered by the
exception handlers registered in main.py.
"""

from typing import Any, Optional


class AppError(Exception):
    """Base class for business-rule violations that map to an HTTP status."""

    status_code: int = 400

    def __init__(self, message: str, payload: Optional[dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.payload = payload or {}


class ValidationError(AppError):
    """Malformed or contradictory input (e.g. lawyer does not offer the service)."""
    status_code = 400


class UnauthorizedError(AppError):
    status_code = 401


class PaymentRequiredError(AppError):
    """The gateway declined the charge."""
    status_code = 402


class ForbiddenError(AppError):
    status_code = 403


class NotFoundError(AppError):
    status_code = 404


class ConflictError(AppError):
    """Duplicate payment/review or an invalid state transition."""
    status_code = 409
