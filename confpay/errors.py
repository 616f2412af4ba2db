"""
Error taxonomy shared by services and the HTTP boundary.

Every error carries (kind, http_status, message, details) and is mapped to a
response exactly once, in confpay.main.
"""

from typing import Any, Dict, Optional


class AppError(Exception):
    """Base class for errors surfaced to callers."""

    kind = "INTERNAL"
    http_status = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> Dict[str, Any]:
        body: Dict[str, Any] = {"kind": self.kind, "message": self.message}
        if self.details:
            body["details"] = self.details
        return body


class NotFoundError(AppError):
    """Order or payment missing."""

    kind = "NOT_FOUND"
    http_status = 404


class BadRequestError(AppError):
    """Malformed input, e.g. a callback without transaction_id."""

    kind = "BAD_REQUEST"
    http_status = 400


class ConflictError(AppError):
    """Amount/currency mismatch, double payment, credential for an unpaid order."""

    kind = "CONFLICT"
    http_status = 409


class UnauthorizedError(AppError):
    """Credential failed signature or expiry checks at the check-in desk."""

    kind = "UNAUTHORIZED"
    http_status = 401


class GatewayError(AppError):
    """External provider transport or response failure."""

    kind = "GATEWAY_ERROR"
    http_status = 502


class MailDeliveryError(GatewayError):
    """Transactional e-mail API rejected or never answered."""


class InternalError(AppError):
    """Unexpected failure."""
