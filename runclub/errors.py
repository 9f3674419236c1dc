"""
Error taxonomy for the payments and notification core.

Every error carries a machine-readable ``code`` and a human-readable
``message``; the HTTP layer turns them into ``{"error": code, "details": message}``.
"""
from typing import Any, Dict, Optional


class ErrorCodes:
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    PROCESSOR_ERROR = "PROCESSOR_ERROR"
    RECONCILIATION_PENDING = "RECONCILIATION_PENDING"
    FORBIDDEN = "FORBIDDEN"
    UNAUTHORIZED = "UNAUTHORIZED"
    BAD_REQUEST = "BAD_REQUEST"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    TRANSPORT_FAILURE = "TRANSPORT_FAILURE"
    DISPATCH_ERROR = "DISPATCH_ERROR"
    RATE_LIMIT_EXCEEDED = "RATE_LIMIT_EXCEEDED"
    INTERNAL_SERVER_ERROR = "INTERNAL_SERVER_ERROR"


class ClubError(Exception):
    code = ErrorCodes.INTERNAL_SERVER_ERROR
    status_code = 500

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None):
        self.message = message
        self.context = context or {}
        super().__init__(message)


class NotFound(ClubError):
    code = ErrorCodes.NOT_FOUND
    status_code = 404


class InvalidState(ClubError):
    """The record is not in a state that allows the operation, e.g. refunding an unpaid transaction. Never retried."""
    code = ErrorCodes.INVALID_STATE
    status_code = 400


class ProcessorError(ClubError):
    """The payment processor call failed; no local state was changed."""
    code = ErrorCodes.PROCESSOR_ERROR
    status_code = 500


class ReconciliationPending(ClubError):
    """
    Money has moved but a local write did not land.

    Reported as a warning next to a successful result, never raised to a client.
    """
    code = ErrorCodes.RECONCILIATION_PENDING
    status_code = 200


class Forbidden(ClubError):
    code = ErrorCodes.FORBIDDEN
    status_code = 403


class Unauthorized(ClubError):
    code = ErrorCodes.UNAUTHORIZED
    status_code = 401


class BadRequest(ClubError):
    code = ErrorCodes.BAD_REQUEST
    status_code = 400


class TransportFailure(ClubError):
    """Push delivery to a single subscription failed."""
    code = ErrorCodes.TRANSPORT_FAILURE
    status_code = 502


class PushGone(TransportFailure):
    """The push service reports the endpoint as permanently invalid."""


class DispatchError(ClubError):
    """The subscription snapshot could not be read; nothing was sent."""
    code = ErrorCodes.DISPATCH_ERROR
    status_code = 500
