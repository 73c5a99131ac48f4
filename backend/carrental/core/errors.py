"""
Domain error taxonomy.

Every error is an HTTPException so services can raise it directly, the
request session dependency rolls back, and FastAPI renders it. The
`detail` payload carries a machine-readable `error` kind next to the
human-readable message:

    {"detail": {"error": "DriverUnavailable", "message": "Driver is not available"}}

InconsistentHistory and PaymentConflict are never raised to callers; they
exist so the absorbed anomalies have a name in logs and metrics.
"""

from fastapi import HTTPException, status


class DomainError(HTTPException):
    kind = "DomainError"
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str):
        self.message = message
        super().__init__(
            status_code=self.status_code,
            detail={"error": self.kind, "message": message},
        )


class NotFound(DomainError):
    kind = "NotFound"
    status_code = status.HTTP_404_NOT_FOUND


class DriverUnavailable(DomainError):
    kind = "DriverUnavailable"
    status_code = status.HTTP_409_CONFLICT


class InvalidTransition(DomainError):
    kind = "InvalidTransition"
    status_code = status.HTTP_409_CONFLICT


class InvalidState(DomainError):
    kind = "InvalidState"
    status_code = status.HTTP_409_CONFLICT


class GatewayUnavailable(DomainError):
    """Network error or timeout talking to the payment provider. Retryable."""

    kind = "GatewayUnavailable"
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE


class GatewayRejected(DomainError):
    """Provider explicitly declined the request."""

    kind = "GatewayRejected"
    status_code = status.HTTP_402_PAYMENT_REQUIRED


# Absorbed kinds (logged, never raised)
INCONSISTENT_HISTORY = "InconsistentHistory"
PAYMENT_CONFLICT = "PaymentConflict"
