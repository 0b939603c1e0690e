from typing import Any, Dict, Optional

from fastapi import status


class DomainError(Exception):
    """Base class for business-rule and data-integrity violations."""

    status_code = status.HTTP_400_BAD_REQUEST
    kind = "DomainError"

    def __init__(self, detail: str, **extra: Any):
        super().__init__(detail)
        self.detail = detail
        self.extra = extra

    def to_dict(self) -> Dict[str, Any]:
        body = {"error": self.kind, "detail": self.detail}
        body.update(self.extra)
        return body


class NotFoundError(DomainError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = "NotFoundError"


class InsufficientStockError(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = "InsufficientStockError"

    def __init__(self, requested: int, available: int, detail: Optional[str] = None):
        super().__init__(
            detail or f"Insufficient stock. Available: {available}, Requested: {requested}",
            requested=requested,
            available=available,
        )
        self.requested = requested
        self.available = available


class InvalidStateTransitionError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    kind = "InvalidStateTransitionError"


class DuplicateInventoryError(DomainError):
    status_code = status.HTTP_409_CONFLICT
    kind = "DuplicateInventoryError"


class ValidationError(DomainError):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = "ValidationError"


class PolicyViolationError(DomainError):
    status_code = status.HTTP_403_FORBIDDEN
    kind = "PolicyViolationError"
