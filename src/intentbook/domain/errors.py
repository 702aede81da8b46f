from __future__ import annotations


class OrderBookError(Exception):
    """Base class for failures surfaced to callers of the order book engine."""

    code = "INTERNAL_ERROR"

    def __init__(self, message: str, *, detail: dict[str, object] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = dict(detail or {})

    def to_dict(self) -> dict[str, object]:
        return {"errorCode": self.code, "message": self.message, "detail": self.detail}


class ValidationError(OrderBookError):
    """Unsupported filter combination, malformed filter or malformed/mismatched cursor."""

    code = "VALIDATION_ERROR"


class NotFoundError(OrderBookError):
    code = "NOT_FOUND"


class ConflictError(OrderBookError):
    """Transactional write rejected by the store; safe to retry with backoff."""

    code = "CONFLICT"


class InternalError(OrderBookError):
    """Store or collaborator unavailable; retries must be bounded."""

    code = "INTERNAL_ERROR"
