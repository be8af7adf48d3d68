"""
Operational errors raised by services. The API layer maps them to 4xx responses with a stable `kind`;
anything else is unexpected and becomes a generic 500 (see app.main).
"""
from fastapi import status


class AppError(Exception):
    """Expected business failure. Raised before any mutation is applied."""

    status_code: int = status.HTTP_400_BAD_REQUEST
    kind: str = "error"

    def __init__(self, message: str, fields: dict | None = None):
        super().__init__(message)
        self.message = message
        self.fields = fields

    def to_dict(self) -> dict:
        body = {"status": "fail", "kind": self.kind, "detail": self.message}
        if self.fields:
            body["fields"] = self.fields
        return body


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    kind = "validation_error"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    kind = "not_found"


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    kind = "forbidden"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    kind = "conflict"


class InvalidStateError(AppError):
    """State-machine transition attempted from a terminal or wrong state."""

    status_code = status.HTTP_409_CONFLICT
    kind = "invalid_state"
