"""
Typed failures shared by the ingestion and query paths.

Core operations return ``value | AppError`` instead of raising, so callers branch
with ``isinstance(result, AppError)``. The HTTP layer turns an AppError into the
standard error body with :func:`to_response_body`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

_STATUS_NAMES = {
    400: "INVALID_ARGUMENT",
    404: "NOT_FOUND",
    409: "CONFLICT",
    500: "INTERNAL",
}


@dataclass(eq=False)
class AppError(Exception):
    message: str
    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"

    def __str__(self) -> str:
        return self.message

    def details(self) -> list[dict[str, Any]]:
        return []


@dataclass(eq=False)
class ValidationError(AppError):
    field: str = "general"
    status_code: int = 400
    error_code: str = "INVALID_ARGUMENT"

    def details(self) -> list[dict[str, Any]]:
        return [{"field": self.field, "reason": self.error_code, "message": self.message}]


@dataclass(eq=False)
class CursorError(AppError):
    cursor: str | None = None
    status_code: int = 400
    error_code: str = "INVALID_ARGUMENT"

    def details(self) -> list[dict[str, Any]]:
        return [{"field": "cursor", "reason": "INVALID_CURSOR", "message": self.message}]


@dataclass(eq=False)
class NotFoundError(AppError):
    resource: str = "Resource"
    id: str = ""
    status_code: int = 404
    error_code: str = "NOT_FOUND"


@dataclass(eq=False)
class StorageError(AppError):
    operation: str = ""
    cause: BaseException | None = field(default=None, repr=False)
    status_code: int = 500
    error_code: str = "INTERNAL_ERROR"


def validation_error(field: str, message: str) -> ValidationError:
    return ValidationError(message=message, field=field)


def conflict(field: str, message: str) -> ValidationError:
    return ValidationError(message=message, field=field, status_code=409, error_code="CONFLICT")


def cursor_error(message: str, cursor: str | None = None) -> CursorError:
    return CursorError(message=message, cursor=cursor)


def not_found(resource: str, id: str) -> NotFoundError:
    return NotFoundError(message=f"{resource} {id} not found", resource=resource, id=id)


def storage_error(operation: str, cause: BaseException | None = None) -> StorageError:
    # the cause is for logs only, the message is what callers get to see
    return StorageError(message="Internal server error", operation=operation, cause=cause)


def to_response_body(error: AppError) -> dict[str, Any]:
    body: dict[str, Any] = {
        "code": error.status_code,
        "message": error.message,
        "status": _STATUS_NAMES.get(error.status_code, error.error_code),
    }
    details = error.details()
    if details:
        body["details"] = details
    return {"error": body}
