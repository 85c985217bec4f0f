"""Domain errors and their JSON rendering."""

from typing import Any, Dict, List, Optional

from fastapi import status


class AppError(Exception):
    """Base error raised by the billing services."""

    def __init__(self, message: str, code: str, http_status: int = 400):
        self.message = message
        self.code = code
        self.http_status = http_status
        super().__init__(message)


class ValidationFailed(AppError):
    """Input was well-formed but breaks a business rule."""

    def __init__(self, message: str, errors: Optional[Dict[str, List[str]]] = None):
        super().__init__(message, "validation_failed", status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.errors = errors or {}


class NotFound(AppError):
    def __init__(self, message: str = "Not found"):
        super().__init__(message, "not_found", status.HTTP_404_NOT_FOUND)


def residents_only_error(field: str = "shares") -> ValidationFailed:
    message = (
        "Bill shares are for residents only. "
        "Admin and super_admin users cannot be assigned to bills."
    )
    return ValidationFailed(message, {field: [message]})


def error_response(error: AppError) -> Dict[str, Any]:
    body: Dict[str, Any] = {"detail": error.message, "code": error.code}
    if isinstance(error, ValidationFailed):
        body["errors"] = error.errors
    return body
