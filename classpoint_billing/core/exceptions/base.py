from typing import Any


class AppException(Exception):
    """Base application exception."""

    def __init__(
        self,
        message: str,
        status_code: int = 400,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.status_code = status_code
        self.details = details or {}
        super().__init__(self.message)


class NotFoundError(AppException):
    """Resource not found."""

    def __init__(self, resource: str, identifier: Any = None):
        message = f"{resource} not found"
        if identifier:
            message = f"{resource} with id={identifier} not found"
        super().__init__(message=message, status_code=404)


class AuthenticationError(AppException):
    """Authentication failed."""

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message=message, status_code=401)


class MalformedRecordError(AppException):
    """Queue record body is not a JSON object. Fatal for the record."""

    def __init__(self, message: str, message_id: str | None = None):
        details = {"message_id": message_id} if message_id else {}
        super().__init__(message=message, status_code=400, details=details)


class EventPublishError(AppException):
    """Event bus accepted the call but rejected some entries."""

    def __init__(self, failed_count: int, errors: list[dict[str, Any]] | None = None):
        message = f"Event bus rejected {failed_count} event(s)"
        super().__init__(
            message=message,
            status_code=502,
            details={"failed_count": failed_count, "errors": errors or []},
        )
