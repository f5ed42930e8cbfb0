from classpoint_billing.core.exceptions.base import (
    AppException,
    NotFoundError,
    AuthenticationError,
    MalformedRecordError,
    EventPublishError,
)

__all__ = [
    "AppException",
    "NotFoundError",
    "AuthenticationError",
    "MalformedRecordError",
    "EventPublishError",
]
