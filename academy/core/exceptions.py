from typing import Optional
from uuid import UUID

from fastapi import status


class ServiceError(Exception):
    """Base exception for service layer errors."""

    def __init__(self, message: str, status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class ValidationError(ServiceError):
    """A draft failed a required-field rule. Never sent over the persistence boundary."""

    def __init__(self, message: str, rule: str, set_id: Optional[UUID] = None) -> None:
        super().__init__(message, status.HTTP_422_UNPROCESSABLE_ENTITY)
        self.rule = rule
        self.set_id = set_id


class PersistenceError(ServiceError):
    """The durable store rejected the write or could not be reached. Retryable."""

    def __init__(self, message: str, status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE) -> None:
        super().__init__(message, status_code)


class NotFoundError(ServiceError):
    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_404_NOT_FOUND)


class ConflictError(ServiceError):
    """The request conflicts with stored state: a version mismatch or a reused idempotency key."""

    def __init__(self, message: str) -> None:
        super().__init__(message, status.HTTP_409_CONFLICT)


class IllegalTransitionError(ServiceError):
    """A makeup ticket action was requested from a state that does not permit it."""

    def __init__(self, ticket_id: Optional[UUID], current: str, action: str, message: Optional[str] = None) -> None:
        super().__init__(
            message or f"Cannot {action} a ticket that is {current}",
            status.HTTP_409_CONFLICT,
        )
        self.ticket_id = ticket_id
        self.current = current
        self.action = action


def error_detail(e: ServiceError):
    """HTTPException detail: validation failures carry the failing rule for the caller."""
    if isinstance(e, ValidationError):
        detail = {"message": e.message, "rule": e.rule}
        if e.set_id is not None:
            detail["set_id"] = str(e.set_id)
        return detail
    return e.message
