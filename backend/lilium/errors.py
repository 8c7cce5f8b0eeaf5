# Overview: Typed service errors shared by services and routes.

"""
Service error taxonomy.

Services raise a ServiceError subclass for every domain violation; routes
never inspect messages. The Flask error handler registered in create_app
turns the error kind into an HTTP status and a JSON body:

    {"error": <message>, "code": <kind>, ...details}

Anything that is not a ServiceError is treated as UNEXPECTED (500) and
logged with a traceback.
"""

from __future__ import annotations

from enum import Enum


class ErrorKind(str, Enum):
    NOT_FOUND = "NOT_FOUND"
    INVALID_STATE = "INVALID_STATE"
    AMOUNT_MISMATCH = "AMOUNT_MISMATCH"
    CONFLICT = "CONFLICT"
    FORBIDDEN = "FORBIDDEN"
    UNEXPECTED = "UNEXPECTED"

    @property
    def http_status(self) -> int:
        return _HTTP_STATUS[self]


_HTTP_STATUS = {
    ErrorKind.NOT_FOUND: 404,
    ErrorKind.INVALID_STATE: 400,
    ErrorKind.AMOUNT_MISMATCH: 400,
    ErrorKind.CONFLICT: 409,
    ErrorKind.FORBIDDEN: 403,
    ErrorKind.UNEXPECTED: 500,
}


class ServiceError(Exception):
    """Base class for domain errors raised by the service layer."""

    kind = ErrorKind.UNEXPECTED

    def __init__(self, message: str, **details):
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict:
        body = {"error": self.message, "code": self.kind.value}
        body.update(self.details)
        return body


class NotFoundError(ServiceError):
    kind = ErrorKind.NOT_FOUND


class InvalidStateError(ServiceError):
    kind = ErrorKind.INVALID_STATE


class AmountMismatchError(ServiceError):
    kind = ErrorKind.AMOUNT_MISMATCH

    def __init__(self, expected, received):
        super().__init__(
            f"Cash amount ({received}) does not match order total ({expected})",
            expected=str(expected),
            received=str(received),
        )


class ConflictError(ServiceError):
    kind = ErrorKind.CONFLICT


class AccessDeniedError(ServiceError):
    kind = ErrorKind.FORBIDDEN
