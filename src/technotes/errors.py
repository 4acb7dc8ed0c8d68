"""Exceptions raised by the service layer.

Each error is an ``HTTPException`` so FastAPI renders it directly as
``{"detail": message}`` with the matching status code. Messages are short and
never include store internals or credential material.
"""

from fastapi import HTTPException, status


class ServiceError(HTTPException):
    """Base class for expected, user-facing service failures."""

    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str) -> None:
        super().__init__(status_code=self.status_code, detail=message)
        self.message = message

    def __str__(self) -> str:
        return self.message


class InvalidInputError(ServiceError):
    """Missing or malformed input, or the store rejected the write."""

    status_code = status.HTTP_400_BAD_REQUEST


class ConflictError(ServiceError):
    """Duplicate username or title, or a delete blocked by dependent records."""

    status_code = status.HTTP_409_CONFLICT


class NotFoundError(ServiceError):
    """The requested record does not exist, or a listing came back empty."""

    status_code = status.HTTP_404_NOT_FOUND
