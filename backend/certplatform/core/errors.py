import enum
from typing import Optional

from fastapi import HTTPException, status


class ErrorKind(str, enum.Enum):
    NOT_FOUND = "NOT_FOUND"
    UNAVAILABLE = "UNAVAILABLE"
    FORBIDDEN = "FORBIDDEN"
    EXPIRED = "EXPIRED"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    ALREADY_ISSUED = "ALREADY_ISSUED"
    ALREADY_REVOKED = "ALREADY_REVOKED"
    NOT_PASSED = "NOT_PASSED"
    NOT_COMPLETED = "NOT_COMPLETED"
    VALIDATION = "VALIDATION"
    OUT_OF_RANGE = "OUT_OF_RANGE"
    INTERNAL = "INTERNAL"


STATUS_BY_KIND = {
    ErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    ErrorKind.UNAVAILABLE: status.HTTP_403_FORBIDDEN,
    ErrorKind.FORBIDDEN: status.HTTP_403_FORBIDDEN,
    ErrorKind.EXPIRED: status.HTTP_410_GONE,
    ErrorKind.ALREADY_EXISTS: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_ISSUED: status.HTTP_409_CONFLICT,
    ErrorKind.ALREADY_REVOKED: status.HTTP_409_CONFLICT,
    ErrorKind.NOT_PASSED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.NOT_COMPLETED: status.HTTP_400_BAD_REQUEST,
    ErrorKind.VALIDATION: status.HTTP_400_BAD_REQUEST,
    ErrorKind.OUT_OF_RANGE: status.HTTP_400_BAD_REQUEST,
    ErrorKind.INTERNAL: status.HTTP_500_INTERNAL_SERVER_ERROR,
}


def http_error(kind: Optional[ErrorKind], detail: Optional[str]) -> HTTPException:
    """Translate a failed service result into the HTTP error the api returns."""
    kind = kind or ErrorKind.INTERNAL
    return HTTPException(status_code=STATUS_BY_KIND[kind], detail=detail or kind.value)
