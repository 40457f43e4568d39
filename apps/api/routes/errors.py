"""Translate service errors into HTTP responses."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Iterator

from fastapi import HTTPException, status

from apps.api.services.errors import (
    BugdeskError,
    ConflictError,
    CreateFailedError,
    InvalidTransitionError,
    NotFoundError,
    RepositoryUnavailableError,
    UnauthorizedError,
    ValidationError,
)

logger = logging.getLogger(__name__)

PUBLIC_NOT_FOUND_MESSAGE = "Ticket not found. Please check your ticket number and try again."
PUBLIC_UNAVAILABLE_MESSAGE = "We could not process your request right now. Please try again in a few minutes."

STATUS_BY_ERROR: dict[type[BugdeskError], int] = {
    ValidationError: status.HTTP_422_UNPROCESSABLE_ENTITY,
    NotFoundError: status.HTTP_404_NOT_FOUND,
    ConflictError: status.HTTP_409_CONFLICT,
    InvalidTransitionError: status.HTTP_409_CONFLICT,
    UnauthorizedError: status.HTTP_403_FORBIDDEN,
    CreateFailedError: status.HTTP_503_SERVICE_UNAVAILABLE,
    RepositoryUnavailableError: status.HTTP_503_SERVICE_UNAVAILABLE,
}


def status_for(exc: BugdeskError) -> int:
    for error_type, code in STATUS_BY_ERROR.items():
        if isinstance(exc, error_type):
            return code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


def to_http_exception(exc: BugdeskError, *, public: bool = False) -> HTTPException:
    code = status_for(exc)
    if code >= 500:
        logger.error("Service failure (%s): %s", exc.kind, exc)
    else:
        logger.warning("Request rejected (%s): %s", exc.kind, exc)

    if isinstance(exc, ValidationError):
        return HTTPException(status_code=code, detail={"message": str(exc), "errors": exc.errors})
    if public:
        if isinstance(exc, NotFoundError):
            return HTTPException(status_code=code, detail=PUBLIC_NOT_FOUND_MESSAGE)
        return HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail=PUBLIC_UNAVAILABLE_MESSAGE)
    return HTTPException(status_code=code, detail={"kind": exc.kind, "message": str(exc)})


@contextmanager
def service_errors(*, public: bool = False) -> Iterator[None]:
    """Re-raise service errors from the wrapped block as ``HTTPException``."""

    try:
        yield
    except BugdeskError as exc:
        raise to_http_exception(exc, public=public) from exc
