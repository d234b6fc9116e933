"""Common exception utilities for FastAPI routers."""

from typing import NoReturn

from fastapi import HTTPException, status

from bankrec.services.errors import (
    ConflictError,
    DownstreamError,
    NotFoundError,
    ReconciliationError,
    ValidationError,
)


def raise_not_found(detail: str, *, cause: Exception | None = None) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=detail,
    ) from cause


def raise_bad_request(detail: str, *, cause: Exception | None = None) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail=detail,
    ) from cause


def raise_unauthorized(detail: str, *, cause: Exception | None = None) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    ) from cause


def raise_conflict(detail: str, *, cause: Exception | None = None) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail=detail,
    ) from cause


def raise_service_unavailable(detail: str, *, cause: Exception | None = None) -> NoReturn:
    raise HTTPException(
        status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
        detail=detail,
    ) from cause


def raise_domain_error(exc: ReconciliationError) -> NoReturn:
    """Translate a service-layer error into the matching HTTP error."""
    if isinstance(exc, NotFoundError):
        raise_not_found(str(exc), cause=exc)
    if isinstance(exc, ValidationError):
        raise_bad_request(str(exc), cause=exc)
    if isinstance(exc, ConflictError):
        raise_conflict(str(exc), cause=exc)
    if isinstance(exc, DownstreamError):
        raise_service_unavailable(str(exc), cause=exc)
    raise_bad_request(str(exc), cause=exc)
