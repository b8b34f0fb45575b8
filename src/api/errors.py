"""
Docket error to HTTP translation.

Routers catch ``DocketError`` and re-raise through ``to_http_exception`` so
every error response carries the stable code:

    {"detail": {"code": "SLOT_UNAVAILABLE", "message": "..."}}
"""

from fastapi import HTTPException

from src.docket.errors import (
    ConflictError,
    DocketError,
    NotFoundError,
    StateError,
    TransientError,
    ValidationError,
)


def status_for(error: DocketError) -> int:
    """HTTP status for a docket error."""
    if isinstance(error, NotFoundError):
        return 404
    if isinstance(error, (ConflictError, StateError)):
        return 409
    if isinstance(error, ValidationError):
        return 400
    if isinstance(error, TransientError):
        return 503
    return 500


def to_http_exception(error: DocketError) -> HTTPException:
    return HTTPException(
        status_code=status_for(error),
        detail={"code": error.code, "message": str(error)},
    )
