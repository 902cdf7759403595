"""
Translation of record engine errors into HTTP responses.

Routes catch domain exceptions and re-raise them as HTTPException so the
client gets a meaningful status code. Anything not handled here falls
through to the global exception handler in main.py.
"""

import logging

from fastapi import HTTPException, status

from ..core.records.models import RecordValidationError
from ..core.records.store import (
    DocumentExistsError,
    DocumentNotFoundError,
    StoreUnavailableError,
    TransactionAbortedError,
)

logger = logging.getLogger(__name__)


def to_http_exception(error: Exception, operation: str) -> HTTPException:
    """Map a record engine exception to the HTTPException a route should raise."""
    if isinstance(error, RecordValidationError):
        return HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_ENTITY,
            detail=str(error),
        )

    if isinstance(error, TransactionAbortedError):
        logger.warning(
            "Operation aborted after repeated conflicts",
            extra={"operation": operation, "attempts": error.attempts}
        )
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Concurrent update conflict. Nothing was saved; please retry.",
        )

    if isinstance(error, StoreUnavailableError):
        logger.error(
            "Record store unavailable",
            extra={"operation": operation, "error": str(error)}
        )
        return HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Record store unavailable. Nothing was saved; please retry.",
        )

    if isinstance(error, DocumentNotFoundError):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(error))

    if isinstance(error, DocumentExistsError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(error))

    logger.error(
        "Unexpected error in record operation",
        extra={"operation": operation, "error": str(error)}
    )
    return HTTPException(
        status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
        detail=f"Failed to {operation}",
    )


# Exceptions routes translate; anything else propagates to the global handler
HANDLED_ERRORS = (
    RecordValidationError,
    TransactionAbortedError,
    StoreUnavailableError,
    DocumentNotFoundError,
    DocumentExistsError,
)
