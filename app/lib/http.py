# app/lib/http.py
from fastapi import HTTPException
from filelock import Timeout

from app.errors import (
    ComicJobError,
    EditFailedError,
    InsufficientCreditsError,
    InvalidEditError,
    InvalidJobInputError,
    InvalidJobStateError,
    JobNotFoundError,
    LedgerError,
    MissingApprovalsError,
    MissingPagesError,
    StorageError,
    VersionConflictError,
)


def http_error(e: Exception) -> HTTPException:
    """Router-side mapping of domain errors to HTTP responses."""
    if isinstance(e, JobNotFoundError):
        return HTTPException(404, str(e))
    if isinstance(e, (InvalidJobStateError, VersionConflictError)):
        return HTTPException(409, str(e))
    if isinstance(e, Timeout):
        return HTTPException(409, "job is busy, try again")
    if isinstance(e, MissingApprovalsError):
        return HTTPException(400, {"error": str(e), "missingApprovals": e.missing})
    if isinstance(e, MissingPagesError):
        return HTTPException(400, {"error": str(e), "missingPages": e.missing})
    if isinstance(e, (InvalidEditError, InvalidJobInputError)):
        return HTTPException(400, str(e))
    if isinstance(e, InsufficientCreditsError):
        return HTTPException(402, {"error": str(e), "required": e.required})
    if isinstance(e, EditFailedError):
        return HTTPException(502, str(e))
    if isinstance(e, (LedgerError, StorageError)):
        return HTTPException(503, str(e))
    if isinstance(e, ComicJobError):
        return HTTPException(500, str(e))
    return HTTPException(500, f"internal error: {e}")
