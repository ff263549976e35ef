# app/errors.py
from __future__ import annotations

from typing import List


class ComicJobError(Exception):
    """Base for every error raised by the orchestrator."""


class JobNotFoundError(ComicJobError):
    def __init__(self, job_id: str):
        super().__init__(f"unknown job_id {job_id}")
        self.job_id = job_id


class InvalidJobStateError(ComicJobError):
    def __init__(self, job_id: str, status: str, expected: str):
        super().__init__(f"Job status is {status}, expected {expected}")
        self.job_id = job_id
        self.status = status
        self.expected = expected


class VersionConflictError(ComicJobError):
    """Another writer updated the job record since it was read."""


class StorageError(ComicJobError):
    pass


# -------- generation outcomes --------

class GenerationError(ComicJobError):
    """A generation call failed. Subclasses decide retry vs fatal."""

    retryable = False


class ContentValidationError(GenerationError):
    """The service rejected the input (unprocessable / blocked content / no candidates)."""

    retryable = True


class TransientServiceError(GenerationError):
    """Rate-limited or server-side failure."""

    retryable = True


class FatalGenerationError(GenerationError):
    """Unrecoverable input/config problem, or retries exhausted."""


# -------- finalize / billing / editing --------

class FinalizationError(ComicJobError):
    def __init__(self, key: str, error: str):
        super().__init__(f"{key}: {error}")
        self.key = key
        self.error = error


class InsufficientCreditsError(ComicJobError):
    def __init__(self, required: int):
        super().__init__(f"Insufficient credits. You need {required} credits for this operation.")
        self.required = required


class LedgerError(ComicJobError):
    pass


class MissingApprovalsError(ComicJobError):
    def __init__(self, missing: List[str]):
        super().__init__(f"Not all pages approved. Missing: {', '.join(missing)}")
        self.missing = missing


class MissingPagesError(ComicJobError):
    def __init__(self, missing: List[str]):
        super().__init__(f"Cannot build documents. Missing pages: {', '.join(missing)}")
        self.missing = missing


class InvalidEditError(ComicJobError):
    pass


class EditFailedError(ComicJobError):
    pass


class InvalidJobInputError(ComicJobError):
    pass
