# app/features/orchestrator/failure.py
from __future__ import annotations

from app.errors import LedgerError
from app.features.jobs.schemas import Job, JobStatus
from app.lib.jobs import JobStore
from app.logger import get_logger

log = get_logger(__name__)

REFUND_REASON = "refund_failed_generation"


def _refund(job: Job, ledger) -> str:
    if not job.user_id:
        log.error(f"[{job.id}] cannot refund {job.credits_used} credits: job has no user_id")
        return "pending"
    try:
        ledger.credit(job.user_id, job.credits_used, reason=REFUND_REASON, job_id=job.id)
    except LedgerError as e:
        log.error(f"[{job.id}] refund of {job.credits_used} credits failed, left pending: {e}")
        return "pending"
    return "refunded"


def fail_job(job: Job, message: str, *, store: JobStore, ledger) -> Job:
    """
    The single exit to `failed`: refund once, record the error, persist.
    Calling it again on an already failed job changes nothing.
    Caller holds the job lock.
    """
    if job.status == JobStatus.FAILED:
        return job

    log.error(f"[{job.id}] job failed: {message}")
    if job.credits_used > 0 and job.refund_status is None:
        job.refund_status = _refund(job, ledger)

    job.error_message = message
    job.status = JobStatus.FAILED
    job.output_data.finalize = None
    job.touch()
    return store.save(job)


def retry_pending_refund(job: Job, *, store: JobStore, ledger) -> bool:
    """Re-issue a refund that fail_job could not complete. Caller holds the job lock."""
    if job.status != JobStatus.FAILED or job.refund_status != "pending":
        return False
    if _refund(job, ledger) != "refunded":
        return False
    job.refund_status = "refunded"
    store.save(job)
    log.info(f"[{job.id}] pending refund of {job.credits_used} credits issued")
    return True
