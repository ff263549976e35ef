# app/features/jobs/service.py
from __future__ import annotations

from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Optional

from app.config import config
from app.errors import InvalidJobInputError, InvalidJobStateError, LedgerError
from app.features.orchestrator.failure import retry_pending_refund
from app.lib.gcs_inventory import upload_bytes_to_gcs
from app.lib.imaging import decode_image_b64
from app.lib.jobs import Timeout
from app.lib.paths import new_job_id
from app.logger import get_logger

from .schemas import CreateJobRequest, Job, JobInput, JobStatus, utcnow

if TYPE_CHECKING:
    from app.services import Services

log = get_logger(__name__)

GENERATION_REASON = "comic_generation"
CREATE_ROLLBACK_REASON = "refund_job_not_created"

_EXT = {"image/png": "png", "image/jpeg": "jpg"}


def create_job(req: CreateJobRequest, svc: "Services") -> Job:
    """
    Store the hero photo, debit the full generation cost, persist the job
    as queued and kick off its first step.
    """
    try:
        photo, content_type = decode_image_b64(req.photo_base64)
    except ValueError as e:
        raise InvalidJobInputError(f"invalid photo: {e}")
    if req.character_style == "custom" and not (req.custom_style or "").strip():
        raise InvalidJobInputError("custom_style is required when character_style is 'custom'")

    job_id = new_job_id()
    info = upload_bytes_to_gcs(
        photo, object_name=f"jobs/{job_id}/uploads/photo.{_EXT[content_type]}", content_type=content_type
    )

    cost = config.generation_credit_cost
    svc.ledger.debit(req.user_id, cost, reason=GENERATION_REASON, job_id=job_id)

    job = Job(
        id=job_id,
        user_id=req.user_id,
        credits_used=cost,
        input_data=JobInput(
            hero_name=req.hero_name,
            comic_title=req.comic_title,
            story_description=req.story_description,
            story_language=req.story_language,
            character_style=req.character_style,
            custom_style=req.custom_style,
            illustration_style=req.illustration_style,
            photo_storage_path=info["gs_uri"],
            mime_type=content_type,
            customer_email=req.customer_email,
        ),
    )
    try:
        job = svc.store.create(job)
    except Exception:
        log.exception(f"[{job_id}] persisting new job failed; returning {cost} credits")
        svc.ledger.credit(req.user_id, cost, reason=CREATE_ROLLBACK_REASON, job_id=job_id)
        raise

    log.info(f"[{job_id}] job created for {req.user_id} ({req.comic_title})")
    try:
        svc.scheduler.schedule(job_id, 0)
    except Exception as e:
        # the stalled-job sweep picks the job up later
        log.warning(f"[{job_id}] scheduling first step failed: {e}")
    return job


def get_job(job_id: str, svc: "Services") -> Job:
    return svc.store.load(job_id)


def resume_job(job_id: str, svc: "Services") -> Job:
    job = svc.store.load(job_id)
    resumable = job.status in (JobStatus.QUEUED, JobStatus.PROCESSING) or job.output_data.finalize is not None
    if not resumable:
        raise InvalidJobStateError(job_id, job.status.value, "queued or processing")
    svc.scheduler.schedule(job_id, 0)
    log.info(f"[{job_id}] resumed")
    return job


def is_stalled(job: Job, now: datetime, stalled_after: timedelta) -> bool:
    if job.is_terminal:
        return False
    if job.status == JobStatus.AWAITING_APPROVAL and job.output_data.finalize is None:
        return False
    return now - job.last_heartbeat_at > stalled_after


def sweep_jobs(svc: "Services", *, now: Optional[datetime] = None) -> dict:
    """Reschedule stalled jobs and retry refunds left pending."""
    now = now or utcnow()
    stalled_after = timedelta(seconds=config.stalled_after_seconds)
    resumed, refunded = [], []

    for job in svc.store.iter_jobs():
        if is_stalled(job, now, stalled_after):
            try:
                svc.scheduler.schedule(job.id, 0)
                resumed.append(job.id)
                log.info(f"[{job.id}] stalled since {job.last_heartbeat_at.isoformat()}; rescheduled")
            except Exception as e:
                log.warning(f"[{job.id}] reschedule failed: {e}")
        elif job.status == JobStatus.FAILED and job.refund_status == "pending":
            try:
                with svc.store.lock(job.id, timeout=config.job_lock_timeout):
                    fresh = svc.store.load(job.id)
                    if retry_pending_refund(fresh, store=svc.store, ledger=svc.ledger):
                        refunded.append(job.id)
            except (Timeout, LedgerError) as e:
                log.warning(f"[{job.id}] pending refund retry skipped: {e}")

    return {"resumed": resumed, "refunded": refunded}
