# app/features/finalize/service.py
from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Tuple

from app.config import config
from app.errors import (
    FinalizationError,
    InvalidJobStateError,
    MissingApprovalsError,
    MissingPagesError,
)
from app.features.jobs.schemas import FinalizeCursor, Job, JobStatus, StepOutcome
from app.features.jobs.targets import (
    CUSTOMER_LAYOUT,
    INTERIOR_LAYOUT,
    REQUIRED_APPROVALS,
    TARGETS,
    Target,
)
from app.features.orchestrator.failure import fail_job
from app.logger import get_logger

if TYPE_CHECKING:
    from app.services import Services

log = get_logger(__name__)

PROGRESS_FINALIZING = 85
PROGRESS_CUSTOMER_DONE = 90
PROGRESS_INTERIOR_DONE = 95

_LAYOUTS = {"customer": CUSTOMER_LAYOUT, "interior": INTERIOR_LAYOUT}


def missing_approvals(job: Job) -> list[str]:
    return [t.value for t in REQUIRED_APPROVALS if not job.page_approvals.get(t)]


def missing_pages(job: Job) -> list[str]:
    return [t.value for t in TARGETS if not job.output_data.generated_pages.get(t)]


def request_finalize(job_id: str, svc: "Services") -> Job:
    """
    Validate approvals and pages, then hand the job back to the step loop with
    a fresh finalize cursor. A rejected call leaves the record untouched.
    """
    with svc.store.lock(job_id, timeout=config.job_lock_timeout):
        job = svc.store.load(job_id)
        if job.status != JobStatus.AWAITING_APPROVAL:
            raise InvalidJobStateError(job_id, job.status.value, JobStatus.AWAITING_APPROVAL.value)

        missing = missing_approvals(job)
        if missing:
            raise MissingApprovalsError(missing)
        absent = missing_pages(job)
        if absent:
            raise MissingPagesError(absent)

        job.status = JobStatus.PROCESSING
        job.progress = max(job.progress, PROGRESS_FINALIZING)
        job.output_data.finalize = FinalizeCursor()
        job.touch()
        job = svc.store.save(job)
        log.info(f"[{job_id}] finalization started")

    svc.scheduler.schedule(job_id, 0)
    return job


def _metadata(job: Job, key: str) -> dict:
    return {"comicTitle": job.input_data.comic_title, "heroName": job.input_data.hero_name, "pageKey": key}


def _chunk(job: Job, cursor: FinalizeCursor, svc: "Services") -> Tuple[str, str]:
    """Append the page under the cursor; returns (document key, current document url)."""
    key, target = _LAYOUTS[cursor.phase][cursor.next_index]
    asset = job.output_data.generated_pages.get(target)
    if not asset:
        raise FinalizationError(key, "page asset missing")
    try:
        res = svc.documents.append_page(
            job.id,
            kind=cursor.phase,
            key=key,
            position=cursor.next_index,
            asset_path=asset,
            metadata=_metadata(job, key),
        )
    except Exception as e:
        raise FinalizationError(key, str(e))
    if not res.success or not res.document_url:
        raise FinalizationError(key, res.error or "no document url returned")
    return key, res.document_url


def _advance_cursor(job: Job, cursor: FinalizeCursor, url: str) -> None:
    if cursor.phase == "customer":
        cursor.customer_url = url
    else:
        cursor.interior_url = url
    cursor.next_index += 1
    if cursor.next_index < len(_LAYOUTS[cursor.phase]):
        return
    if cursor.phase == "customer":
        cursor.phase, cursor.next_index = "interior", 0
        job.progress = max(job.progress, PROGRESS_CUSTOMER_DONE)
        log.info(f"[{job.id}] customer document complete")
    else:
        cursor.phase, cursor.next_index = "cover", 0
        job.progress = max(job.progress, PROGRESS_INTERIOR_DONE)
        log.info(f"[{job.id}] interior document complete")


def _cover(job: Job, svc: "Services") -> str:
    pages = job.output_data.generated_pages
    front, back = pages.get(Target.COVER), pages.get(Target.BACK_COVER)
    if not front or not back:
        raise FinalizationError("coverDocument", "front or back cover missing")
    try:
        res = svc.documents.build_cover_document(
            job.id, front_asset_path=front, back_asset_path=back, metadata=_metadata(job, "coverDocument")
        )
    except Exception as e:
        raise FinalizationError("coverDocument", str(e))
    if not res.success or not res.document_url:
        raise FinalizationError("coverDocument", res.error or "no document url returned")
    return res.document_url


def _notify(job: Job, svc: "Services") -> None:
    email = job.input_data.customer_email
    if not email or not job.output_data.comic_url:
        return
    try:
        svc.notifier.comic_ready(
            job_id=job.id,
            email=email,
            hero_name=job.input_data.hero_name,
            comic_title=job.input_data.comic_title,
            comic_url=job.output_data.comic_url,
        )
    except Exception as e:
        log.warning(f"[{job.id}] notification failed: {e}")


def finalize_step(job: Job, svc: "Services") -> Tuple[StepOutcome, Optional[int]]:
    """
    One finalize unit on a locked job: append a single page to the current
    document, or build the cover document and complete the job.
    """
    cursor = job.output_data.finalize
    job.touch()

    try:
        if cursor.phase in _LAYOUTS:
            key, url = _chunk(job, cursor, svc)
        else:
            key = "coverDocument"
            cover_url = _cover(job, svc)
    except FinalizationError as e:
        job = fail_job(job, f"Finalization failed at {e}", store=svc.store, ledger=svc.ledger)
        return StepOutcome(job_id=job.id, action="failed", target=e.key, status=job.status), None

    if cursor.phase in _LAYOUTS:
        _advance_cursor(job, cursor, url)
    else:
        out = job.output_data
        out.comic_url = cursor.customer_url
        out.interior_url = cursor.interior_url
        out.cover_url = cover_url
        out.finalize = None
        job.status = JobStatus.COMPLETED
        job.progress = 100
        job = svc.store.save(job)
        log.info(f"[{job.id}] comic completed")
        _notify(job, svc)
        return StepOutcome(job_id=job.id, action="completed", target=key, status=job.status), None

    svc.store.save(job)
    return StepOutcome(job_id=job.id, action="finalize_chunk", target=key, status=job.status,
                       delay_ms=svc.policy.step_delay_ms), svc.policy.step_delay_ms
