# app/features/approval/service.py
from __future__ import annotations

import re
import uuid
from typing import TYPE_CHECKING, Tuple

from app.config import config
from app.errors import EditFailedError, InvalidEditError, InvalidJobStateError
from app.features.beats.service import beat_for
from app.features.generation.schemas import EditParams
from app.features.jobs.schemas import Job, JobStatus
from app.features.jobs.targets import EDITABLE_TARGETS, REQUIRED_APPROVALS, Target, is_story_page
from app.features.orchestrator.service import continuity_pages, generation_request_for
from app.logger import get_logger

from .panels import WHOLE_PAGE, page_size_for, panel_region

if TYPE_CHECKING:
    from app.services import Services

log = get_logger(__name__)

EDIT_REASON = "page_edit"

# layout changes are out of reach for an in-place edit
FORBIDDEN_EDIT_KEYWORDS = (
    "change format",
    "resize",
    "add panel",
    "remove panel",
    "change size",
    "change dimension",
    "change resolution",
    "make bigger",
    "make smaller",
    "landscape",
    "portrait",
)


def _require_review(job: Job) -> None:
    if job.status != JobStatus.AWAITING_APPROVAL:
        raise InvalidJobStateError(job.id, job.status.value, JobStatus.AWAITING_APPROVAL.value)


def approval_summary(job: Job) -> dict:
    approved = sum(1 for t in REQUIRED_APPROVALS if job.page_approvals.get(t))
    return {
        "approvedCount": approved,
        "totalRequired": len(REQUIRED_APPROVALS),
        "allApproved": approved == len(REQUIRED_APPROVALS),
    }


def set_approval(job_id: str, target: Target, approved: bool, svc: "Services") -> Job:
    with svc.store.lock(job_id, timeout=config.job_lock_timeout):
        job = svc.store.load(job_id)
        _require_review(job)
        if not job.output_data.generated_pages.get(target):
            raise InvalidEditError(f"{target} has not been generated")
        job.page_approvals[target] = approved
        job.touch()
        job = svc.store.save(job)
    log.info(f"[{job_id}] {target} {'approved' if approved else 'unapproved'}")
    return job


def approve(job_id: str, target: Target, svc: "Services") -> Job:
    return set_approval(job_id, target, True, svc)


def unapprove(job_id: str, target: Target, svc: "Services") -> Tuple[Job, dict]:
    job = set_approval(job_id, target, False, svc)
    return job, approval_summary(job)


def validate_instructions(instructions: str) -> str:
    text = (instructions or "").strip()
    if not text:
        raise InvalidEditError("Edit instructions are required")
    lowered = re.sub(r"\s+", " ", text.lower())
    for kw in FORBIDDEN_EDIT_KEYWORDS:
        if kw in lowered:
            raise InvalidEditError(
                f'Edit instructions cannot change the page format or layout ("{kw}"). '
                "Describe changes to the content of the page instead."
            )
    return text


def edit_page(job_id: str, target: Target, instructions: str, panel: int, svc: "Services") -> Job:
    """
    Regenerate one page (panel 0) or one panel band of it. The edit is billed
    before the generation call; a failed regeneration keeps the charge and
    leaves the stored page as it was.
    """
    text = validate_instructions(instructions)
    if target not in EDITABLE_TARGETS:
        raise InvalidEditError(f"{target} is not editable")

    with svc.store.lock(job_id, timeout=config.job_lock_timeout):
        job = svc.store.load(job_id)
        _require_review(job)
        out = job.output_data

        source = out.generated_pages.get(target)
        if not source:
            raise InvalidEditError(f"{target} has not been generated")

        total = out.panel_counts.get(target) or (1 if target == Target.COVER else 5)
        try:
            region = panel_region(target, panel, total)
        except ValueError as e:
            raise InvalidEditError(str(e))
        whole_page = panel == WHOLE_PAGE or target == Target.COVER

        done = out.edit_counts.get(target, 0)
        if config.max_edits_per_page and done >= config.max_edits_per_page:
            raise InvalidEditError(f"Edit limit of {config.max_edits_per_page} reached for {target}")
        if not job.user_id:
            raise InvalidEditError("job has no owner to bill")
        revision = done + 1

        # raises InsufficientCreditsError before anything else happens
        svc.ledger.debit(
            job.user_id,
            config.edit_credit_cost,
            reason=EDIT_REASON,
            job_id=job.id,
            key=f"{EDIT_REASON}:{job.id}:{target}:{uuid.uuid4().hex}",
        )

        req = generation_request_for(
            job,
            target,
            beat=beat_for(job, target) if whole_page and is_story_page(target) else None,
            previous_page_path=None,
            edit=EditParams(
                source_path=source,
                instructions=text,
                region=None if whole_page else region.as_fractions(page_size_for(target)),
                revision=revision,
            ),
        )
        log.info(f"[{job_id}] editing {target} panel {panel} (revision {revision})")
        try:
            result = svc.generator.generate(req)
        except Exception as e:
            log.error(f"[{job_id}] edit of {target} failed after billing: {e}")
            raise EditFailedError(f"Edit failed for {target}: {e}")

        if result.updated_reference_image:
            out.character_ref_storage_path = result.updated_reference_image
        out.generated_pages[target] = result.asset_path
        out.all_previous_pages = continuity_pages(job)
        out.edit_counts[target] = revision
        job.page_approvals[target] = False
        job.touch()
        job = svc.store.save(job)

    log.info(f"[{job_id}] {target} edited; approval reset")
    return job
