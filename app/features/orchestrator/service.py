# app/features/orchestrator/service.py
from __future__ import annotations

from typing import TYPE_CHECKING, List, Optional, Tuple

from app.config import config
from app.errors import FatalGenerationError, GenerationError
from app.features.beats.service import beat_for, lock_beats
from app.features.finalize.service import finalize_step
from app.features.generation.schemas import GenerationRequest, GenerationResult
from app.features.jobs.schemas import Job, JobStatus, StepOutcome
from app.features.jobs.targets import STORY_TARGETS, TARGETS, Target, story_number
from app.lib.jobs import Timeout
from app.logger import get_logger

from .failure import fail_job

if TYPE_CHECKING:
    from app.services import Services

log = get_logger(__name__)

PROGRESS_BEATS = 5
PROGRESS_REVIEW = 80


def progress_for(index: int) -> int:
    """Progress while producing the target at `index` of the twelve."""
    return 10 + (70 * index) // len(TARGETS)


def first_missing_target(job: Job) -> Tuple[Optional[Target], int]:
    pages = job.output_data.generated_pages
    for i, t in enumerate(TARGETS):
        if not pages.get(t):
            return t, i
    return None, len(TARGETS)


def continuity_pages(job: Job) -> List[str]:
    """Only the latest story page is kept as continuity context."""
    pages = job.output_data.generated_pages
    for t in reversed(STORY_TARGETS):
        if pages.get(t):
            return [pages[t]]
    return []


def generation_request_for(job: Job, target: Target, **extra) -> GenerationRequest:
    inp = job.input_data
    out = job.output_data
    previous = None
    n = story_number(target)
    if n and n > 1:
        previous = out.generated_pages.get(STORY_TARGETS[n - 2])
    fields = dict(
        job_id=job.id,
        target=target,
        hero_name=inp.hero_name,
        comic_title=inp.comic_title,
        story_description=inp.story_description,
        style=inp.style,
        illustration_style=inp.illustration_style,
        beat=beat_for(job, target),
        panel_count=out.panel_counts.get(target),
        character_ref_path=out.character_ref_storage_path,
        photo_path=inp.photo_storage_path,
        previous_page_path=previous,
    )
    fields.update(extra)
    return GenerationRequest(**fields)


def _enter_review(job: Job) -> None:
    job.status = JobStatus.AWAITING_APPROVAL
    job.progress = PROGRESS_REVIEW
    job.current_page = len(TARGETS)


def _apply_qa_fixes(job: Job, target: Target, req: GenerationRequest, result: GenerationResult, svc: "Services") -> str:
    """Minimal-edit passes for a QA verdict with issues; any failure keeps the last good asset."""
    asset = result.asset_path
    qa = result.qa
    counts = job.output_data.qa_fix_counts
    while qa is not None and not qa.ok and qa.issues and counts.get(target, 0) < svc.policy.max_qa_fixes:
        counts[target] = counts.get(target, 0) + 1
        log.info(f"[{job.id}] QA fix {counts[target]}/{svc.policy.max_qa_fixes} for {target}: {qa.issues[:4]}")
        fix_req = req.model_copy(update={
            "qa_fix_source": asset,
            "qa_fix_issues": qa.issues[:4],
            "qa_fix_round": counts[target],
            "character_ref_path": job.output_data.character_ref_storage_path,
        })
        try:
            fixed = svc.generator.generate(fix_req)
        except Exception as e:
            log.warning(f"[{job.id}] QA fix for {target} failed, keeping original: {e}")
            break
        asset = fixed.asset_path
        qa = fixed.qa
    return asset


def _advance(job_id: str, svc: "Services") -> Tuple[StepOutcome, Optional[int]]:
    """One unit of work on a locked job. Returns the outcome and the delay for the next step (None = stop)."""
    job = svc.store.load(job_id)

    if job.is_terminal:
        log.info(f"[{job_id}] step on terminal job ({job.status}); nothing to do")
        return StepOutcome(job_id=job_id, action="noop", status=job.status), None

    if job.output_data.finalize is not None:
        return finalize_step(job, svc)

    if job.status == JobStatus.AWAITING_APPROVAL:
        log.info(f"[{job_id}] awaiting approval; nothing to do")
        return StepOutcome(job_id=job_id, action="noop", status=job.status), None

    job.status = JobStatus.PROCESSING
    job.touch()

    # 1) beats
    if not job.output_data.beats_locked:
        log.info(f"[{job_id}] locking beats")
        try:
            counts = lock_beats(job, svc.beats)
        except Exception as e:
            job = fail_job(job, f"Beat generation failed: {e}", store=svc.store, ledger=svc.ledger)
            return StepOutcome(job_id=job_id, action="failed", status=job.status), None
        job.progress = max(job.progress, PROGRESS_BEATS)
        svc.store.save(job)
        log.info(f"[{job_id}] beats locked; panel counts {[counts[t] for t in STORY_TARGETS]}")
        return StepOutcome(job_id=job_id, action="beats_locked", status=job.status,
                           delay_ms=svc.policy.step_delay_ms), svc.policy.step_delay_ms

    # 2) next missing target
    target, index = first_missing_target(job)
    if target is None:
        _enter_review(job)
        svc.store.save(job)
        log.info(f"[{job_id}] all targets generated; awaiting approval")
        return StepOutcome(job_id=job_id, action="awaiting_approval", status=job.status), None

    job.current_page = index
    job.progress = max(job.progress, progress_for(index))
    req = generation_request_for(job, target)
    log.info(f"[{job_id}] generating {target} ({index + 1}/{len(TARGETS)})")

    try:
        result = svc.generator.generate(req)
    except Exception as e:
        err = e if isinstance(e, GenerationError) else FatalGenerationError(str(e))
        decision = svc.policy.classify(job.output_data, target, err)
        if decision.retry:
            log.warning(f"[{job_id}] {decision.reason}; retrying in {decision.delay_ms}ms")
            svc.store.save(job)
            return StepOutcome(job_id=job_id, action="retry", target=target.value, status=job.status,
                               delay_ms=decision.delay_ms), decision.delay_ms
        job = fail_job(job, f"Generation failed for {target}: {decision.reason}",
                       store=svc.store, ledger=svc.ledger)
        return StepOutcome(job_id=job_id, action="failed", target=target.value, status=job.status), None

    out = job.output_data
    if result.updated_reference_image:
        out.character_ref_storage_path = result.updated_reference_image
    out.generated_pages[target] = _apply_qa_fixes(job, target, req, result, svc)
    out.all_previous_pages = continuity_pages(job)
    svc.policy.clear(out, target)

    if first_missing_target(job)[0] is None:
        _enter_review(job)
        svc.store.save(job)
        log.info(f"[{job_id}] {target} done; all targets generated, awaiting approval")
        return StepOutcome(job_id=job_id, action="generated", target=target.value, status=job.status), None

    svc.store.save(job)
    log.info(f"[{job_id}] {target} done")
    return StepOutcome(job_id=job_id, action="generated", target=target.value, status=job.status,
                       delay_ms=svc.policy.step_delay_ms), svc.policy.step_delay_ms


def run_step(job_id: str, svc: "Services") -> StepOutcome:
    """
    Advance a job by exactly one unit of work, then schedule the next step.

    Re-derives the next action from the persisted record every time, so a
    duplicate or replayed invocation is harmless. A step that cannot take
    the job lock acks without acting: the lock holder reschedules.
    """
    if not svc.store.exists(job_id):
        log.warning(f"[{job_id}] step for unknown job; acking")
        return StepOutcome(job_id=job_id, action="not_found")

    try:
        with svc.store.lock(job_id, timeout=config.job_lock_timeout):
            outcome, delay = _advance(job_id, svc)
    except Timeout:
        log.info(f"[{job_id}] job is locked by another step; acking")
        return StepOutcome(job_id=job_id, action="locked")

    # scheduled after the lock is released so the next step can take it
    if delay is not None:
        svc.scheduler.schedule(job_id, delay)
    return outcome
