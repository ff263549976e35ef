# app/features/jobs/router.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from filelock import Timeout

from app.errors import ComicJobError
from app.features.finalize.service import request_finalize
from app.features.orchestrator.service import run_step
from app.lib.http import http_error
from app.logger import get_logger
from app.services import Services, get_services

from .schemas import CreateJobRequest, CreateJobResponse, StepOutcome
from .service import create_job, get_job, resume_job

router = APIRouter(prefix="/api/v1", tags=["jobs"])
log = get_logger(__name__)


@router.post("/jobs", status_code=202, response_model=CreateJobResponse)
def create_job_endpoint(req: CreateJobRequest, svc: Services = Depends(get_services)) -> CreateJobResponse:
    """
    Public endpoint. Fire-and-forget: debits credits, persists the job and
    enqueues its first step to /api/v1/tasks/worker/step/{job_id}.
    """
    log.info(f"creating comic job for {req.user_id}: {req.comic_title}")
    try:
        job = create_job(req, svc)
    except ComicJobError as e:
        raise http_error(e)
    return CreateJobResponse(
        job_id=job.id,
        credits_used=job.credits_used,
        status_url=f"/api/v1/jobs/{job.id}",
        worker_url=f"/api/v1/tasks/worker/step/{job.id}",  # local testing
    )


@router.get("/jobs/{job_id}")
async def job_status(job_id: str, svc: Services = Depends(get_services)) -> dict:
    try:
        job = get_job(job_id, svc)
    except ComicJobError as e:
        raise http_error(e)
    return job.public_view()


@router.post("/jobs/{job_id}/resume", status_code=202)
def resume(job_id: str, svc: Services = Depends(get_services)) -> dict:
    try:
        job = resume_job(job_id, svc)
    except ComicJobError as e:
        raise http_error(e)
    return {"job_id": job.id, "status": job.status.value, "resumed": True}


@router.post("/jobs/{job_id}/finalize", status_code=202)
def finalize(job_id: str, svc: Services = Depends(get_services)) -> dict:
    try:
        job = request_finalize(job_id, svc)
    except (ComicJobError, Timeout) as e:
        raise http_error(e)
    return {"job_id": job.id, "status": job.status.value, "progress": job.progress}


@router.post("/tasks/worker/step/{job_id}", response_model=StepOutcome)
def worker_step(job_id: str, svc: Services = Depends(get_services)) -> StepOutcome:
    """
    Cloud Tasks target. Idempotent: safe to retry.
    Runs one step of the job; failures to schedule the next step surface as
    500 so the queue redelivers this one.
    """
    log.debug(f"worker step called for job id: {job_id}")
    return run_step(job_id, svc)
