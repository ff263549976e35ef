# app/features/approval/router.py
from fastapi import APIRouter, Depends, HTTPException
from filelock import Timeout

from app.errors import ComicJobError
from app.features.jobs.targets import Target, parse_target
from app.lib.http import http_error
from app.logger import get_logger
from app.services import Services, get_services

from .schemas import EditPageRequest
from .service import approve, edit_page, unapprove

router = APIRouter(prefix="/api/v1/jobs", tags=["approval"])
log = get_logger(__name__)


def _target(page_key: str) -> Target:
    try:
        return parse_target(page_key)
    except ValueError as e:
        raise HTTPException(400, str(e))


@router.post("/{job_id}/pages/{page_key}/approve")
def approve_page(job_id: str, page_key: str, svc: Services = Depends(get_services)) -> dict:
    target = _target(page_key)
    try:
        job = approve(job_id, target, svc)
    except (ComicJobError, Timeout) as e:
        raise http_error(e)
    return {"success": True, "pageKey": target.value, "approved": True,
            "pageApprovals": job.public_view()["page_approvals"]}


@router.post("/{job_id}/pages/{page_key}/unapprove")
def unapprove_page(job_id: str, page_key: str, svc: Services = Depends(get_services)) -> dict:
    target = _target(page_key)
    try:
        job, summary = unapprove(job_id, target, svc)
    except (ComicJobError, Timeout) as e:
        raise http_error(e)
    return {"success": True, "pageKey": target.value, "approved": False,
            "pageApprovals": job.public_view()["page_approvals"], **summary}


@router.post("/{job_id}/pages/{page_key}/edit")
def edit_page_endpoint(
    job_id: str, page_key: str, req: EditPageRequest, svc: Services = Depends(get_services)
) -> dict:
    """Blocking: runs the regeneration inline, so it is served from the threadpool."""
    target = _target(page_key)
    try:
        job = edit_page(job_id, target, req.instructions, req.panel, svc)
    except (ComicJobError, Timeout) as e:
        raise http_error(e)
    return {
        "success": True,
        "pageKey": target.value,
        "assetPath": job.output_data.generated_pages[target],
        "approved": False,
        "editCount": job.output_data.edit_counts.get(target, 0),
    }
