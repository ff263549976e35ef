from fastapi import APIRouter, Depends

from app.features.jobs.service import sweep_jobs
from app.services import Services, get_services

router = APIRouter(prefix="/api/v1/admin", tags=["admin"])

@router.post("/sweep")
def sweep(svc: Services = Depends(get_services)):
    return sweep_jobs(svc)
