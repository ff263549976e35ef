from contextlib import asynccontextmanager

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import config
from app.features.admin.router import router as admin_router
from app.features.approval.router import router as approval_router
from app.features.jobs.router import router as jobs_router
from app.features.jobs.service import sweep_jobs
from app.logger import get_logger
from app.services import get_services

log = get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    if config.sweep_jobs_on_startup:
        result = sweep_jobs(get_services())
        log.info(f"startup sweep: {result}")
    yield


app = FastAPI(title="Comic Orchestrator API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=config.allowed_origins,
    allow_credentials=False,           # keep False while allow_origins may be ["*"]
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(jobs_router)
app.include_router(approval_router)
app.include_router(admin_router)

