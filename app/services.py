# app/services.py
from __future__ import annotations

from dataclasses import dataclass
from functools import lru_cache
from typing import Any

from app.config import config
from app.features.beats.service import BeatWriter
from app.features.finalize.assembly import DocumentAssembler
from app.features.generation.service import OpenAIPageGenerator
from app.features.orchestrator.retry import RetryPolicy
from app.lib.cloud_tasks import CloudTasksScheduler, LocalScheduler
from app.lib.credits import CreditLedger
from app.lib.jobs import JobStore
from app.lib.notify import Notifier
from app.logger import get_logger

log = get_logger(__name__)


@dataclass
class Services:
    """The collaborators a job step, an approval or a finalize call talks to."""

    store: JobStore
    generator: Any
    beats: Any
    ledger: Any
    documents: Any
    scheduler: Any
    notifier: Any
    policy: RetryPolicy


def _local_runner(job_id: str) -> None:
    from app.features.orchestrator.service import run_step

    run_step(job_id, get_services())


def build_services() -> Services:
    if config.task_backend == "local":
        scheduler = LocalScheduler(_local_runner)
    else:
        scheduler = CloudTasksScheduler()
    log.info(f"task backend: {config.task_backend}")
    return Services(
        store=JobStore(),
        generator=OpenAIPageGenerator(),
        beats=BeatWriter(),
        ledger=CreditLedger(),
        documents=DocumentAssembler(),
        scheduler=scheduler,
        notifier=Notifier(),
        policy=RetryPolicy.from_config(),
    )


@lru_cache(maxsize=1)
def get_services() -> Services:
    return build_services()
