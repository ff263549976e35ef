# app/lib/cloud_tasks.py
from __future__ import annotations

import datetime
import json
import threading
from typing import Callable

from google.cloud import tasks_v2
from google.protobuf import timestamp_pb2

from app.config import config
from app.logger import get_logger

log = get_logger(__name__)


def step_worker_url(job_id: str) -> str:
    return f"{config.public_base_url.rstrip('/')}/api/v1/tasks/worker/step/{job_id}"


def create_task(*, queue: str, url: str, payload: dict, schedule_in_seconds: float = 0):
    """
    Create an HTTP task targeting FastAPI worker endpoint.
    Assumes OIDC auth is not used; protect via network/IAP/firewall as needed.
    """
    client = tasks_v2.CloudTasksClient()
    parent = client.queue_path(config.gcp_project, config.gcp_location, queue)

    body = json.dumps(payload).encode("utf-8")
    task = {
        "http_request": {
            "http_method": tasks_v2.HttpMethod.POST,
            "url": url,
            "headers": {"Content-Type": "application/json"},
            "body": body,
        },
        # one step is a single generation call; keep well under the queue maximum
        "dispatch_deadline": {"seconds": 600},
    }

    if schedule_in_seconds > 0:
        d = datetime.datetime.now(datetime.timezone.utc) + datetime.timedelta(seconds=schedule_in_seconds)
        ts = timestamp_pb2.Timestamp()
        ts.FromDatetime(d)
        task["schedule_time"] = ts

    return client.create_task(parent=parent, task=task)


class CloudTasksScheduler:
    """Schedules the next step of a job as a delayed Cloud Task."""

    def __init__(self, queue: str | None = None):
        self.queue = queue or config.tasks_queue

    def schedule(self, job_id: str, delay_ms: int) -> None:
        task = create_task(
            queue=self.queue,
            url=step_worker_url(job_id),
            payload={"job_id": job_id},
            schedule_in_seconds=max(0, delay_ms) / 1000.0,
        )
        log.debug(f"[{job_id}] next step scheduled in {delay_ms}ms as {getattr(task, 'name', task)}")


class LocalScheduler:
    """In-process timers for local development; runs `runner(job_id)` after the delay."""

    def __init__(self, runner: Callable[[str], object]):
        self.runner = runner

    def _run(self, job_id: str) -> None:
        try:
            self.runner(job_id)
        except Exception:
            log.exception(f"[{job_id}] local step failed")

    def schedule(self, job_id: str, delay_ms: int) -> None:
        t = threading.Timer(max(0, delay_ms) / 1000.0, self._run, args=(job_id,))
        t.daemon = True
        t.start()
        log.debug(f"[{job_id}] next step scheduled locally in {delay_ms}ms")
