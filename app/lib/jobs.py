# app/lib/jobs.py
from __future__ import annotations

import json
import os
from contextlib import contextmanager
from typing import Iterator, Optional

from filelock import FileLock, Timeout

from app.errors import JobNotFoundError, VersionConflictError
from app.features.jobs.schemas import Job
from app.lib.paths import data_dir
from app.logger import get_logger

log = get_logger(__name__)


class JobStore:
    """
    One JSON record per job under <root>/jobs/<job_id>/job.json.

    Writes are atomic (tmp + fsync + replace) and versioned: save() only
    succeeds when the stored version equals the in-memory one, then bumps it.
    Callers that read-modify-write hold lock(job_id) around the sequence.
    """

    def __init__(self, root: Optional[str] = None):
        self.root = root or data_dir()

    def job_dir(self, job_id: str) -> str:
        path = os.path.join(self.root, "jobs", job_id)
        os.makedirs(path, exist_ok=True)
        return path

    def record_path(self, job_id: str) -> str:
        return os.path.join(self.root, "jobs", job_id, "job.json")

    def exists(self, job_id: str) -> bool:
        return os.path.exists(self.record_path(job_id))

    @contextmanager
    def lock(self, job_id: str, timeout: float = -1) -> Iterator[None]:
        """Per-job mutual exclusion. Raises filelock.Timeout when not acquired in time."""
        lock_path = os.path.join(self.job_dir(job_id), "job.lock")
        with FileLock(lock_path, timeout=timeout):
            yield

    def load(self, job_id: str) -> Job:
        path = self.record_path(job_id)
        if not os.path.exists(path):
            raise JobNotFoundError(job_id)
        with open(path, "r") as f:
            return Job.model_validate(json.load(f))

    def _stored_version(self, job_id: str) -> Optional[int]:
        path = self.record_path(job_id)
        if not os.path.exists(path):
            return None
        with open(path, "r") as f:
            return int(json.load(f).get("version", 0))

    def _write(self, job: Job) -> None:
        path = self.record_path(job.id)
        self.job_dir(job.id)
        tmp = f"{path}.part"
        with open(tmp, "w") as f:
            json.dump(job.model_dump(mode="json", by_alias=True), f, indent=2)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)

    def create(self, job: Job) -> Job:
        if self.exists(job.id):
            raise VersionConflictError(f"job {job.id} already exists")
        job.version = 1
        self._write(job)
        return job

    def save(self, job: Job) -> Job:
        stored = self._stored_version(job.id)
        if stored is None:
            raise JobNotFoundError(job.id)
        if stored != job.version:
            raise VersionConflictError(
                f"job {job.id} changed underneath us (stored v{stored}, have v{job.version})"
            )
        job.version = stored + 1
        self._write(job)
        return job

    def iter_jobs(self) -> Iterator[Job]:
        base = os.path.join(self.root, "jobs")
        if not os.path.isdir(base):
            return
        for name in sorted(os.listdir(base)):
            if not os.path.exists(self.record_path(name)):
                continue
            try:
                yield self.load(name)
            except (ValueError, OSError) as e:
                log.warning(f"skipping unreadable job record {name}: {e}")


__all__ = ["JobStore", "Timeout"]
