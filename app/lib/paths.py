from __future__ import annotations
import os
import uuid
from pathlib import Path
from app.config import config

def data_dir() -> str:
    """
    Root folder for all job records and artifacts: <base_output_dir>/data
    Ensures it exists and returns it as a string.
    """
    root = Path(config.base_output_dir) / "data"
    root.mkdir(parents=True, exist_ok=True)
    return str(root)

def new_job_id() -> str:
    return uuid.uuid4().hex

def scratch_dir(job_id: str, *parts: str, root: str | None = None) -> str:
    """
    Local working folder for a job's downloads/renders: <root>/jobs/<job_id>/<parts...>
    """
    path = os.path.join(root or data_dir(), "jobs", job_id, *parts)
    os.makedirs(path, exist_ok=True)
    return path
