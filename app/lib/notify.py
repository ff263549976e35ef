# app/lib/notify.py
from __future__ import annotations

import requests

from app.config import config
from app.logger import get_logger

log = get_logger(__name__)


class Notifier:
    """Fire-and-forget completion notice; never raises."""

    def __init__(self, url: str | None = None, timeout: float = 10):
        self.url = url if url is not None else config.notify_url
        self.timeout = timeout

    def comic_ready(self, *, job_id: str, email: str, hero_name: str, comic_title: str, comic_url: str) -> bool:
        if not self.url:
            log.debug(f"[{job_id}] NOTIFY_URL not set; skipping notification")
            return False
        payload = {
            "email": email,
            "heroName": hero_name,
            "comicTitle": comic_title,
            "comicUrl": comic_url,
            "jobId": job_id,
        }
        try:
            r = requests.post(self.url, json=payload, timeout=self.timeout)
            r.raise_for_status()
            return True
        except requests.RequestException as e:
            log.warning(f"[{job_id}] completion notification failed: {e}")
            return False
