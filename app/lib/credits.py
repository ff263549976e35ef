# app/lib/credits.py
from __future__ import annotations

import requests

from app.config import config
from app.errors import InsufficientCreditsError, LedgerError
from app.logger import get_logger

log = get_logger(__name__)


class CreditLedger:
    """
    HTTP client for the prepaid credit ledger.

    POST <base>/debit  -> 2xx ok, 402 insufficient balance
    POST <base>/credit -> 2xx ok
    Both carry an Idempotency-Key of "<reason>:<job_id>" so a retried call
    is applied once by the ledger.
    """

    def __init__(self, base_url: str | None = None, api_key: str | None = None, timeout: float | None = None):
        self.base_url = (base_url or config.ledger_base_url).rstrip("/")
        self.api_key = api_key if api_key is not None else config.ledger_api_key
        self.timeout = timeout or config.ledger_timeout

    def _post(self, op: str, *, user_id: str, amount: int, reason: str, job_id: str, key: str) -> requests.Response:
        headers = {"Content-Type": "application/json", "Idempotency-Key": key}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        payload = {"user_id": user_id, "amount": amount, "reason": reason, "job_id": job_id}
        try:
            return requests.post(f"{self.base_url}/{op}", json=payload, headers=headers, timeout=self.timeout)
        except requests.RequestException as e:
            raise LedgerError(f"ledger {op} failed: {e}")

    def debit(self, user_id: str, amount: int, *, reason: str, job_id: str, key: str | None = None) -> None:
        """Raises InsufficientCreditsError when the balance does not cover `amount`."""
        r = self._post("debit", user_id=user_id, amount=amount, reason=reason, job_id=job_id,
                       key=key or f"{reason}:{job_id}")
        if r.status_code == 402:
            raise InsufficientCreditsError(amount)
        if not r.ok:
            raise LedgerError(f"ledger debit failed ({r.status_code}): {r.text[:200]}")
        log.info(f"[{job_id}] debited {amount} credits from {user_id} ({reason})")

    def credit(self, user_id: str, amount: int, *, reason: str, job_id: str) -> None:
        r = self._post("credit", user_id=user_id, amount=amount, reason=reason, job_id=job_id,
                       key=f"{reason}:{job_id}")
        if not r.ok:
            raise LedgerError(f"ledger credit failed ({r.status_code}): {r.text[:200]}")
        log.info(f"[{job_id}] credited {amount} credits to {user_id} ({reason})")
