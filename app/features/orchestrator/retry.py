# app/features/orchestrator/retry.py
from __future__ import annotations

import random
from dataclasses import dataclass
from typing import Optional

from app.config import config
from app.errors import ContentValidationError, TransientServiceError
from app.features.jobs.schemas import OutputData
from app.features.jobs.targets import Target

JITTER_MS = 250


def backoff_ms(base_ms: int, attempt: int, *, jitter: Optional[int] = None) -> int:
    """base * 2^attempt plus jitter drawn from [0, 250)."""
    if jitter is None:
        jitter = random.randrange(JITTER_MS)
    return base_ms * (2 ** max(0, attempt)) + jitter


@dataclass(frozen=True)
class RetryDecision:
    retry: bool
    delay_ms: int = 0
    reason: str = ""


@dataclass(frozen=True)
class RetryPolicy:
    base_backoff_ms: int = 1000
    max_validation_retries: int = 5
    max_transient_retries: int = 5
    max_qa_fixes: int = 0
    step_delay_ms: int = 300

    @classmethod
    def from_config(cls) -> "RetryPolicy":
        return cls(
            base_backoff_ms=config.base_backoff_ms,
            max_validation_retries=config.max_validation_retries,
            max_transient_retries=config.max_transient_retries,
            max_qa_fixes=config.max_qa_fixes,
            step_delay_ms=config.step_delay_ms,
        )

    def classify(self, output: OutputData, target: Target, error: Exception) -> RetryDecision:
        """
        Decide retry vs fatal for a failed generation of `target`, bumping the
        matching per-target counter when a retry is granted. The backoff uses
        the counter value before the increment.
        """
        if isinstance(error, ContentValidationError):
            counters, cap, label = output.retry_counts, self.max_validation_retries, "validation"
        elif isinstance(error, TransientServiceError):
            counters, cap, label = output.transient_retry_counts, self.max_transient_retries, "transient"
        else:
            return RetryDecision(retry=False, reason=str(error) or type(error).__name__)

        attempt = counters.get(target, 0)
        if attempt >= cap:
            return RetryDecision(
                retry=False,
                reason=f"{label} retries exhausted for {target} after {attempt} attempts: {error}",
            )
        counters[target] = attempt + 1
        return RetryDecision(
            retry=True,
            delay_ms=backoff_ms(self.base_backoff_ms, attempt),
            reason=f"{label} error on {target} (attempt {attempt + 1}/{cap}): {error}",
        )

    @staticmethod
    def clear(output: OutputData, target: Target) -> None:
        """Drop both retry counters for a target that just succeeded."""
        output.retry_counts.pop(target, None)
        output.transient_retry_counts.pop(target, None)
