# tests/test_retry.py
from app.errors import ContentValidationError, FatalGenerationError, TransientServiceError
from app.features.jobs.schemas import OutputData
from app.features.jobs.targets import Target
from app.features.orchestrator.retry import JITTER_MS, RetryPolicy, backoff_ms


def test_backoff_is_exponential_without_jitter():
    assert [backoff_ms(1000, k, jitter=0) for k in range(5)] == [1000, 2000, 4000, 8000, 16000]


def test_backoff_jitter_stays_in_range():
    for k in range(4):
        for _ in range(200):
            d = backoff_ms(500, k)
            assert 500 * 2 ** k <= d < 500 * 2 ** k + JITTER_MS


def test_validation_error_bumps_its_own_counter(policy):
    out = OutputData()
    decision = policy.classify(out, Target.STORY_PAGE_3, ContentValidationError("blocked"))
    assert decision.retry
    assert 1000 <= decision.delay_ms < 1000 + JITTER_MS
    assert out.retry_counts == {Target.STORY_PAGE_3: 1}
    assert out.transient_retry_counts == {}

    decision = policy.classify(out, Target.STORY_PAGE_3, ContentValidationError("blocked"))
    assert 2000 <= decision.delay_ms < 2000 + JITTER_MS
    assert out.retry_counts[Target.STORY_PAGE_3] == 2


def test_transient_error_uses_separate_counter(policy):
    out = OutputData(retry_counts={Target.COVER: 2})
    decision = policy.classify(out, Target.COVER, TransientServiceError("429"))
    assert decision.retry
    assert out.transient_retry_counts == {Target.COVER: 1}
    assert out.retry_counts == {Target.COVER: 2}


def test_exhausted_counter_is_fatal():
    policy = RetryPolicy(max_validation_retries=2)
    out = OutputData(retry_counts={Target.COVER: 2})
    decision = policy.classify(out, Target.COVER, ContentValidationError("blocked"))
    assert not decision.retry
    assert "exhausted" in decision.reason
    assert out.retry_counts[Target.COVER] == 2


def test_other_errors_are_fatal_and_leave_counters(policy):
    out = OutputData()
    decision = policy.classify(out, Target.BACK_COVER, FatalGenerationError("bad key"))
    assert not decision.retry
    assert decision.reason == "bad key"
    assert out.retry_counts == {} and out.transient_retry_counts == {}


def test_clear_deletes_both_counters(policy):
    out = OutputData(
        retry_counts={Target.STORY_PAGE_1: 3, Target.COVER: 1},
        transient_retry_counts={Target.STORY_PAGE_1: 1},
    )
    policy.clear(out, Target.STORY_PAGE_1)
    assert Target.STORY_PAGE_1 not in out.retry_counts
    assert Target.STORY_PAGE_1 not in out.transient_retry_counts
    assert out.retry_counts == {Target.COVER: 1}
