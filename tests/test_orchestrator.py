# tests/test_orchestrator.py
import dataclasses
import json

from app.errors import (
    ContentValidationError,
    FatalGenerationError,
    LedgerError,
    TransientServiceError,
)
from app.features.jobs.schemas import JobStatus
from app.features.jobs.service import sweep_jobs
from app.features.jobs.targets import STORY_TARGETS, TARGETS, Target
from app.features.orchestrator import service as orchestrator
from app.features.orchestrator.retry import JITTER_MS, RetryPolicy
from app.features.orchestrator.service import progress_for, run_step

from conftest import FakeBeatWriter, drive, make_job


def _raw_record(svc, job_id):
    with open(svc.store.record_path(job_id)) as f:
        return json.load(f)


def test_full_generation_reaches_review(services):
    job = make_job(services.store)

    first = run_step(job.id, services)
    assert first.action == "beats_locked"
    assert services.generator.calls == []

    for _ in range(12):
        run_step(job.id, services)

    job = services.store.load(job.id)
    assert job.status == JobStatus.AWAITING_APPROVAL
    assert job.progress == 80
    assert job.output_data.panel_counts[Target.COVER] == 1
    assert job.output_data.beats_locked
    assert set(job.output_data.generated_pages) == set(TARGETS)
    assert [c.target for c in services.generator.calls] == TARGETS


def test_generation_passes_reference_and_previous_page(services):
    job = make_job(services.store)
    drive(services, job.id)
    calls = services.generator.calls

    # the first call builds the character reference from the photo
    assert calls[0].character_ref_path is None
    assert calls[0].photo_path == job.input_data.photo_storage_path
    ref = f"gs://test-bucket/jobs/{job.id}/character/reference.png"
    assert all(c.character_ref_path == ref for c in calls[1:])

    by_target = {c.target: c for c in calls}
    assert by_target[Target.STORY_PAGE_1].previous_page_path is None
    assert by_target[Target.STORY_PAGE_2].previous_page_path.endswith("/storyPage1.png")
    assert by_target[Target.COVER].previous_page_path is None
    assert by_target[Target.STORY_PAGE_1].beat.startswith("a) Mia wakes up.")
    assert by_target[Target.STORY_PAGE_2].panel_count == 4

    final = services.store.load(job.id)
    out = final.output_data
    assert out.all_previous_pages == [out.generated_pages[Target.STORY_PAGE_10]]


def test_continuity_holds_only_the_latest_story_page(services):
    job = make_job(services.store)
    for _ in range(3):  # beats, cover, storyPage1
        run_step(job.id, services)
    out = services.store.load(job.id).output_data
    assert out.all_previous_pages == [out.generated_pages[Target.STORY_PAGE_1]]

    run_step(job.id, services)
    out = services.store.load(job.id).output_data
    assert out.all_previous_pages == [out.generated_pages[Target.STORY_PAGE_2]]


def test_progress_never_decreases(services):
    job = make_job(services.store)
    seen = []
    for _ in range(13):
        run_step(job.id, services)
        seen.append(services.store.load(job.id).progress)
    assert seen == sorted(seen)
    assert seen[-1] == 80
    assert progress_for(0) == 10
    assert progress_for(11) < 80


def test_validation_retries_then_success_clears_counter(services):
    job = make_job(services.store)
    services.generator.fail(Target.STORY_PAGE_3, *[ContentValidationError("blocked")] * 3)

    drive(services, job.id)

    job = services.store.load(job.id)
    assert job.status == JobStatus.AWAITING_APPROVAL
    assert len(services.generator.calls_for(Target.STORY_PAGE_3)) == 4
    assert Target.STORY_PAGE_3 not in job.output_data.retry_counts
    assert "storyPage3" not in _raw_record(services, job.id)["output_data"]["retry_counts"]

    retry_delays = [d for _, d in services.scheduler.calls if d >= 1000]
    assert len(retry_delays) == 3
    for k, d in enumerate(retry_delays):
        assert 1000 * 2 ** k <= d < 1000 * 2 ** k + JITTER_MS


def test_retry_keeps_status_processing_between_attempts(services):
    job = make_job(services.store)
    services.generator.fail(Target.COVER, TransientServiceError("503"))
    run_step(job.id, services)  # beats
    outcome = run_step(job.id, services)
    assert outcome.action == "retry"
    assert outcome.target == "cover"
    job = services.store.load(job.id)
    assert job.status == JobStatus.PROCESSING
    assert job.output_data.transient_retry_counts == {Target.COVER: 1}
    assert Target.COVER not in job.output_data.generated_pages


def test_fatal_error_fails_job_and_refunds_once(services):
    job = make_job(services.store)
    services.generator.fail(Target.STORY_PAGE_5, FatalGenerationError("invalid api key"))

    drive(services, job.id)
    # replays after failure must not refund again
    run_step(job.id, services)
    run_step(job.id, services)

    job = services.store.load(job.id)
    assert job.status == JobStatus.FAILED
    assert "storyPage5" in job.error_message
    assert job.refund_status == "refunded"
    assert services.ledger.credits == [("user-1", 100, "refund_failed_generation", job.id)]
    assert len(services.generator.calls_for(Target.STORY_PAGE_6)) == 0


def test_exhausted_transient_retries_fail_job(services):
    services.policy = dataclasses.replace(services.policy, max_transient_retries=2)
    job = make_job(services.store)
    services.generator.fail(Target.COVER, *[TransientServiceError("429")] * 3)

    drive(services, job.id)

    job = services.store.load(job.id)
    assert job.status == JobStatus.FAILED
    assert "exhausted" in job.error_message
    assert len(services.generator.calls_for(Target.COVER)) == 3
    assert len(services.ledger.credits) == 1


def test_unexpected_exception_is_fatal(services):
    job = make_job(services.store)
    services.generator.fail(Target.COVER, RuntimeError("disk full"))
    drive(services, job.id)
    job = services.store.load(job.id)
    assert job.status == JobStatus.FAILED
    assert "disk full" in job.error_message
    assert len(services.ledger.credits) == 1


def test_beat_failure_fails_immediately(services):
    services.beats = FakeBeatWriter(error=FatalGenerationError("Beat generation invalid"))
    job = make_job(services.store)

    outcome = run_step(job.id, services)

    assert outcome.action == "failed"
    job = services.store.load(job.id)
    assert job.status == JobStatus.FAILED
    assert not job.output_data.beats_locked
    assert services.generator.calls == []
    assert services.scheduler.calls == []
    assert len(services.ledger.credits) == 1


def test_no_refund_without_credits(services):
    job = make_job(services.store, credits_used=0)
    services.generator.fail(Target.COVER, FatalGenerationError("nope"))
    drive(services, job.id)
    job = services.store.load(job.id)
    assert job.status == JobStatus.FAILED
    assert job.refund_status is None
    assert services.ledger.credits == []


def test_failed_refund_is_retried_by_sweep_once(services):
    job = make_job(services.store)
    services.ledger.credit_error = LedgerError("ledger down")
    services.generator.fail(Target.COVER, FatalGenerationError("nope"))
    drive(services, job.id)

    job = services.store.load(job.id)
    assert job.status == JobStatus.FAILED
    assert job.refund_status == "pending"
    assert services.ledger.credits == []

    services.ledger.credit_error = None
    assert sweep_jobs(services)["refunded"] == [job.id]
    assert sweep_jobs(services)["refunded"] == []
    assert services.store.load(job.id).refund_status == "refunded"
    assert len(services.ledger.credits) == 1


def test_existing_targets_are_never_regenerated(services):
    job = make_job(services.store)
    drive(services, job.id)
    calls = len(services.generator.calls)
    assert calls == 12

    for _ in range(3):
        outcome = run_step(job.id, services)
        assert outcome.action == "noop"
    assert len(services.generator.calls) == calls


def test_step_resumes_at_first_missing_target(services):
    job = make_job(services.store)
    job.output_data.beats_locked = True
    job.output_data.beats = list(FakeBeatWriter().beats)
    job.output_data.generated_pages = {Target.COVER: "gs://b/cover.png", Target.STORY_PAGE_1: "gs://b/p1.png"}
    job.output_data.character_ref_storage_path = "gs://b/ref.png"
    services.store.save(job)

    outcome = run_step(job.id, services)

    assert outcome.target == "storyPage2"
    assert [c.target for c in services.generator.calls] == [Target.STORY_PAGE_2]
    assert services.generator.calls[0].previous_page_path == "gs://b/p1.png"


def test_terminal_job_is_noop(services):
    job = make_job(services.store, status=JobStatus.COMPLETED)
    outcome = run_step(job.id, services)
    assert outcome.action == "noop"
    assert services.scheduler.calls == []
    assert services.store.load(job.id).version == job.version


def test_unknown_job_is_acked(services):
    assert run_step("does-not-exist", services).action == "not_found"


def test_locked_job_step_acks_without_acting(services, monkeypatch):
    from app.config import config

    monkeypatch.setattr(orchestrator, "config", dataclasses.replace(config, job_lock_timeout=0.05))
    job = make_job(services.store)
    with services.store.lock(job.id):
        outcome = run_step(job.id, services)
    assert outcome.action == "locked"
    assert services.beats.calls == 0
    assert services.scheduler.calls == []


def test_qa_fix_is_disabled_by_default(services):
    from app.features.generation.schemas import QAVerdict

    job = make_job(services.store)
    services.generator.qa[Target.COVER] = QAVerdict(ok=False, issues=["cropped bubble"])
    drive(services, job.id)
    job = services.store.load(job.id)
    assert not any(c.qa_fix_source for c in services.generator.calls)
    assert job.output_data.generated_pages[Target.COVER].endswith("/cover.png")


def test_qa_fix_replaces_asset_and_falls_back_on_failure(services):
    from app.features.generation.schemas import QAVerdict

    services.policy = RetryPolicy(max_qa_fixes=1, step_delay_ms=300)
    job = make_job(services.store)
    services.generator.qa[Target.COVER] = QAVerdict(ok=False, issues=["cropped bubble"])
    services.generator.qa[Target.STORY_PAGE_1] = QAVerdict(ok=False, issues=["duplicate hero"])

    run_step(job.id, services)  # beats
    run_step(job.id, services)  # cover + one fix
    job = services.store.load(job.id)
    assert job.output_data.generated_pages[Target.COVER].endswith("/cover__qafix1.png")
    assert job.output_data.qa_fix_counts == {Target.COVER: 1}

    # the story page's fix blows up: the original page is kept
    original_generate = services.generator.generate

    def flaky(req):
        if req.qa_fix_source:
            raise TransientServiceError("busy")
        return original_generate(req)

    services.generator.generate = flaky
    run_step(job.id, services)
    job = services.store.load(job.id)
    assert job.output_data.generated_pages[Target.STORY_PAGE_1].endswith("/storyPage1.png")
    assert job.status == JobStatus.PROCESSING


def test_successive_qa_fixes_chain_from_the_previous_fix(services):
    from app.features.generation.schemas import QAVerdict

    services.policy = RetryPolicy(max_qa_fixes=3, step_delay_ms=300)
    job = make_job(services.store)
    services.generator.qa[Target.COVER] = QAVerdict(ok=False, issues=["cropped bubble"])

    run_step(job.id, services)  # beats
    run_step(job.id, services)  # cover + three fixes

    fixes = [c for c in services.generator.calls_for(Target.COVER) if c.qa_fix_source]
    assert [c.qa_fix_round for c in fixes] == [1, 2, 3]
    assert fixes[0].qa_fix_source.endswith("/cover.png")
    assert fixes[1].qa_fix_source.endswith("/cover__qafix1.png")
    assert fixes[2].qa_fix_source.endswith("/cover__qafix2.png")
    job = services.store.load(job.id)
    assert job.output_data.generated_pages[Target.COVER].endswith("/cover__qafix3.png")
