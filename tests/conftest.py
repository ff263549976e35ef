# tests/conftest.py
import os
import tempfile

# keep scratch output out of the source tree; must run before app.config loads
os.environ.setdefault("OUTPUT_DIR", tempfile.mkdtemp(prefix="comic-orchestrator-tests-"))
os.environ.setdefault("LOG_LEVEL", "INFO")
os.environ.setdefault("TASK_BACKEND", "local")

import pytest
from fastapi.testclient import TestClient

from app.errors import InsufficientCreditsError, LedgerError
from app.features.finalize.assembly import ChunkResult
from app.features.generation.schemas import GenerationResult
from app.features.jobs.schemas import Job, JobInput, JobStatus
from app.features.jobs.targets import STORY_TARGETS, TARGETS, Target
from app.features.orchestrator.retry import RetryPolicy
from app.lib.jobs import JobStore
from app.lib.paths import new_job_id
from app.services import Services, get_services

TINY_PNG_B64 = (
    "iVBORw0KGgoAAAANSUhEUgAAAAEAAAABCAQAAAC1HAwCAAAAC0lEQVR4nGNg"
    "YAAAAAMAASsJTYQAAAAASUVORK5CYII="
)

BEATS = [
    "a) Mia wakes up.\nb) She sees a glowing map.\nc) She grabs it.",
    "a) Mia runs outside.\nb) A dog follows.\nc) They reach the park.\nd) A portal opens.",
] + [
    f"a) Scene {n} opens.\nb) Action.\nc) Twist.\nd) Reaction.\ne) Hook." for n in range(3, 10)
] + ["Mia returns home and smiles at the sunset."]

# -------- Fakes for external collaborators --------

class FakeGenerator:
    def __init__(self):
        self.calls = []
        self.failures = {}
        self.qa = {}

    def fail(self, target, *errors):
        self.failures.setdefault(target, []).extend(errors)

    def calls_for(self, target):
        return [c for c in self.calls if c.target == target]

    def generate(self, req):
        self.calls.append(req)
        pending = self.failures.get(req.target)
        if pending:
            raise pending.pop(0)
        base = f"gs://test-bucket/jobs/{req.job_id}/pages/{req.target.value}"
        if req.edit:
            asset = f"{base}__edit{req.edit.revision}.png"
        elif req.qa_fix_source:
            asset = f"{base}__qafix{req.qa_fix_round}.png"
        else:
            asset = f"{base}.png"
        updated = None
        if not req.character_ref_path:
            updated = f"gs://test-bucket/jobs/{req.job_id}/character/reference.png"
        return GenerationResult(asset_path=asset, updated_reference_image=updated, qa=self.qa.get(req.target))


class FakeBeatWriter:
    def __init__(self, beats=None, error=None):
        self.beats = beats or list(BEATS)
        self.error = error
        self.calls = 0

    def write(self, *, story_description, hero_name, language):
        self.calls += 1
        if self.error:
            raise self.error
        return list(self.beats)


class FakeLedger:
    def __init__(self, balance=1000):
        self.balances = {}
        self.default_balance = balance
        self.debits = []
        self.credits = []
        self.credit_error = None

    def debit(self, user_id, amount, *, reason, job_id, key=None):
        balance = self.balances.get(user_id, self.default_balance)
        if balance < amount:
            raise InsufficientCreditsError(amount)
        self.balances[user_id] = balance - amount
        self.debits.append((user_id, amount, reason, job_id))

    def credit(self, user_id, amount, *, reason, job_id):
        if self.credit_error:
            raise self.credit_error
        self.balances[user_id] = self.balances.get(user_id, self.default_balance) + amount
        self.credits.append((user_id, amount, reason, job_id))


class FakeDocuments:
    def __init__(self):
        self.appends = []
        self.covers = []
        self.fail_on = None

    def append_page(self, job_id, *, kind, key, position, asset_path, metadata=None):
        self.appends.append((kind, key, position, asset_path))
        if key == self.fail_on:
            return ChunkResult(success=False, error="renderer crashed")
        return ChunkResult(success=True, document_url=f"https://docs.test/{job_id}/{kind}/v{position + 1}.pdf")

    def build_cover_document(self, job_id, *, front_asset_path, back_asset_path, metadata=None):
        self.covers.append((front_asset_path, back_asset_path))
        if self.fail_on == "coverDocument":
            return ChunkResult(success=False, error="cover failed")
        return ChunkResult(success=True, document_url=f"https://docs.test/{job_id}/cover.pdf")


class FakeScheduler:
    def __init__(self):
        self.calls = []

    def schedule(self, job_id, delay_ms):
        self.calls.append((job_id, delay_ms))


class FakeNotifier:
    def __init__(self):
        self.calls = []

    def comic_ready(self, **kwargs):
        self.calls.append(kwargs)
        return True


# -------- Fixtures --------

@pytest.fixture
def policy():
    return RetryPolicy(
        base_backoff_ms=1000,
        max_validation_retries=5,
        max_transient_retries=5,
        max_qa_fixes=0,
        step_delay_ms=300,
    )


@pytest.fixture
def services(tmp_path, policy):
    return Services(
        store=JobStore(str(tmp_path / "data")),
        generator=FakeGenerator(),
        beats=FakeBeatWriter(),
        ledger=FakeLedger(),
        documents=FakeDocuments(),
        scheduler=FakeScheduler(),
        notifier=FakeNotifier(),
        policy=policy,
    )


@pytest.fixture
def client(services):
    from app.main import app

    app.dependency_overrides[get_services] = lambda: services
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


# -------- Builders --------

def make_job(store, *, credits_used=100, customer_email=None, **fields) -> Job:
    job = Job(
        id=new_job_id(),
        user_id="user-1",
        credits_used=credits_used,
        input_data=JobInput(
            hero_name="Mia",
            comic_title="Mia and the Glowing Map",
            story_description="Mia finds a glowing map that leads to a hidden garden.",
            story_language="en",
            character_style="explorer outfit",
            illustration_style="watercolor",
            photo_storage_path="gs://test-bucket/jobs/uploads/photo.png",
            mime_type="image/png",
            customer_email=customer_email,
        ),
        **fields,
    )
    return store.create(job)


def make_review_job(store, *, approved=(), **kwargs) -> Job:
    """A job that finished generation and waits for approvals."""
    job = make_job(store, **kwargs)
    out = job.output_data
    out.beats_locked = True
    out.beats = list(BEATS)
    out.panel_counts = {t: 3 for t in STORY_TARGETS}
    out.panel_counts[Target.COVER] = 1
    out.generated_pages = {t: f"gs://test-bucket/jobs/{job.id}/pages/{t.value}.png" for t in TARGETS}
    out.character_ref_storage_path = f"gs://test-bucket/jobs/{job.id}/character/reference.png"
    job.page_approvals = {t: True for t in approved}
    job.status = JobStatus.AWAITING_APPROVAL
    job.progress = 80
    return store.save(job)


def drive(svc, job_id, max_steps=200):
    """Run steps the way the task queue would, until nothing new is scheduled."""
    from app.features.orchestrator.service import run_step

    outcomes = []
    for _ in range(max_steps):
        before = len(svc.scheduler.calls)
        outcomes.append(run_step(job_id, svc))
        if len(svc.scheduler.calls) == before:
            break
    return outcomes
