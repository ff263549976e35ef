from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.features.jobs.targets import Target


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class JobStatus(str, Enum):
    QUEUED = "queued"
    PROCESSING = "processing"
    AWAITING_APPROVAL = "awaiting_approval"
    COMPLETED = "completed"
    FAILED = "failed"

    def __str__(self) -> str:
        return self.value


TERMINAL_STATUSES = {JobStatus.COMPLETED, JobStatus.FAILED}


class _Record(BaseModel):
    # stored/served with the camelCase keys clients already read
    model_config = ConfigDict(populate_by_name=True)


class JobInput(_Record):
    """Immutable job configuration captured at creation."""

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    hero_name: str = Field(..., alias="heroName")
    comic_title: str = Field(..., alias="comicTitle")
    story_description: str = Field(..., alias="storyDescription")
    story_language: str = Field("en", alias="storyLanguage")
    character_style: str = Field("", alias="characterStyle")
    custom_style: Optional[str] = Field(None, alias="customStyle")
    illustration_style: str = Field("", alias="illustrationStyle")
    photo_storage_path: Optional[str] = Field(None, alias="photoStoragePath")
    mime_type: Optional[str] = Field(None, alias="mimeType")
    customer_email: Optional[str] = Field(None, alias="customerEmail")

    @property
    def style(self) -> str:
        if self.character_style == "custom":
            return self.custom_style or ""
        return self.character_style


class FinalizeCursor(_Record):
    """Where the chunked finalize pipeline resumes on the next step."""

    phase: Literal["customer", "interior", "cover"] = "customer"
    next_index: int = Field(0, alias="nextIndex", ge=0)
    customer_url: Optional[str] = Field(None, alias="customerUrl")
    interior_url: Optional[str] = Field(None, alias="interiorUrl")


class OutputData(_Record):
    generated_pages: Dict[Target, str] = Field(default_factory=dict, alias="generatedPages")
    character_ref_storage_path: Optional[str] = Field(None, alias="characterRefStoragePath")
    all_previous_pages: List[str] = Field(default_factory=list, alias="allPreviousPages")
    beats_locked: bool = Field(False, alias="beatsLocked")
    beats: List[str] = Field(default_factory=list)
    panel_counts: Dict[Target, int] = Field(default_factory=dict, alias="panelCounts")

    retry_counts: Dict[Target, int] = Field(default_factory=dict)
    transient_retry_counts: Dict[Target, int] = Field(default_factory=dict)
    qa_fix_counts: Dict[Target, int] = Field(default_factory=dict)
    edit_counts: Dict[Target, int] = Field(default_factory=dict)

    finalize: Optional[FinalizeCursor] = None
    comic_url: Optional[str] = Field(None, alias="comicUrl")
    cover_url: Optional[str] = Field(None, alias="coverUrl")
    interior_url: Optional[str] = Field(None, alias="interiorUrl")


class Job(_Record):
    id: str
    status: JobStatus = JobStatus.QUEUED
    progress: int = Field(0, ge=0, le=100)
    current_page: int = 0
    created_at: datetime = Field(default_factory=utcnow)
    last_heartbeat_at: datetime = Field(default_factory=utcnow)
    input_data: JobInput
    output_data: OutputData = Field(default_factory=OutputData)
    page_approvals: Dict[Target, bool] = Field(default_factory=dict)
    credits_used: int = 0
    refund_status: Optional[Literal["refunded", "pending"]] = None
    error_message: Optional[str] = None
    user_id: Optional[str] = None
    version: int = 0

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES

    def touch(self) -> None:
        self.last_heartbeat_at = utcnow()

    def public_view(self) -> dict:
        return self.model_dump(mode="json", by_alias=True)


# -------- request / response models --------

class CreateJobRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    hero_name: str = Field(..., min_length=1)
    comic_title: str = Field(..., min_length=1)
    story_description: str = Field(..., min_length=1)
    story_language: str = "en"
    character_style: str = ""
    custom_style: Optional[str] = None
    illustration_style: str = ""
    customer_email: Optional[str] = None
    photo_base64: str = Field(..., description="PNG/JPEG base64 (raw or data URL) of the hero photo")


class CreateJobResponse(BaseModel):
    job_id: str
    credits_used: int
    status_url: str
    worker_url: str


class StepOutcome(BaseModel):
    """What a single step invocation did; returned by the worker endpoint."""

    job_id: str
    action: str
    target: Optional[str] = None
    status: Optional[JobStatus] = None
    delay_ms: Optional[int] = None
