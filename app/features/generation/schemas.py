# app/features/generation/schemas.py
from __future__ import annotations

from typing import List, Optional, Tuple

from pydantic import BaseModel, Field

from app.features.jobs.targets import Target


class QAVerdict(BaseModel):
    ok: bool = True
    issues: List[str] = Field(default_factory=list)


class EditParams(BaseModel):
    source_path: str
    instructions: str
    # (x, y, w, h) fractions of the page; None repaints the whole page
    region: Optional[Tuple[float, float, float, float]] = None
    revision: int = 1


class GenerationRequest(BaseModel):
    job_id: str
    target: Target
    hero_name: str
    comic_title: str
    story_description: str
    style: str = ""
    illustration_style: str = ""
    beat: Optional[str] = None
    panel_count: Optional[int] = None

    character_ref_path: Optional[str] = None
    photo_path: Optional[str] = None
    previous_page_path: Optional[str] = None

    edit: Optional[EditParams] = None
    qa_fix_source: Optional[str] = None
    qa_fix_issues: List[str] = Field(default_factory=list)
    qa_fix_round: int = 0


class GenerationResult(BaseModel):
    asset_path: str
    updated_reference_image: Optional[str] = None
    qa: Optional[QAVerdict] = None
