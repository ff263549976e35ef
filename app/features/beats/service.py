# app/features/beats/service.py
from __future__ import annotations

import re
from typing import Dict, List

from app.config import config
from app.errors import FatalGenerationError
from app.features.jobs.schemas import Job
from app.features.jobs.targets import STORY_TARGETS, Target
from app.lib.json_tools import load_json_block
from app.lib.openai_client import get_client
from app.logger import get_logger

from .prompt import SYSTEM, build_beats_prompt

log = get_logger(__name__)

BEAT_COUNT = 10
MIN_PANELS = 3
MAX_PANELS = 5
DEFAULT_PANELS = 5

_PANEL_MARKER_RE = re.compile(r"^\s*([a-e])\)", re.IGNORECASE | re.MULTILINE)
_GERMAN = {"de", "de-de", "de_at", "de-ch", "german", "deutsch"}


def normalize_language(lang: str | None) -> str:
    return "de" if (lang or "en").strip().lower() in _GERMAN else "en"


def panel_count_from_beat(beat: str) -> int:
    """Distinct line-leading a)..e) markers, clamped to [3, 5]; 5 when none are found."""
    if not beat:
        return DEFAULT_PANELS
    found = {m.group(1).lower() for m in _PANEL_MARKER_RE.finditer(beat)}
    count = len(found) or DEFAULT_PANELS
    return min(MAX_PANELS, max(MIN_PANELS, count))


def compute_panel_counts(beats: List[str]) -> Dict[Target, int]:
    if len(beats) != BEAT_COUNT:
        raise ValueError(f"expected {BEAT_COUNT} beats, got {len(beats)}")
    counts: Dict[Target, int] = {t: panel_count_from_beat(b) for t, b in zip(STORY_TARGETS, beats)}
    counts[Target.COVER] = 1
    return counts


def parse_beats(raw: str) -> List[str] | None:
    try:
        data = load_json_block(raw)
    except ValueError:
        return None
    pages = data.get("pages") if isinstance(data, dict) else data
    if not isinstance(pages, list) or len(pages) != BEAT_COUNT:
        return None
    if not all(isinstance(p, str) and p.strip() for p in pages):
        return None
    return [p.strip() for p in pages]


class BeatWriter:
    """Asks the text model for ten locked beats, one per interior page."""

    def __init__(self, *, model: str | None = None, attempts: int | None = None):
        self.model = model or config.openai_text_model
        self.attempts = max(1, attempts or config.beat_attempts)

    def write(self, *, story_description: str, hero_name: str, language: str) -> List[str]:
        prompt = build_beats_prompt(
            story_description=story_description, hero_name=hero_name, language=language
        )
        last_error = "no valid response"
        for attempt in range(1, self.attempts + 1):
            try:
                resp = get_client().chat.completions.create(
                    model=self.model,
                    temperature=0.8,
                    messages=[
                        {"role": "system", "content": SYSTEM},
                        {"role": "user", "content": prompt},
                    ],
                )
            except Exception as e:
                last_error = str(e)
                log.warning(f"beat generation attempt {attempt}/{self.attempts} failed: {e}")
                continue
            raw = (resp.choices[0].message.content or "").strip()
            beats = parse_beats(raw)
            if beats:
                return beats
            last_error = "could not get EXACTLY 10 pages"
            log.warning(f"beat generation attempt {attempt}/{self.attempts} returned an invalid shape")
        raise FatalGenerationError(f"Beat generation invalid: {last_error}")


def lock_beats(job: Job, writer: BeatWriter) -> Dict[Target, int]:
    """Generate, store and lock the beats on the job; returns the derived panel counts."""
    inp = job.input_data
    beats = writer.write(
        story_description=inp.story_description,
        hero_name=inp.hero_name,
        language=normalize_language(inp.story_language),
    )
    counts = compute_panel_counts(beats)
    job.output_data.beats = beats
    job.output_data.panel_counts = counts
    job.output_data.beats_locked = True
    return counts


def beat_for(job: Job, target: Target) -> str | None:
    beats = job.output_data.beats
    if target not in STORY_TARGETS or len(beats) != BEAT_COUNT:
        return None
    return beats[STORY_TARGETS.index(target)]
