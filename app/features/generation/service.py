# app/features/generation/service.py
from __future__ import annotations

import base64
import os
from typing import List, Optional, Tuple

import openai
from google.api_core import exceptions as gexc

from app.config import config
from app.errors import (
    ContentValidationError,
    FatalGenerationError,
    GenerationError,
    StorageError,
    TransientServiceError,
)
from app.features.jobs.targets import Target, is_story_page, story_number
from app.lib.gcs_inventory import upload_to_gcs
from app.lib.imaging import build_edit_mask, resolve_asset_to_path
from app.lib.json_tools import load_json_block
from app.lib.openai_client import get_client
from app.lib.paths import scratch_dir
from app.logger import get_logger

from . import prompt as prompts
from .schemas import GenerationRequest, GenerationResult, QAVerdict

log = get_logger(__name__)

_POLICY_CODES = {"content_policy_violation", "moderation_blocked", "image_generation_user_error"}


def classify_openai_error(e: Exception) -> GenerationError:
    """Map an OpenAI SDK exception onto the retry taxonomy."""
    if isinstance(e, GenerationError):
        return e
    if isinstance(e, (openai.APITimeoutError, openai.APIConnectionError)):
        return TransientServiceError(f"OpenAI connection error: {e}")
    if isinstance(e, openai.RateLimitError):
        return TransientServiceError(f"OpenAI rate limited: {e}")
    if isinstance(e, openai.UnprocessableEntityError):
        return ContentValidationError(f"OpenAI rejected input (422): {e}")
    if isinstance(e, openai.APIStatusError):
        if e.status_code >= 500:
            return TransientServiceError(f"OpenAI server error {e.status_code}: {e}")
        if getattr(e, "code", None) in _POLICY_CODES:
            return ContentValidationError(f"OpenAI content policy: {e}")
        return FatalGenerationError(f"OpenAI error {e.status_code}: {e}")
    return FatalGenerationError(f"generation failed: {e}")


def classify_storage_error(e: Exception) -> GenerationError:
    if isinstance(e, (gexc.TooManyRequests, gexc.ServerError)):
        return TransientServiceError(f"storage unavailable: {e}")
    return FatalGenerationError(f"storage error: {e}")


def _open_files(paths: List[str]):
    return [open(p, "rb") for p in paths if p and os.path.exists(p)]


def _close_all(files) -> None:
    for f in files:
        try:
            f.close()
        except OSError:
            pass


class OpenAIPageGenerator:
    """
    Produces one page asset per call with the OpenAI Images API.

    The hero's character reference (generated once from the uploaded photo)
    is always sent; story pages also receive the previous page for continuity.
    Rendered pages are uploaded to gs://<bucket>/jobs/<job_id>/pages/.
    """

    def __init__(self, *, model: Optional[str] = None, size: Optional[str] = None):
        self.model = model or config.openai_image_model
        self.size = size or config.image_size

    # ---------------- public ----------------

    def generate(self, req: GenerationRequest) -> GenerationResult:
        workdir = scratch_dir(req.job_id, "render")
        cache = os.path.join(workdir, "_ref_cache")

        ref_local, updated_ref = self._character_reference(req, workdir, cache)

        if req.edit:
            data, object_name = self._edit(req, ref_local, workdir, cache)
        elif req.qa_fix_source:
            data, object_name = self._qa_fix(req, ref_local, cache)
        else:
            data, object_name = self._fresh(req, ref_local, cache)

        local_path = os.path.join(workdir, os.path.basename(object_name))
        asset_path = self._store(data, local_path=local_path, object_name=object_name)

        qa = self._audit(local_path, req.target) if config.qa_check_enabled else None
        return GenerationResult(asset_path=asset_path, updated_reference_image=updated_ref, qa=qa)

    # ---------------- modes ----------------

    def _fresh(self, req: GenerationRequest, ref_local: str, cache: str) -> Tuple[bytes, str]:
        images = [ref_local]
        previous = None
        if is_story_page(req.target) and req.previous_page_path:
            previous = self._resolve(req.previous_page_path, cache)
            images.append(previous)

        text = self._prompt_for(req, has_previous_page=previous is not None)
        log.debug(f"[{req.job_id}] {req.target} prompt: {text}")
        data = self._images_edit(text, images)
        return data, f"jobs/{req.job_id}/pages/{req.target}.png"

    def _edit(self, req: GenerationRequest, ref_local: str, workdir: str, cache: str) -> Tuple[bytes, str]:
        edit = req.edit
        source = self._resolve(edit.source_path, cache)
        mask = None
        if edit.region is not None:
            mask = build_edit_mask(
                source, os.path.join(workdir, f"{req.target}__mask{edit.revision}.png"), region=edit.region
            )
        text = prompts.edit_prompt(
            instructions=edit.instructions, beat=req.beat, whole_page=edit.region is None
        )
        log.debug(f"[{req.job_id}] {req.target} edit prompt: {text}")
        # the source page goes first: the mask applies to it
        data = self._images_edit(text, [source, ref_local], mask_path=mask)
        return data, f"jobs/{req.job_id}/pages/{req.target}__edit{edit.revision}.png"

    def _qa_fix(self, req: GenerationRequest, ref_local: str, cache: str) -> Tuple[bytes, str]:
        source = self._resolve(req.qa_fix_source, cache)
        data = self._images_edit(prompts.qa_fix_prompt(req.qa_fix_issues), [source, ref_local])
        # one object per round: downloads are cached by URI
        return data, f"jobs/{req.job_id}/pages/{req.target}__qafix{req.qa_fix_round}.png"

    def _prompt_for(self, req: GenerationRequest, *, has_previous_page: bool) -> str:
        common = dict(
            hero_name=req.hero_name,
            comic_title=req.comic_title,
            style=req.style,
            illustration=req.illustration_style,
            story_description=req.story_description,
            qa_fix_issues=req.qa_fix_issues,
        )
        if req.target == Target.COVER:
            return prompts.cover_prompt(**common)
        if req.target == Target.BACK_COVER:
            return prompts.back_cover_prompt(**common)
        if not req.beat:
            raise FatalGenerationError("Story beats could not be determined for page generation.")
        return prompts.page_prompt(
            page_number=story_number(req.target),
            beat=req.beat,
            panel_count=req.panel_count or 5,
            style=req.style,
            illustration=req.illustration_style,
            has_previous_page=has_previous_page,
            qa_fix_issues=req.qa_fix_issues,
        )

    # ---------------- character reference ----------------

    def _character_reference(
        self, req: GenerationRequest, workdir: str, cache: str
    ) -> Tuple[str, Optional[str]]:
        """Returns (local path, new storage path or None when an existing one was reused)."""
        if req.character_ref_path:
            return self._resolve(req.character_ref_path, cache), None
        if not req.photo_path:
            raise FatalGenerationError("photoStoragePath required when characterRefStoragePath is missing")

        log.info(f"[{req.job_id}] creating character reference from photo")
        photo = self._resolve(req.photo_path, cache)
        data = self._images_edit(
            prompts.character_prompt(style=req.style, illustration=req.illustration_style), [photo]
        )
        local = os.path.join(workdir, "character_ref.png")
        stored = self._store(data, local_path=local, object_name=f"jobs/{req.job_id}/character/reference.png")
        return local, stored

    # ---------------- IO ----------------

    def _resolve(self, asset: str, cache: str) -> str:
        try:
            return resolve_asset_to_path(asset, cache)
        except ValueError as e:
            raise FatalGenerationError(str(e))
        except gexc.GoogleAPICallError as e:
            raise classify_storage_error(e)

    def _images_edit(self, text: str, image_paths: List[str], mask_path: Optional[str] = None) -> bytes:
        files = _open_files(image_paths)
        mask = open(mask_path, "rb") if mask_path else None
        try:
            kwargs = dict(model=self.model, prompt=text, size=self.size, n=1, image=files)
            if mask is not None:
                kwargs["mask"] = mask
            resp = get_client().images.edit(**kwargs)
        except Exception as e:
            raise classify_openai_error(e)
        finally:
            _close_all(files)
            if mask is not None:
                _close_all([mask])

        b64 = resp.data[0].b64_json if resp.data else None
        if not b64:
            raise ContentValidationError("image service returned no image")
        return base64.b64decode(b64)

    def _store(self, data: bytes, *, local_path: str, object_name: str) -> str:
        tmp = f"{local_path}.part"
        with open(tmp, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, local_path)
        try:
            info = upload_to_gcs(local_path, object_name=object_name, content_type="image/png", make_signed_url=False)
        except StorageError as e:
            raise FatalGenerationError(str(e))
        except gexc.GoogleAPICallError as e:
            raise classify_storage_error(e)
        return info["gs_uri"]

    # ---------------- QA ----------------

    def _audit(self, local_path: str, target: Target) -> QAVerdict:
        """Best effort: any failure of the check itself counts as a pass."""
        with open(local_path, "rb") as f:
            b64 = base64.b64encode(f.read()).decode("ascii")
        checklist = prompts.QA_CHECKLIST.format(is_back_cover=str(target == Target.BACK_COVER).lower())
        try:
            resp = get_client().chat.completions.create(
                model=config.openai_text_model,
                temperature=0,
                messages=[{
                    "role": "user",
                    "content": [
                        {"type": "text", "text": checklist},
                        {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{b64}"}},
                    ],
                }],
            )
            raw = (resp.choices[0].message.content or "{}").strip()
            return QAVerdict.model_validate(load_json_block(raw))
        except Exception as e:
            log.debug(f"QA check skipped for {target}: {e}")
            return QAVerdict()
