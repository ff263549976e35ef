# app/features/finalize/assembly.py
from __future__ import annotations

import json
import os
import shutil
from typing import Optional

from filelock import FileLock
from google.api_core import exceptions as gexc
from pydantic import BaseModel

from app.errors import StorageError
from app.features.approval.panels import COVER_SIZE, STORY_PAGE_SIZE
from app.lib.gcs_inventory import sign_object, upload_to_gcs
from app.lib.imaging import resolve_asset_to_path
from app.lib.paths import scratch_dir
from app.lib.pdf import append_image_page, make_cover_spread
from app.logger import get_logger

log = get_logger(__name__)

_COVER_KEYS = {"frontCover", "backCover", "cover"}


class ChunkResult(BaseModel):
    success: bool
    document_url: Optional[str] = None
    error: Optional[str] = None


class _DocState(BaseModel):
    pages: int = 0
    version: int = 0
    gs_uri: Optional[str] = None
    url: Optional[str] = None


class DocumentAssembler:
    """
    Builds the output PDFs one page per call.

    State per (job, kind) lives next to the working PDF: how many pages it
    holds and which upload version is current. A repeated position returns
    the current document unchanged; a position past the end is rejected.
    """

    def __init__(self, root: Optional[str] = None):
        self.root = root

    def _paths(self, job_id: str, kind: str):
        d = scratch_dir(job_id, "documents", root=self.root)
        return (
            os.path.join(d, f"{kind}.pdf"),
            os.path.join(d, f"{kind}.json"),
            os.path.join(d, f"{kind}.lock"),
            os.path.join(d, "_asset_cache"),
        )

    @staticmethod
    def _load_state(path: str) -> _DocState:
        if not os.path.exists(path):
            return _DocState()
        with open(path, "r") as f:
            return _DocState.model_validate(json.load(f))

    @staticmethod
    def _save_state(path: str, state: _DocState) -> None:
        tmp = f"{path}.part"
        with open(tmp, "w") as f:
            json.dump(state.model_dump(), f)
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp, path)

    def _publish(self, local_path: str, object_name: str) -> dict:
        info = upload_to_gcs(local_path, object_name=object_name, content_type="application/pdf", make_signed_url=False)
        try:
            info["signed_url"] = sign_object(object_name, content_type="application/pdf")
        except StorageError as e:
            log.warning(f"signed url unavailable for {object_name}, returning gs:// uri: {e}")
        return info

    def append_page(
        self,
        job_id: str,
        *,
        kind: str,
        key: str,
        position: int,
        asset_path: str,
        metadata: Optional[dict] = None,
    ) -> ChunkResult:
        pdf_path, state_path, lock_path, cache = self._paths(job_id, kind)
        with FileLock(lock_path):
            state = self._load_state(state_path)
            if position < state.pages:
                log.info(f"[{job_id}] {kind} page {position} ({key}) already appended")
                return ChunkResult(success=True, document_url=state.url or state.gs_uri)
            if position > state.pages:
                return ChunkResult(
                    success=False,
                    error=f"out of order: expected position {state.pages}, got {position}",
                )

            try:
                image = resolve_asset_to_path(asset_path, cache)
                size = COVER_SIZE if key in _COVER_KEYS else STORY_PAGE_SIZE
                work = f"{pdf_path}.work"
                if os.path.exists(pdf_path):
                    shutil.copyfile(pdf_path, work)
                elif os.path.exists(work):
                    os.remove(work)
                append_image_page(work, image, size_px=size)

                version = state.version + 1
                info = self._publish(work, f"jobs/{job_id}/documents/{kind}__v{version}.pdf")
            except (OSError, ValueError, StorageError, gexc.GoogleAPICallError) as e:
                log.warning(f"[{job_id}] {kind} append of {key} failed: {e}")
                return ChunkResult(success=False, error=str(e))

            os.replace(work, pdf_path)
            state = _DocState(pages=state.pages + 1, version=version,
                              gs_uri=info["gs_uri"], url=info.get("signed_url") or info["gs_uri"])
            self._save_state(state_path, state)
            log.info(f"[{job_id}] {kind} page {position} ({key}) appended; v{version}")
            return ChunkResult(success=True, document_url=state.url)

    def build_cover_document(
        self,
        job_id: str,
        *,
        front_asset_path: str,
        back_asset_path: str,
        metadata: Optional[dict] = None,
    ) -> ChunkResult:
        pdf_path, _, lock_path, cache = self._paths(job_id, "cover")
        with FileLock(lock_path):
            try:
                front = resolve_asset_to_path(front_asset_path, cache)
                back = resolve_asset_to_path(back_asset_path, cache)
                make_cover_spread(front, back, pdf_path)
                info = self._publish(pdf_path, f"jobs/{job_id}/documents/cover.pdf")
            except (OSError, ValueError, StorageError, gexc.GoogleAPICallError) as e:
                log.warning(f"[{job_id}] cover document failed: {e}")
                return ChunkResult(success=False, error=str(e))
        return ChunkResult(success=True, document_url=info.get("signed_url") or info["gs_uri"])
