"""FastAPI API routes for projects, uploads and renders."""

from __future__ import annotations

from dataclasses import asdict
from pathlib import Path

from fastapi import APIRouter, File, HTTPException, Request, UploadFile
from fastapi.responses import FileResponse
from pydantic import ValidationError

from beatsync.api import storage
from beatsync.api.models import (
    CreateProjectRequest,
    CreateRenderRequest,
    CutTimesRequest,
    CutTimesResponse,
    HealthResponse,
    ProjectResponse,
    RenderConfig,
    RenderResponse,
)
from beatsync.db import store
from beatsync.render.cuts import MAX_SEGMENTS, build_cut_times, normalize_cut_times
from beatsync.render.effects import EFFECT_PRESETS, CurvePreset
from beatsync.render.errors import RenderError, RenderNotFound, RenderNotReady
from beatsync.render.transitions import RANDOM, RANDOM_FANCY, XFADE_TRANSITIONS
from beatsync.utils.config import get_config
from beatsync.utils.logging import info

VERSION = "1.0.0"

router = APIRouter(prefix="/api", tags=["api"])


def _project_or_404(project_id: str) -> store.ProjectRecord:
    project = store.get_project(project_id)
    if not project:
        raise HTTPException(404, "Project not found")
    return project


def _project_response(project: store.ProjectRecord) -> ProjectResponse:
    return ProjectResponse(**asdict(project))


async def _save_upload(upload: UploadFile, project_id: str, kind: str) -> dict:
    dest = storage.stored_path(get_config().storage, project_id, kind, upload.content_type, upload.filename)
    content = await upload.read()
    with open(dest, "wb") as f:
        f.write(content)
    return {
        "path": str(dest),
        "original_name": upload.filename or "",
        "mime": upload.content_type or "",
        "size": len(content),
    }


# ── Health / catalogues ───────────────────────────────────────────────────────

@router.get("/health", response_model=HealthResponse)
async def health():
    from beatsync.utils.deps_check import check_ffmpeg
    from beatsync.utils.media_executor import get_media_queue_status
    ff = check_ffmpeg(get_config().encoder.ffmpeg_path)
    return HealthResponse(status="ok", version=VERSION, ffmpeg=ff.available, queue=get_media_queue_status())


@router.get("/transitions")
async def list_transitions():
    return {
        "transitions": [t.value for t in XFADE_TRANSITIONS],
        "special": [RANDOM, RANDOM_FANCY],
        "default": "fade",
    }


@router.get("/effect-presets")
async def list_effect_presets():
    return {"presets": EFFECT_PRESETS, "curves": [c.value for c in CurvePreset]}


@router.post("/cut-times", response_model=CutTimesResponse)
async def cut_times(req: CutTimesRequest):
    raw = build_cut_times(
        req.beats, req.duration, req.beats_per_image, req.fallback_segments, req.target_segments,
    )
    try:
        normalized = normalize_cut_times(raw, req.duration)
    except RenderError as e:
        raise HTTPException(400, e.describe())
    return CutTimesResponse(cut_times=raw, normalized=normalized, segments=len(normalized) - 1)


# ── Projects ──────────────────────────────────────────────────────────────────

@router.post("/projects", response_model=ProjectResponse)
async def create_project(req: CreateProjectRequest | None = None):
    title = req.title if req and req.title else "Untitled"
    project = store.create_project(title)
    storage.init_project_dirs(get_config().storage, project.id)
    return _project_response(project)


@router.get("/projects/{project_id}", response_model=ProjectResponse)
async def get_project(project_id: str):
    return _project_response(_project_or_404(project_id))


@router.post("/projects/{project_id}/audio", response_model=ProjectResponse)
async def upload_audio(project_id: str, audio: UploadFile | None = File(None)):
    _project_or_404(project_id)
    if audio is None:
        raise HTTPException(400, "No audio file uploaded")
    saved = await _save_upload(audio, project_id, "audio")
    store.set_project_audio(project_id, **saved)
    info(f"Project {project_id}: audio uploaded ({saved['original_name']})")
    return _project_response(_project_or_404(project_id))


@router.post("/projects/{project_id}/images", response_model=ProjectResponse)
async def upload_images(project_id: str, images: list[UploadFile] | None = File(None)):
    _project_or_404(project_id)
    files = images or []
    if not files:
        raise HTTPException(400, "No images uploaded")
    if len(files) > MAX_SEGMENTS:
        raise HTTPException(400, f"At most {MAX_SEGMENTS} images per upload")
    saved = [await _save_upload(f, project_id, "images") for f in files]
    store.add_project_images(project_id, saved)
    info(f"Project {project_id}: {len(saved)} image(s) uploaded")
    return _project_response(_project_or_404(project_id))


# ── Renders ───────────────────────────────────────────────────────────────────

@router.post("/renders", response_model=RenderResponse)
async def create_render(req: CreateRenderRequest, request: Request):
    if not req.project_id:
        raise HTTPException(400, "projectId is required")
    _project_or_404(req.project_id)
    try:
        config = RenderConfig.model_validate(req.config)
    except ValidationError as e:
        raise HTTPException(422, e.errors(include_url=False, include_context=False))

    stored = config.model_dump(mode="json", by_alias=True, exclude_none=True)
    job = request.app.state.queue.enqueue(req.project_id, stored)
    return RenderResponse(**asdict(job))


@router.get("/renders/{render_id}", response_model=RenderResponse)
async def get_render(render_id: str):
    job = store.get_render(render_id)
    if not job:
        raise RenderNotFound(render_id)
    return RenderResponse(**asdict(job))


@router.get("/renders/{render_id}/download")
async def download_render(render_id: str):
    job = store.get_render(render_id)
    if not job:
        raise RenderNotFound(render_id)
    if job.status != "done" or not job.output_path:
        raise RenderNotReady(render_id, job.status)
    path = Path(job.output_path)
    if not path.is_file():
        raise HTTPException(404, "Output file missing")
    return FileResponse(path, filename=f"{render_id}.mp4", media_type="video/mp4")
