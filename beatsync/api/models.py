"""Pydantic schemas for API request/response models."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from beatsync.render.effects import EffectParams


class RenderStatus(str, Enum):
    queued = "queued"
    running = "running"
    done = "done"
    failed = "failed"


# ── Render config ─────────────────────────────────────────────────────────────

class RenderConfig(BaseModel):
    """What a caller submits with a render.

    Geometry and the overlap cap are optional; the worker fills in the
    configured defaults. ``cutTimes`` is raw and cleaned by the scheduler.
    """
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    cut_times: list[Any] = Field(default_factory=list, alias="cutTimes")
    audio_duration: float = Field(alias="audioDuration", gt=0, allow_inf_nan=False)
    width: int | None = Field(default=None, gt=0, le=7680)
    height: int | None = Field(default=None, gt=0, le=4320)
    fps: float | None = Field(default=None, gt=0, le=240, allow_inf_nan=False)
    transition: Any = "fade"
    transition_max_duration: float | None = Field(
        default=None, alias="transitionMaxDuration", gt=0, allow_inf_nan=False,
    )
    effects: EffectParams = Field(default_factory=EffectParams)


# ── Requests ──────────────────────────────────────────────────────────────────

class CreateProjectRequest(BaseModel):
    title: str = "Untitled"


class CreateRenderRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    project_id: str | None = Field(default=None, alias="projectId")
    config: dict[str, Any] = Field(default_factory=dict)


class CutTimesRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    beats: list[Any] = Field(default_factory=list)
    duration: float = Field(gt=0, allow_inf_nan=False)
    beats_per_image: int = Field(default=4, alias="beatsPerImage", ge=1)
    fallback_segments: int = Field(default=30, alias="fallbackSegments", ge=1, le=300)
    target_segments: int | None = Field(default=None, alias="targetSegments", ge=1, le=300)


# ── Responses ─────────────────────────────────────────────────────────────────

class FileInfo(BaseModel):
    id: str
    path: str
    original_name: str = Field(default="", serialization_alias="originalName")
    mime: str = ""
    size: int = 0


class ProjectResponse(BaseModel):
    id: str
    title: str
    audio: FileInfo | None = None
    images: list[FileInfo] = Field(default_factory=list)
    created_at: str = Field(serialization_alias="createdAt")
    updated_at: str = Field(serialization_alias="updatedAt")


class RenderResponse(BaseModel):
    id: str
    project_id: str = Field(serialization_alias="projectId")
    status: RenderStatus
    progress: int = 0
    output_path: str | None = Field(default=None, serialization_alias="outputPath")
    error: str | None = None
    config: dict[str, Any] = Field(default_factory=dict)
    created_at: str = Field(serialization_alias="createdAt")
    updated_at: str = Field(serialization_alias="updatedAt")


class CutTimesResponse(BaseModel):
    cut_times: list[float] = Field(serialization_alias="cutTimes")
    normalized: list[float]
    segments: int


class HealthResponse(BaseModel):
    status: str = "ok"
    version: str
    ffmpeg: bool
    queue: dict[str, Any] = Field(default_factory=dict)
