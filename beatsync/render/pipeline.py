"""One render job end to end: stored config + project assets → MP4 on disk.

The queue calls ``render_job`` for each claimed job; the CLI strings
``plan_render`` → ``build_invocation`` → ``execute`` together without a store.
Every failure surfaces as a RenderError subclass.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from beatsync.api.models import RenderConfig
from beatsync.db.store import ProjectRecord, RenderRecord
from beatsync.render.command import (
    EncoderInvocation,
    OutputFormat,
    ResourceHint,
    detect_resource_hint,
    synthesize,
)
from beatsync.render.cuts import check_segment_count, normalize_cut_times, segment_durations
from beatsync.render.effects import FilterOp, compile_effects
from beatsync.render.errors import EncoderFailed, InvalidConfig, MissingAsset
from beatsync.render.transitions import TransitionStep, plan_transitions
from beatsync.utils.config import AppConfig
from beatsync.utils.logging import debug, render_log
from beatsync.utils.media_executor import run_encoder


@dataclass
class RenderPlan:
    cut_times: list[float]
    transitions: list[TransitionStep]
    effects: list[FilterOp]
    fmt: OutputFormat

    @property
    def segments(self) -> int:
        return len(self.cut_times) - 1


def parse_render_config(raw: dict[str, Any] | RenderConfig) -> RenderConfig:
    if isinstance(raw, RenderConfig):
        return raw
    try:
        return RenderConfig.model_validate(raw or {})
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or 'config'}: {err['msg']}" for err in e.errors()
        )
        raise InvalidConfig(problems) from e


def plan_render(config: RenderConfig, seed: str, cfg: AppConfig) -> RenderPlan:
    """Normalize the schedule and derive transitions and effects for it."""
    defaults = cfg.render
    cut_times = normalize_cut_times(config.cut_times, config.audio_duration)
    check_segment_count(len(cut_times) - 1)

    max_overlap = config.transition_max_duration or defaults.transition_max_duration
    transitions = plan_transitions(config.transition, segment_durations(cut_times), max_overlap, seed)
    fmt = OutputFormat(
        width=config.width or defaults.width,
        height=config.height or defaults.height,
        fps=config.fps or defaults.fps,
    )
    return RenderPlan(cut_times, transitions, compile_effects(config.effects), fmt)


def _require_file(path: str | Path | None, what: str) -> Path:
    if not path:
        raise MissingAsset(f"Project has no {what}")
    p = Path(path)
    if not p.is_file():
        raise MissingAsset(f"{what} file is missing on disk: {p}")
    return p


def build_invocation(
    plan: RenderPlan,
    audio: str | Path | None,
    images: list[str | Path],
    output_path: Path,
    cfg: AppConfig,
    hint: ResourceHint | None = None,
) -> EncoderInvocation:
    audio_path = _require_file(audio, "audio")
    if not images:
        raise MissingAsset("Project has no images")
    image_paths = [_require_file(i, "image") for i in images]

    return synthesize(
        plan.cut_times,
        plan.transitions,
        plan.effects,
        image_paths,
        audio_path,
        output_path,
        hint or detect_resource_hint(cfg.low_mem),
        fmt=plan.fmt,
        encoder=cfg.encoder,
    )


def execute(invocation: EncoderInvocation, cfg: AppConfig, description: str = "") -> Path:
    """Write the concat list if needed, clear old output, run the encoder."""
    invocation.prepare()
    t0 = time.monotonic()
    try:
        run_encoder(invocation.args, cfg.encoder, description=description)
    finally:
        if invocation.concat_list_path is not None:
            invocation.concat_list_path.unlink(missing_ok=True)
    out = invocation.output_path
    if not out.is_file():
        raise EncoderFailed(0, reason=f"ffmpeg exited cleanly but wrote no output at {out}")
    debug(f"Encoded {out} in {time.monotonic() - t0:.1f}s")
    return out


def render_job(job: RenderRecord, project: ProjectRecord, cfg: AppConfig) -> Path:
    """Render a claimed job to ``<renders_dir>/<job id>.mp4``."""
    config = parse_render_config(job.config)

    if project.audio is None:
        raise MissingAsset("Project has no audio")
    if not project.images:
        raise MissingAsset("Project has no images")

    plan = plan_render(config, job.id, cfg)
    output_path = cfg.storage.renders_dir / f"{job.id}.mp4"
    invocation = build_invocation(
        plan, project.audio.path, [i.path for i in project.images], output_path, cfg,
    )
    render_log(
        f"Render {job.id}: {invocation.segments} segment(s), strategy={invocation.strategy.value}, "
        f"images={len(project.images)}, output={output_path}"
    )
    return execute(invocation, cfg, description=f"render {job.id}")
