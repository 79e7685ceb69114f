"""ffmpeg command synthesis for beat-cut slideshows.

Two mutually exclusive invocation shapes:

  direct:  one looped input per segment, each trimmed to its display time plus
            the overlap of the transition that follows it, chained by pairwise
            xfade filters. Offsets are absolute cut times, so every transition
            starts exactly on its beat.

              [0:v] → scale/pad/fps → [v0] ┐
              [1:v] → scale/pad/fps → [v1] ┴ xfade@t1 → [x1] ┐
              [2:v] → scale/pad/fps → [v2] ────────────────── ┴ xfade@t2 → [x2] … → effects → [vout]

  concat:  one concat-demuxer input listing (image, duration) pairs; no
            blending, bounded memory and file handles. Scale/pad/fps and the
            effects chain run once on the concatenated stream.

Both map exactly one video and one audio stream and stop at the shorter one.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path

import psutil

from beatsync.render.cuts import MAX_SEGMENTS, check_segment_count, segment_durations
from beatsync.render.effects import FilterOp, effects_filter
from beatsync.render.errors import InvalidSchedule, MissingAsset
from beatsync.render.transitions import TransitionStep
from beatsync.utils.config import EncoderConfig, LowMemConfig


class Strategy(str, Enum):
    direct = "direct"
    concat = "concat"


@dataclass
class ResourceHint:
    """What the host can afford; decides between the two strategies."""
    total_memory_bytes: int | None = None
    force_low_mem: bool = False
    memory_threshold_bytes: int = 1024 * 1024 * 1024
    segment_threshold: int = 30

    def choose(self, segments: int) -> Strategy:
        small_host = (
            self.total_memory_bytes is not None
            and self.total_memory_bytes < self.memory_threshold_bytes
        )
        if self.force_low_mem or small_host or segments > self.segment_threshold:
            return Strategy.concat
        return Strategy.direct


def detect_resource_hint(cfg: LowMemConfig) -> ResourceHint:
    return ResourceHint(
        total_memory_bytes=psutil.virtual_memory().total,
        force_low_mem=cfg.force,
        memory_threshold_bytes=cfg.memory_threshold_mb * 1024 * 1024,
        segment_threshold=cfg.segment_threshold,
    )


@dataclass(frozen=True)
class OutputFormat:
    width: int = 1920
    height: int = 1080
    fps: float = 30


@dataclass
class EncoderInvocation:
    """A fully materialized encoder call (arguments exclude the executable)."""
    args: list[str]
    strategy: Strategy
    output_path: Path
    segments: int
    filter_graph: str = ""
    concat_list_path: Path | None = None
    concat_list: str | None = None
    inputs: list[tuple[str, float]] = field(default_factory=list)

    def prepare(self) -> None:
        """Clear a previous artifact at the output path and write the concat list, if any."""
        self.output_path.parent.mkdir(parents=True, exist_ok=True)
        if self.output_path.exists():
            self.output_path.unlink()
        if self.concat_list_path is not None and self.concat_list is not None:
            self.concat_list_path.write_text(self.concat_list, encoding="utf-8")


# ── Formatting helpers ────────────────────────────────────────────────────────

def _f3(n: float) -> str:
    return f"{n:.3f}"


def _num(n: float) -> str:
    return f"{n:g}"


def _geometry_filters(fmt: OutputFormat) -> list[str]:
    w, h = fmt.width, fmt.height
    return [
        f"scale={w}:{h}:force_original_aspect_ratio=decrease",
        f"pad={w}:{h}:(ow-iw)/2:(oh-ih)/2",
        f"fps={_num(fmt.fps)}",
    ]


def concat_quoted_path(path: str | Path) -> str:
    s = str(path)
    return "'" + s.replace("'", "\\'") + "'"


def build_concat_list(items: list[tuple[str, float]]) -> str:
    """ffconcat script; the last file is repeated so its duration is honoured."""
    lines = ["ffconcat version 1.0"]
    for p, length in items:
        lines.append(f"file {concat_quoted_path(p)}")
        lines.append(f"duration {_f3(length)}")
    if items:
        lines.append(f"file {concat_quoted_path(items[-1][0])}")
    return "\n".join(lines) + "\n"


def _output_args(enc: EncoderConfig, output_path: Path) -> list[str]:
    return [
        "-c:v", enc.video_codec,
        "-preset", enc.x264_preset,
        "-crf", str(enc.crf),
        "-c:a", enc.audio_codec,
        "-b:a", enc.audio_bitrate,
        "-pix_fmt", "yuv420p",
        "-movflags", "+faststart",
        "-shortest",
        str(output_path),
    ]


# ── Strategies ────────────────────────────────────────────────────────────────

def build_direct_graph(
    cut_times: list[float],
    plan: list[TransitionStep],
    effects: str,
    fmt: OutputFormat,
) -> str:
    segments = len(cut_times) - 1
    prep = ",".join(_geometry_filters(fmt))
    parts = [
        f"[{i}:v]{prep},format=rgba,setsar=1,setpts=PTS-STARTPTS[v{i}]"
        for i in range(segments)
    ]

    tail = f"{effects},format=yuv420p[vout]" if effects else "format=yuv420p[vout]"
    if segments == 1:
        parts.append(f"[v0]{tail}")
        return ";".join(parts)

    prev = "v0"
    for i, step in enumerate(plan):
        label = f"x{i + 1}"
        parts.append(
            f"[{prev}][v{i + 1}]xfade={step.name.fragment}:duration={_f3(step.duration)}"
            f":offset={_f3(cut_times[i + 1])},format=rgba[{label}]"
        )
        prev = label
    parts.append(f"[{prev}]{tail}")
    return ";".join(parts)


def _direct_invocation(cut_times, plan, effects, images, audio, output_path, fmt, enc):
    displays = segment_durations(cut_times)
    segments = len(displays)
    inputs = []
    args = ["-y"]
    for i in range(segments):
        extra = plan[i].duration if i < segments - 1 else 0.0
        img = str(images[i % len(images)])
        inputs.append((img, displays[i] + extra))
        args += ["-loop", "1", "-t", _f3(displays[i] + extra), "-i", img]
    args += ["-i", str(audio)]

    graph = build_direct_graph(cut_times, plan, effects, fmt)
    args += ["-filter_complex", graph, "-map", "[vout]", "-map", f"{segments}:a:0"]
    args += _output_args(enc, output_path)
    return EncoderInvocation(
        args=args, strategy=Strategy.direct, output_path=output_path,
        segments=segments, filter_graph=graph, inputs=inputs,
    )


def _concat_invocation(cut_times, effects, images, audio, output_path, fmt, enc, list_path):
    displays = segment_durations(cut_times)
    items = [(str(images[i % len(images)]), d) for i, d in enumerate(displays)]

    vf = ",".join(p for p in [*_geometry_filters(fmt), effects, "format=yuv420p", "setsar=1"] if p)
    args = [
        "-y",
        "-f", "concat", "-safe", "0", "-i", str(list_path),
        "-i", str(audio),
        "-vf", vf,
        "-map", "0:v:0",
        "-map", "1:a:0",
        *_output_args(enc, output_path),
    ]
    return EncoderInvocation(
        args=args, strategy=Strategy.concat, output_path=output_path,
        segments=len(displays), filter_graph=vf,
        concat_list_path=list_path, concat_list=build_concat_list(items), inputs=items,
    )


def synthesize(
    cut_times: list[float],
    plan: list[TransitionStep],
    filter_chain: list[FilterOp],
    images: list[str | Path],
    audio: str | Path | None,
    output_path: Path,
    hint: ResourceHint,
    fmt: OutputFormat | None = None,
    encoder: EncoderConfig | None = None,
    concat_list_path: Path | None = None,
) -> EncoderInvocation:
    """Turn a normalized schedule, transition plan and effects chain into an encoder call.

    Raises:
        TooManySegments: more than MAX_SEGMENTS segments (checked before anything else)
        InvalidSchedule: fewer than one segment
        MissingAsset: no audio or no images
    """
    segments = len(cut_times) - 1
    check_segment_count(segments)
    if segments < 1:
        raise InvalidSchedule("cut schedule needs at least two points")
    if not images:
        raise MissingAsset("Project has no images")
    if not audio:
        raise MissingAsset("Project has no audio")
    if len(plan) != segments - 1:
        raise ValueError(f"transition plan has {len(plan)} steps for {segments - 1} boundaries")

    fmt = fmt or OutputFormat()
    enc = encoder or EncoderConfig()
    output_path = Path(output_path)
    effects = effects_filter(filter_chain)

    if hint.choose(segments) is Strategy.concat:
        list_path = concat_list_path or output_path.with_suffix(".ffconcat")
        return _concat_invocation(cut_times, effects, images, audio, output_path, fmt, enc, list_path)
    return _direct_invocation(cut_times, plan, effects, images, audio, output_path, fmt, enc)


__all__ = [
    "MAX_SEGMENTS", "Strategy", "ResourceHint", "OutputFormat", "EncoderInvocation",
    "detect_resource_hint", "build_concat_list", "build_direct_graph", "synthesize",
]
