"""Cut schedule handling: beat timestamps → a clean partition of the track.

Beat timestamps arrive from an external detector (or straight from a caller)
and are untrusted: duplicated, unsorted, too dense for fast tempos, or
outside the track. ``normalize_cut_times`` turns them into a schedule every
encoder invocation can work with:

    t0 = 0 < t1 < ... < tn = audio_duration,   t[i+1] - t[i] >= MIN_SEGMENT_GAP

with at most MAX_SEGMENTS segments.
"""

from __future__ import annotations

import math
from typing import Any, Iterable

from beatsync.render.errors import InvalidConfig, InvalidSchedule, TooManySegments

MAX_SEGMENTS = 300
MIN_SEGMENT_GAP = 0.05   # seconds
DEDUPE_EPS = 1e-4
END_EPS = 1e-3


def _to_float(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        f = float(value)
    except (TypeError, ValueError):
        return None
    return f if math.isfinite(f) else None


def require_duration(audio_duration: Any) -> float:
    dur = _to_float(audio_duration)
    if dur is None or dur <= 0:
        raise InvalidConfig("audioDuration is required and must be a finite number > 0")
    return dur


def check_segment_count(segments: int) -> None:
    if segments > MAX_SEGMENTS:
        raise TooManySegments(segments, MAX_SEGMENTS)


def _pulled_end(dur: float) -> float:
    """Latest timestamp that still leaves MIN_SEGMENT_GAP before ``dur`` (in float arithmetic)."""
    p = dur - MIN_SEGMENT_GAP
    while dur - p < MIN_SEGMENT_GAP:
        p = math.nextafter(p, -math.inf)
    return p


def normalize_cut_times(raw_cut_times: Iterable[Any] | None, audio_duration: Any) -> list[float]:
    """Clean raw cut times into a monotonic, minimum-spaced schedule.

    Steps:
      1. keep finite values inside [0, duration], sort
      2. drop values within DEDUPE_EPS of the previous one
      3. anchor the start at 0 and the end at exactly ``duration``
         (a value within END_EPS of the end is the end)
      4. drop any point closer than MIN_SEGMENT_GAP to the previous kept point
      5. a point left too close to the end is pulled back to
         ``duration - MIN_SEGMENT_GAP`` when that keeps its own spacing,
         otherwise dropped

    Raises:
        InvalidConfig: duration missing, non-finite or <= 0
        InvalidSchedule: fewer than two points survive
        TooManySegments: more than MAX_SEGMENTS segments remain
    """
    dur = require_duration(audio_duration)

    times = sorted(
        t for t in (_to_float(v) for v in (raw_cut_times or []))
        if t is not None and 0 <= t <= dur
    )

    deduped: list[float] = []
    for t in times:
        if not deduped or abs(t - deduped[-1]) > DEDUPE_EPS:
            deduped.append(t)

    interior = [t for t in deduped if t > 0 and dur - t > END_EPS]

    cleaned = [0.0]
    for t in interior:
        if t - cleaned[-1] >= MIN_SEGMENT_GAP:
            cleaned.append(t)

    # Fit the final segment; the end itself never moves.
    while len(cleaned) > 1 and dur - cleaned[-1] < MIN_SEGMENT_GAP:
        pulled = _pulled_end(dur)
        if pulled - cleaned[-2] >= MIN_SEGMENT_GAP:
            cleaned[-1] = pulled
            break
        cleaned.pop()

    if dur - cleaned[-1] < MIN_SEGMENT_GAP:
        raise InvalidSchedule(
            f"cutTimes are invalid: audio duration {dur:.3f}s is shorter than one segment "
            f"({MIN_SEGMENT_GAP}s)"
        )
    cleaned.append(dur)

    check_segment_count(len(cleaned) - 1)
    return cleaned


def segment_durations(cut_times: list[float]) -> list[float]:
    return [cut_times[i + 1] - cut_times[i] for i in range(len(cut_times) - 1)]


def build_cut_times(
    beats: Iterable[Any] | None,
    duration: Any,
    beats_per_image: Any = 4,
    fallback_segments: Any = 30,
    target_segments: Any = None,
) -> list[float]:
    """Pick cut points from detected beats.

    - ``target_segments`` > 1: spread that many segments over the beats
      (evenly over the track if there are too few beats)
    - otherwise cut on every ``beats_per_image``-th beat
    - no usable beats: ``fallback_segments`` equal segments

    The result is raw input for ``normalize_cut_times``, not a normalized schedule.
    """
    dur = _to_float(duration)
    if dur is None or dur <= 0:
        return [0.0, 1.0]

    bpi = _to_float(beats_per_image)
    bpi = max(1, math.floor(bpi)) if bpi else 1

    target = _to_float(target_segments)
    target = max(1, min(MAX_SEGMENTS, math.floor(target))) if target is not None else None

    valid = sorted(
        t for t in (_to_float(b) for b in (beats or []))
        if t is not None and 0.01 < t < dur - 0.01
    )

    if valid:
        if target and target > 1:
            out = [0.0]
            if len(valid) >= target - 1:
                for i in range(1, target):
                    idx = (i * len(valid)) // target
                    out.append(valid[max(0, min(len(valid) - 1, idx))])
            else:
                out.extend(i * dur / target for i in range(1, target))
            out.append(dur)
            return sorted({round(t, 4) for t in out})

        if len(valid) > bpi + 2:
            out = [0.0, *valid[bpi::bpi], dur]
            return sorted({round(t, 4) for t in out})

    fb = _to_float(fallback_segments)
    segs = max(1, min(MAX_SEGMENTS, math.floor(fb))) if fb else 30
    return [i * dur / segs for i in range(segs + 1)]
