"""Transition planning: one xfade name and one overlap duration per cut.

The transition spec a caller sends is lenient by policy: a list of names is
cycled, ``random`` / ``random_fancy`` draw from the transition table with a
generator seeded by the job id (so a retry of the same job reproduces the
same plan), a single known name is repeated, and anything unrecognized falls
back to plain ``fade``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any

MIN_OVERLAP = 0.05      # seconds
RANDOM = "random"
RANDOM_FANCY = "random_fancy"

_U32 = 0xFFFFFFFF
FNV_OFFSET = 2166136261
FNV_PRIME = 16777619


class Transition(str, Enum):
    """ffmpeg xfade transitions this service emits."""
    fade = "fade"
    wipeleft = "wipeleft"
    wiperight = "wiperight"
    wipeup = "wipeup"
    wipedown = "wipedown"
    slideleft = "slideleft"
    slideright = "slideright"
    slideup = "slideup"
    slidedown = "slidedown"
    circlecrop = "circlecrop"
    rectcrop = "rectcrop"
    distance = "distance"
    fadeblack = "fadeblack"
    fadewhite = "fadewhite"
    radial = "radial"
    smoothleft = "smoothleft"
    smoothright = "smoothright"
    smoothup = "smoothup"
    smoothdown = "smoothdown"
    circleopen = "circleopen"
    circleclose = "circleclose"
    vertopen = "vertopen"
    vertclose = "vertclose"
    horzopen = "horzopen"
    horzclose = "horzclose"
    dissolve = "dissolve"
    pixelize = "pixelize"
    diagtl = "diagtl"
    diagtr = "diagtr"
    diagbl = "diagbl"
    diagbr = "diagbr"
    hlslice = "hlslice"
    hrslice = "hrslice"
    vuslice = "vuslice"
    vdslice = "vdslice"
    hblur = "hblur"
    fadegrays = "fadegrays"
    wipetl = "wipetl"
    wipetr = "wipetr"
    wipebl = "wipebl"
    wipebr = "wipebr"
    squeezeh = "squeezeh"
    squeezev = "squeezev"
    zoomin = "zoomin"
    fadefast = "fadefast"
    fadeslow = "fadeslow"
    hlwind = "hlwind"
    hrwind = "hrwind"
    vuwind = "vuwind"
    vdwind = "vdwind"
    coverleft = "coverleft"
    coverright = "coverright"
    coverup = "coverup"
    coverdown = "coverdown"
    revealleft = "revealleft"
    revealright = "revealright"
    revealup = "revealup"
    revealdown = "revealdown"

    @property
    def fragment(self) -> str:
        """xfade argument selecting this transition."""
        return f"transition={self.value}"


XFADE_TRANSITIONS: tuple[Transition, ...] = tuple(Transition)
FANCY_TRANSITIONS: tuple[Transition, ...] = tuple(t for t in Transition if t is not Transition.fade)


def parse_transition(name: Any) -> Transition | None:
    if not isinstance(name, str):
        return None
    try:
        return Transition(name.strip())
    except ValueError:
        return None


# ── Deterministic seeding ─────────────────────────────────────────────────────

def fnv1a_32(text: Any) -> int:
    """32-bit FNV-1a over the UTF-16 code units of ``text``."""
    raw = str(text if text is not None else "").encode("utf-16-le")
    h = FNV_OFFSET
    for i in range(0, len(raw), 2):
        h ^= raw[i] | (raw[i + 1] << 8)
        h = (h * FNV_PRIME) & _U32
    return h


class Lcg:
    """Numerical Recipes LCG; ``random()`` yields floats in [0, 1)."""

    def __init__(self, seed: int):
        self.state = seed & _U32

    def random(self) -> float:
        self.state = (self.state * 1664525 + 1013904223) & _U32
        return self.state / 4294967296


# ── Planning ──────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TransitionStep:
    name: Transition
    duration: float

    def to_dict(self) -> dict:
        return {"name": self.name.value, "duration": round(self.duration, 3)}


def transition_sequence(spec: Any, count: int, seed: Any = "") -> list[Transition]:
    """Resolve a transition spec into exactly ``count`` transition names."""
    if not isinstance(count, int) or count <= 0:
        return []

    if isinstance(spec, (list, tuple)):
        cleaned = [t for t in (parse_transition(str(s)) for s in spec) if t is not None]
        if cleaned:
            return [cleaned[i % len(cleaned)] for i in range(count)]
        return [Transition.fade] * count

    name = spec.strip() if isinstance(spec, str) else ""
    if name in (RANDOM, RANDOM_FANCY):
        pool = FANCY_TRANSITIONS if name == RANDOM_FANCY else XFADE_TRANSITIONS
        rng = Lcg(fnv1a_32(seed))
        out = []
        for _ in range(count):
            idx = int(rng.random() * len(pool))
            out.append(pool[max(0, min(len(pool) - 1, idx))])
        return out

    return [parse_transition(name) or Transition.fade] * count


def transition_durations(display_durations: list[float], max_duration: float) -> list[float]:
    """Overlap per boundary, never more than half of either neighbouring segment.

    ``max_duration`` is floored at MIN_OVERLAP; the half-segment bounds are hard.
    """
    cap = max(float(max_duration), MIN_OVERLAP)
    out = []
    for i in range(len(display_durations) - 1):
        d0 = display_durations[i]
        d1 = display_durations[i + 1]
        out.append(min(cap, d0 * 0.5, d1 * 0.5))
    return out


def plan_transitions(
    spec: Any,
    display_durations: list[float],
    max_duration: float,
    seed: Any = "",
) -> list[TransitionStep]:
    names = transition_sequence(spec, len(display_durations) - 1, seed)
    durations = transition_durations(display_durations, max_duration)
    return [TransitionStep(n, d) for n, d in zip(names, durations)]
