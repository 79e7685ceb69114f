"""Global colour / effects treatment → a minimal ffmpeg filter chain.

Order is fixed: eq → hue → curves → vignette → noise → unsharp. Every
operation is left out when its parameters are at their identity value, so an
untouched look costs nothing in the filter graph.

Input is lenient: numbers clamp into range, non-numeric values take the
default, unknown curve presets become ``none``.
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Mapping

from pydantic import BaseModel, model_validator

from beatsync.utils.config import parse_bool


class CurvePreset(str, Enum):
    none = "none"
    color_negative = "color_negative"
    cross_process = "cross_process"
    darker = "darker"
    increase_contrast = "increase_contrast"
    lighter = "lighter"
    linear_contrast = "linear_contrast"
    medium_contrast = "medium_contrast"
    negative = "negative"
    strong_contrast = "strong_contrast"
    vintage = "vintage"


# (min, max, identity)
RANGES: dict[str, tuple[float, float, float]] = {
    "brightness": (-1.0, 1.0, 0.0),
    "contrast": (0.0, 4.0, 1.0),
    "saturation": (0.0, 4.0, 1.0),
    "hue": (-180.0, 180.0, 0.0),
    "noise": (0.0, 100.0, 0.0),
    "sharpen": (0.0, 5.0, 0.0),
}

EFFECT_PRESETS: dict[str, dict[str, Any]] = {
    "none": {
        "brightness": 0, "contrast": 1, "saturation": 1, "hue": 0,
        "vignette": False, "noise": 0, "sharpen": 0, "curves": "none",
    },
    "cinematic": {
        "brightness": 0.02, "contrast": 1.15, "saturation": 1.1, "hue": 0,
        "vignette": True, "noise": 0, "sharpen": 0.4, "curves": "medium_contrast",
    },
    "vintage": {
        "brightness": 0.02, "contrast": 1.05, "saturation": 0.95, "hue": 0,
        "vignette": True, "noise": 3, "sharpen": 0.2, "curves": "vintage",
    },
    "bw": {
        "brightness": 0, "contrast": 1.15, "saturation": 0, "hue": 0,
        "vignette": False, "noise": 0, "sharpen": 0, "curves": "none",
    },
    "punchy": {
        "brightness": 0, "contrast": 1.3, "saturation": 1.4, "hue": 0,
        "vignette": False, "noise": 0, "sharpen": 0.6, "curves": "strong_contrast",
    },
    "dreamy": {
        "brightness": 0.04, "contrast": 0.9, "saturation": 1.05, "hue": 0,
        "vignette": False, "noise": 0, "sharpen": 0, "curves": "lighter",
    },
}


def clamp_number(value: Any, lo: float, hi: float, fallback: float) -> float:
    if isinstance(value, bool) or value is None:
        return fallback
    try:
        n = float(value)
    except (TypeError, ValueError):
        return fallback
    if math.isnan(n):
        return fallback
    return max(lo, min(hi, n))


def parse_curve(value: Any) -> CurvePreset:
    if isinstance(value, str):
        try:
            return CurvePreset(value.strip())
        except ValueError:
            pass
    return CurvePreset.none


class EffectParams(BaseModel):
    """Validated effect parameters (a named preset plus explicit overrides)."""
    brightness: float = 0.0
    contrast: float = 1.0
    saturation: float = 1.0
    hue: float = 0.0
    curves: CurvePreset = CurvePreset.none
    vignette: bool = False
    noise: float = 0.0
    sharpen: float = 0.0

    @model_validator(mode="before")
    @classmethod
    def _sanitize(cls, data: Any) -> Any:
        if isinstance(data, EffectParams):
            return data
        raw = data if isinstance(data, Mapping) else {}
        preset = raw.get("preset")
        merged: dict[str, Any] = dict(EFFECT_PRESETS.get(preset.strip(), {})) if isinstance(preset, str) else {}
        merged.update({k: v for k, v in raw.items() if k != "preset" and v is not None})

        clean: dict[str, Any] = {
            name: clamp_number(merged.get(name), lo, hi, identity)
            for name, (lo, hi, identity) in RANGES.items()
        }
        clean["curves"] = parse_curve(merged.get("curves"))
        clean["vignette"] = parse_bool(merged.get("vignette"))
        return clean


@dataclass
class FilterOp:
    """One ffmpeg filter with ordered parameters."""
    name: str
    params: dict[str, str] = field(default_factory=dict)

    def to_filter(self) -> str:
        if not self.params:
            return self.name
        return f"{self.name}=" + ":".join(f"{k}={v}" for k, v in self.params.items())


def _f3(n: float) -> str:
    return f"{n:.3f}"


def compile_effects(effects: EffectParams | Mapping[str, Any] | None) -> list[FilterOp]:
    """Build the ordered, minimal filter chain for an effects parameter set."""
    e = effects if isinstance(effects, EffectParams) else EffectParams.model_validate(effects or {})
    ops: list[FilterOp] = []

    needs_eq = (
        abs(e.brightness) > 1e-4 or abs(e.contrast - 1) > 1e-4 or abs(e.saturation - 1) > 1e-4
    )
    if needs_eq:
        ops.append(FilterOp("eq", {
            "brightness": _f3(e.brightness),
            "contrast": _f3(e.contrast),
            "saturation": _f3(e.saturation),
        }))

    if abs(e.hue) > 1e-4:
        ops.append(FilterOp("hue", {"h": _f3(e.hue)}))

    if e.curves is not CurvePreset.none:
        ops.append(FilterOp("curves", {"preset": e.curves.value}))

    if e.vignette:
        ops.append(FilterOp("vignette"))

    if e.noise >= 1:
        ops.append(FilterOp("noise", {"alls": str(math.floor(e.noise + 0.5)), "allf": "t+u"}))

    if e.sharpen > 1e-3:
        ops.append(FilterOp("unsharp", {"lx": "5", "ly": "5", "la": _f3(e.sharpen)}))

    return ops


def effects_filter(ops: list[FilterOp]) -> str:
    """Comma-joined filter string ('' for an empty chain)."""
    return ",".join(op.to_filter() for op in ops)
