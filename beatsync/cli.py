"""Main CLI application with typer subcommands."""

from __future__ import annotations

import json
import re
import shlex
from enum import Enum
from pathlib import Path
from typing import Annotated, Any, Optional

import typer
from dotenv import load_dotenv
from rich.prompt import Confirm
from rich.table import Table

from beatsync.utils.logging import setup_logging, Verbosity, console, info, success, error
from beatsync.utils.config import AppConfig, DEFAULT_CONFIG_YAML, load_config, merge_cli_overrides, set_config
from beatsync.utils.deps_check import check_all, print_dep_status

load_dotenv()

app = typer.Typer(
    name="beatsync",
    help="Beat-synced slideshow renderer.",
    rich_markup_mode="rich",
    no_args_is_help=True,
)


class EffectsPreset(str, Enum):
    none = "none"
    cinematic = "cinematic"
    vintage = "vintage"
    bw = "bw"
    punchy = "punchy"
    dreamy = "dreamy"


# ── Helper functions ──────────────────────────────────────────────────────────

def _verbosity(silent: bool, verbose: bool) -> Verbosity:
    if silent:
        return Verbosity.SILENT
    return Verbosity.VERBOSE if verbose else Verbosity.NORMAL


def _load(config: Path | None, overrides: dict[str, Any] | None = None) -> AppConfig:
    cfg = load_config(config)
    if overrides:
        cfg = merge_cli_overrides(cfg, overrides)
    set_config(cfg)
    return cfg


def read_times(path: Path) -> list[float]:
    """Timestamps from a JSON array, a {"beats": [...]} object, or whitespace/comma separated text."""
    text = path.read_text(encoding="utf-8").strip()
    if not text:
        return []
    if text[0] in "[{":
        data = json.loads(text)
        if isinstance(data, dict):
            data = data.get("beats") or data.get("cutTimes") or []
        return [float(v) for v in data]
    return [float(tok) for tok in re.split(r"[\s,;]+", text) if tok]


def _schedule_table(result) -> Table:
    table = Table(title=f"{result.segments} segment(s)", show_lines=False)
    table.add_column("#", justify="right", style="dim")
    table.add_column("start", justify="right")
    table.add_column("end", justify="right")
    table.add_column("length", justify="right")
    table.add_column("transition out")
    table.add_column("overlap", justify="right")
    for i in range(result.segments):
        start, end = result.cut_times[i], result.cut_times[i + 1]
        step = result.transitions[i] if i < len(result.transitions) else None
        table.add_row(
            str(i + 1), f"{start:.3f}", f"{end:.3f}", f"{end - start:.3f}",
            step.name.value if step else "", f"{step.duration:.3f}" if step else "",
        )
    return table


def _raw_cut_times(duration: float, cuts: Path | None, beats: Path | None,
                   beats_per_image: int, segments: Optional[int]) -> list[float]:
    from beatsync.render.cuts import build_cut_times
    if cuts is not None:
        return read_times(cuts)
    detected = read_times(beats) if beats is not None else []
    return build_cut_times(
        detected, duration, beats_per_image,
        fallback_segments=segments or 30, target_segments=segments,
    )


# ── SERVE ─────────────────────────────────────────────────────────────────────

@app.command()
def serve(
    host: Annotated[str, typer.Option(help="Bind host")] = "127.0.0.1",
    port: Annotated[int, typer.Option(help="Port")] = 8000,
    reload: Annotated[bool, typer.Option("--reload", help="Auto-reload on code changes")] = False,
):
    """Run the HTTP API and render worker."""
    import uvicorn
    uvicorn.run("main:app", host=host, port=port, reload=reload, workers=1, log_level="info")


# ── PLAN ──────────────────────────────────────────────────────────────────────

@app.command()
def plan(
    audio_duration: Annotated[float, typer.Argument(help="Track length in seconds")],
    beats: Annotated[Optional[Path], typer.Option("--beats", help="Beat timestamps file")] = None,
    cuts: Annotated[Optional[Path], typer.Option("--cuts", help="Raw cut times file (skips beat picking)")] = None,
    beats_per_image: Annotated[int, typer.Option(min=1)] = 4,
    segments: Annotated[Optional[int], typer.Option(min=1, max=300, help="Target segment count")] = None,
    transition: Annotated[str, typer.Option(help="xfade name, comma list, random or random_fancy")] = "fade",
    max_overlap: Annotated[Optional[float], typer.Option(help="Transition max duration (s)")] = None,
    seed: Annotated[str, typer.Option(help="Seed for random transitions")] = "",
    as_json: Annotated[bool, typer.Option("--json", help="Print JSON instead of a table")] = False,
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
):
    """Show the normalized cut schedule and transition plan."""
    from beatsync.render.errors import RenderError
    from beatsync.render.pipeline import parse_render_config, plan_render

    setup_logging(Verbosity.SILENT if as_json else Verbosity.NORMAL)
    cfg = _load(config)
    raw = _raw_cut_times(audio_duration, cuts, beats, beats_per_image, segments)
    spec: Any = [t.strip() for t in transition.split(",")] if "," in transition else transition

    try:
        rc = parse_render_config({
            "cutTimes": raw, "audioDuration": audio_duration,
            "transition": spec, "transitionMaxDuration": max_overlap,
        })
        result = plan_render(rc, seed, cfg)
    except RenderError as e:
        error(e.describe())
        raise typer.Exit(1)

    if as_json:
        console.print_json(json.dumps({
            "cutTimes": result.cut_times,
            "transitions": [t.to_dict() for t in result.transitions],
        }))
        return
    console.print(_schedule_table(result))


# ── RENDER ────────────────────────────────────────────────────────────────────

@app.command()
def render(
    audio: Annotated[Path, typer.Argument(help="Audio track")],
    images: Annotated[list[Path], typer.Argument(help="Images in display order")],
    duration: Annotated[float, typer.Option("--duration", "-d", help="Audio duration in seconds")],
    cuts: Annotated[Optional[Path], typer.Option("--cuts", help="Raw cut times file")] = None,
    beats: Annotated[Optional[Path], typer.Option("--beats", help="Beat timestamps file")] = None,
    beats_per_image: Annotated[int, typer.Option(min=1)] = 4,
    segments: Annotated[Optional[int], typer.Option(min=1, max=300)] = None,
    transition: Annotated[str, typer.Option(help="xfade name, comma list, random or random_fancy")] = "fade",
    effects_preset: Annotated[EffectsPreset, typer.Option(help="Colour treatment")] = EffectsPreset.none,
    width: Annotated[Optional[int], typer.Option(min=1)] = None,
    height: Annotated[Optional[int], typer.Option(min=1)] = None,
    fps: Annotated[Optional[float], typer.Option(min=1)] = None,
    low_mem: Annotated[bool, typer.Option("--low-mem", help="Force the concat strategy")] = False,
    dry_run: Annotated[bool, typer.Option("--dry-run", help="Print the ffmpeg command only")] = False,
    output: Annotated[Path, typer.Option("--output", "-o")] = Path("render.mp4"),
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
    silent: Annotated[bool, typer.Option("--silent")] = False,
    verbose: Annotated[bool, typer.Option("--verbose", "-v")] = False,
):
    """Render a slideshow locally, without the queue."""
    from beatsync.render.errors import RenderError
    from beatsync.render.pipeline import build_invocation, execute, parse_render_config, plan_render

    setup_logging(_verbosity(silent, verbose))
    cfg = _load(config, {"low_mem.force": True} if low_mem else None)

    raw = _raw_cut_times(duration, cuts, beats, beats_per_image, segments)
    spec: Any = [t.strip() for t in transition.split(",")] if "," in transition else transition

    try:
        rc = parse_render_config({
            "cutTimes": raw, "audioDuration": duration, "transition": spec,
            "width": width, "height": height, "fps": fps,
            "effects": {"preset": effects_preset.value},
        })
        result = plan_render(rc, output.stem, cfg)
        invocation = build_invocation(result, audio, list(images), output, cfg)
    except RenderError as e:
        error(e.describe())
        raise typer.Exit(1)

    info(f"{invocation.segments} segment(s), strategy: {invocation.strategy.value}")
    if dry_run:
        console.print(shlex.join([cfg.encoder.ffmpeg_path, *invocation.args]), markup=False, soft_wrap=True)
        if invocation.concat_list:
            console.print(invocation.concat_list, markup=False)
        return

    try:
        out = execute(invocation, cfg, description=f"render {output.name}")
    except RenderError as e:
        error(e.describe())
        raise typer.Exit(1)
    success(f"Rendered {out}")


# ── CHECK ─────────────────────────────────────────────────────────────────────

@app.command()
def check(
    config: Annotated[Optional[Path], typer.Option("--config")] = None,
    strict: Annotated[bool, typer.Option("--strict", help="Exit 1 when something is missing")] = False,
):
    """Report ffmpeg availability, memory and storage."""
    setup_logging(Verbosity.NORMAL)
    cfg = _load(config)
    if not print_dep_status(check_all(cfg), strict=strict):
        raise typer.Exit(1)


# ── INIT CONFIG ───────────────────────────────────────────────────────────────

@app.command(name="init-config")
def init_config(
    force: Annotated[bool, typer.Option("--force", help="Overwrite without asking")] = False,
):
    """Generate a default config.yaml in the current directory."""
    setup_logging(Verbosity.NORMAL)
    p = Path("config.yaml")
    if p.exists() and not force:
        if not Confirm.ask("config.yaml exists. Overwrite?", default=False):
            raise typer.Exit(0)
    p.write_text(DEFAULT_CONFIG_YAML)
    success(f"Created {p}")


# ── ENTRY POINT ───────────────────────────────────────────────────────────────

def app_entry():
    app()


if __name__ == "__main__":
    app_entry()
