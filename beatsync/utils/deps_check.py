"""Dependency self-check with helpful installation hints."""

from __future__ import annotations

import shutil
import subprocess
from dataclasses import dataclass

import psutil

from beatsync.utils.config import AppConfig
from beatsync.utils.logging import info, warn, error


@dataclass
class DepStatus:
    name: str
    available: bool
    version: str = ""
    hint: str = ""


def check_ffmpeg(ffmpeg_path: str = "ffmpeg") -> DepStatus:
    path = shutil.which(ffmpeg_path)
    if not path:
        return DepStatus(
            "ffmpeg", False,
            hint="Install: sudo apt-get install ffmpeg  (or set FFMPEG_PATH to the binary)"
        )
    try:
        r = subprocess.run([path, "-version"], capture_output=True, text=True, timeout=5)
    except (OSError, subprocess.SubprocessError):
        return DepStatus("ffmpeg", False, hint=f"{path} found but failed to run")
    ver = r.stdout.split("\n")[0] if r.stdout else "unknown"
    return DepStatus("ffmpeg", True, version=ver)


def check_memory(cfg: AppConfig) -> DepStatus:
    total_mb = psutil.virtual_memory().total // (1024 * 1024)
    low = cfg.low_mem.force or total_mb < cfg.low_mem.memory_threshold_mb
    mode = "concat (low-memory)" if low else f"direct up to {cfg.low_mem.segment_threshold} segments"
    return DepStatus("memory", True, version=f"{total_mb} MB, strategy: {mode}")


def check_storage(cfg: AppConfig) -> DepStatus:
    root = cfg.storage.root
    try:
        root.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        return DepStatus("storage", False, hint=f"Cannot create {root}: {e}")
    return DepStatus("storage", True, version=str(root.resolve()))


def check_all(cfg: AppConfig) -> list[DepStatus]:
    return [check_ffmpeg(cfg.encoder.ffmpeg_path), check_memory(cfg), check_storage(cfg)]


def print_dep_status(deps: list[DepStatus], strict: bool = False) -> bool:
    all_ok = True
    for d in deps:
        if d.available:
            info(f"{d.name}: {d.version or 'OK'}")
        elif strict:
            error(f"{d.name}: NOT FOUND, {d.hint}")
            all_ok = False
        else:
            warn(f"{d.name}: not found, {d.hint}")
    return all_ok
