"""Encoder process runner with a global concurrency limit and CPU priority.

Every ffmpeg invocation goes through ``run_encoder`` so that no more than
MAX_MEDIA_JOBS encodes run on the host at once, regardless of which worker
or CLI command started them.

ENV configuration:
    MAX_MEDIA_JOBS   — max concurrent encodes (default 1)
"""

from __future__ import annotations

import os
import platform
import re
import shutil
import subprocess
import threading
import time
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from beatsync.render.errors import EncoderFailed, EncoderNotFound
from beatsync.utils.config import EncoderConfig
from beatsync.utils.logging import debug, render_log

MAX_MEDIA_JOBS: int = int(os.environ.get("MAX_MEDIA_JOBS", "1"))

IS_LINUX: bool = platform.system() == "Linux"

_semaphore: threading.Semaphore = threading.Semaphore(MAX_MEDIA_JOBS)
_stats_lock = threading.Lock()


# ── Job tracking ──────────────────────────────────────────────────────────────

class MediaJobStatus(str, Enum):
    queued = "queued"
    running = "running"
    done = "done"
    failed = "failed"


@dataclass
class MediaJobInfo:
    id: str
    description: str
    status: MediaJobStatus = MediaJobStatus.queued
    started_at: float = 0.0
    finished_at: float = 0.0
    error: str = ""


_active_jobs: dict[str, MediaJobInfo] = {}
_job_counter: int = 0


def _next_job_id() -> str:
    global _job_counter
    with _stats_lock:
        _job_counter += 1
        return f"encode-{_job_counter}"


def get_media_queue_status() -> dict[str, Any]:
    """Current executor load, for the health endpoint."""
    with _stats_lock:
        jobs = list(_active_jobs.values())
    return {
        "max_concurrent": MAX_MEDIA_JOBS,
        "queued": sum(1 for j in jobs if j.status == MediaJobStatus.queued),
        "running": sum(1 for j in jobs if j.status == MediaJobStatus.running),
    }


def _cleanup_finished_jobs(max_keep: int = 50) -> None:
    with _stats_lock:
        finished = [
            (jid, j) for jid, j in _active_jobs.items()
            if j.status in (MediaJobStatus.done, MediaJobStatus.failed)
        ]
        if len(finished) > max_keep:
            finished.sort(key=lambda x: x[1].finished_at)
            for jid, _ in finished[:-max_keep]:
                del _active_jobs[jid]


# ── Command assembly ──────────────────────────────────────────────────────────

def resolve_encoder(enc: EncoderConfig) -> str:
    """Absolute path of the configured ffmpeg binary.

    Raises:
        EncoderNotFound: the binary is neither an existing file nor on PATH
    """
    configured = enc.ffmpeg_path or "ffmpeg"
    found = shutil.which(configured)
    if found:
        return found
    raise EncoderNotFound(configured)


def _build_nice_prefix(nice: int) -> list[str]:
    """nice prefix on Linux, empty list otherwise."""
    if not IS_LINUX or nice <= 0 or not shutil.which("nice"):
        return []
    return ["nice", "-n", str(nice)]


def build_encoder_cmd(binary: str, args: list[str], enc: EncoderConfig) -> list[str]:
    cmd = [binary]
    if enc.threads > 0 and "-threads" not in args:
        cmd += ["-threads", str(enc.threads)]
    return _build_nice_prefix(enc.nice) + cmd + list(args)


# ── Error extraction ──────────────────────────────────────────────────────────

_ERROR_PATTERNS = [
    r"Error\s+.*",
    r"Invalid\s+.*",
    r"No such file.*",
    r"Could not.*",
    r"Unable to.*",
    r".*failed.*",
    r".*not found.*",
]


def extract_encoder_error(stderr: str) -> str:
    """Most relevant error line from ffmpeg stderr, or its last line."""
    if not stderr:
        return "Unknown error"
    lines = [ln for ln in stderr.strip().split("\n") if ln.strip()]
    for line in reversed(lines):
        for pat in _ERROR_PATTERNS:
            if re.search(pat, line, re.IGNORECASE):
                return line.strip()[:300]
    return lines[-1].strip()[:300] if lines else "Unknown error"


def stderr_tail(stderr: str | None, limit: int) -> str:
    return (stderr or "")[-limit:]


# ── Core runner ───────────────────────────────────────────────────────────────

def run_encoder(
    args: list[str],
    enc: EncoderConfig,
    *,
    description: str = "",
    cwd: str | Path | None = None,
) -> subprocess.CompletedProcess:
    """Run ffmpeg with ``args`` under the global semaphore.

    Returns the completed process on exit code 0.

    Raises:
        EncoderNotFound: binary missing (before or at spawn)
        EncoderFailed: nonzero exit or timeout; carries the stderr tail
    """
    binary = resolve_encoder(enc)
    cmd = build_encoder_cmd(binary, args, enc)
    desc = description or "ffmpeg encode"
    timeout = enc.timeout if enc.timeout > 0 else None

    job = MediaJobInfo(id=_next_job_id(), description=desc)
    with _stats_lock:
        _active_jobs[job.id] = job

    debug(f"[media-exec] {desc} waiting for semaphore (max {MAX_MEDIA_JOBS})")
    render_log(f"Queued: {desc}")

    _semaphore.acquire()
    try:
        job.status = MediaJobStatus.running
        job.started_at = time.monotonic()
        render_log(f"Running: {desc}: {' '.join(cmd)}")

        try:
            result = subprocess.run(
                cmd, capture_output=True, text=True, errors="replace",
                timeout=timeout, cwd=cwd,
            )
        except FileNotFoundError as e:
            job.status = MediaJobStatus.failed
            job.error = str(e)
            render_log(f"Error: {desc}: {e}", level="error")
            raise EncoderNotFound(enc.ffmpeg_path) from e
        except subprocess.TimeoutExpired as e:
            job.status = MediaJobStatus.failed
            job.error = f"Timeout after {timeout}s"
            render_log(f"Timeout: {desc} ({timeout}s)", level="error")
            stderr = e.stderr.decode("utf-8", "replace") if isinstance(e.stderr, bytes) else (e.stderr or "")
            raise EncoderFailed(
                None, stderr_tail(stderr, enc.stderr_tail_chars),
                reason=f"ffmpeg timed out after {timeout:g}s",
            ) from e

        job.finished_at = time.monotonic()
        elapsed = job.finished_at - job.started_at

        if result.returncode != 0:
            job.status = MediaJobStatus.failed
            job.error = extract_encoder_error(result.stderr)
            render_log(f"Failed: {desc} (exit={result.returncode}, {elapsed:.1f}s): {job.error}", level="error")
            raise EncoderFailed(result.returncode, stderr_tail(result.stderr, enc.stderr_tail_chars))

        job.status = MediaJobStatus.done
        render_log(f"Done: {desc} ({elapsed:.1f}s)")
        return result
    finally:
        _semaphore.release()
        _cleanup_finished_jobs()
