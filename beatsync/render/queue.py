"""Single-worker render queue.

The store is the queue: ``claim_next_render`` hands out the oldest queued job
and flips it to running in one statement. This module only decides *when* to
drain the store, with one worker thread and a small state machine:

    idle ──kick──▶ scheduled ──worker starts──▶ running ──store empty──▶ idle
                                                  │  ▲
                                             kick │  │ store empty
                                                  ▼  │
                                                 rerun

Kicks while scheduled or rerun collapse into the pending run. A kick while
running guarantees one more pass over the store after the current one, so a
job inserted just after the last empty claim is still picked up.

A job left ``running`` by a killed process stays that way; nothing reaps it.
"""

from __future__ import annotations

import threading
import traceback
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Any, Callable

from beatsync.db import store
from beatsync.render.errors import MissingAsset, RenderError
from beatsync.render.pipeline import render_job
from beatsync.utils.config import AppConfig, get_config
from beatsync.utils.logging import debug, error, info, render_log, job_context, success

RenderFn = Callable[[store.RenderRecord, store.ProjectRecord, AppConfig], Path]


class QueueState(str, Enum):
    idle = "idle"
    scheduled = "scheduled"
    running = "running"
    rerun = "rerun"


class RenderQueue:
    def __init__(self, config: AppConfig | None = None, render_fn: RenderFn = render_job):
        self._config = config
        self._render_fn = render_fn
        self._lock = threading.Lock()
        self._state = QueueState.idle
        self._idle = threading.Event()
        self._idle.set()
        self._closed = False
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="render-worker")

    @property
    def state(self) -> QueueState:
        with self._lock:
            return self._state

    @property
    def config(self) -> AppConfig:
        return self._config or get_config()

    def kick(self) -> bool:
        """Ask the worker to drain the store. Returns True if a new run was scheduled."""
        with self._lock:
            if self._closed:
                return False
            if self._state is QueueState.idle:
                self._state = QueueState.scheduled
                self._idle.clear()
            elif self._state is QueueState.running:
                self._state = QueueState.rerun
                return False
            else:
                return False
        self._executor.submit(self._run)
        return True

    def start(self) -> None:
        """Pick up any jobs left queued by a previous process."""
        queued = store.count_renders("queued")
        if queued:
            info(f"Render queue: {queued} queued job(s) waiting")
        self.kick()

    def enqueue(self, project_id: str, config: dict[str, Any]) -> store.RenderRecord:
        job = store.create_render(project_id, config)
        self.kick()
        return job

    def wait_idle(self, timeout: float | None = None) -> bool:
        return self._idle.wait(timeout)

    def shutdown(self, wait: bool = True) -> None:
        with self._lock:
            self._closed = True
        self._executor.shutdown(wait=wait)

    # ── Worker ────────────────────────────────────────────────────────────────

    def _run(self) -> None:
        with self._lock:
            self._state = QueueState.running
        while True:
            try:
                self._drain()
            except Exception as e:
                error(f"Render queue: store failure, stopping this pass: {e}")
                debug(traceback.format_exc())
            with self._lock:
                if self._state is QueueState.rerun and not self._closed:
                    self._state = QueueState.running
                    continue
                self._state = QueueState.idle
                self._idle.set()
                return

    def _drain(self) -> None:
        while True:
            job = store.claim_next_render()
            if job is None:
                return
            self._process(job)

    def _process(self, job: store.RenderRecord) -> None:
        with job_context(job.id):
            self._run_one(job)

    def _run_one(self, job: store.RenderRecord) -> None:
        render_log(f"Claimed {job.id} (project {job.project_id})")
        try:
            project = store.get_project(job.project_id)
            if project is None:
                raise MissingAsset(f"Project not found: {job.project_id}")
            output = self._render_fn(job, project, self.config)
        except RenderError as e:
            store.finish_render(job.id, "failed", error=e.describe())
            error(f"Render {job.id} failed: {e.kind}: {e.message.splitlines()[0] if e.message else ''}")
            render_log(f"Failed {job.id}: {e.describe()}", level="error")
        except Exception as e:
            store.finish_render(job.id, "failed", error=f"{type(e).__name__}: {e}")
            error(f"Render {job.id} crashed: {type(e).__name__}: {e}")
            render_log(f"Crashed {job.id}:\n{traceback.format_exc()}", level="error")
        else:
            store.finish_render(job.id, "done", output_path=str(output))
            success(f"Render {job.id} done: {output}")
            render_log(f"Done {job.id}: {output}")
