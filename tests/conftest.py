"""Shared test fixtures.

Provides:
- Isolated AppConfig (data dir under tmp_path) installed as the process config
- Per-test SQLite store
- Dummy audio / image assets and a project that owns them
- A fake encoder: subprocess.run patched to write the output file
- FastAPI TestClient with the render queue running
"""

from __future__ import annotations

import subprocess
from pathlib import Path
from types import SimpleNamespace
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient


# ── Config / storage isolation ───────────────────────────────────────────────

@pytest.fixture
def cfg(tmp_path, monkeypatch):
    """AppConfig rooted in tmp_path, installed as the process-wide config."""
    from beatsync.utils.config import AppConfig, StorageConfig, set_config

    for var in ("FFMPEG_PATH", "LOW_MEM_RENDER", "BEATSYNC_DATA_DIR"):
        monkeypatch.delenv(var, raising=False)

    config = AppConfig(storage=StorageConfig(data_dir=str(tmp_path / "data")))
    config.storage.renders_dir.mkdir(parents=True, exist_ok=True)
    set_config(config)
    yield config
    set_config(None)


@pytest.fixture
def db(cfg):
    """Initialize an isolated SQLite store."""
    from beatsync.db.store import close_db, init_db
    init_db(cfg.storage.database)
    yield cfg.storage.database
    close_db()


# ── Assets ───────────────────────────────────────────────────────────────────

@pytest.fixture
def assets(tmp_path):
    """A dummy audio file and three dummy images. Returns (audio, [images])."""
    d = tmp_path / "assets"
    d.mkdir()
    audio = d / "track.mp3"
    audio.write_bytes(b"ID3" + b"\x00" * 64)
    images = []
    for i in range(3):
        p = d / f"img{i}.jpg"
        p.write_bytes(b"\xff\xd8\xff" + bytes([i]) * 32)
        images.append(p)
    return audio, images


@pytest.fixture
def project(db, assets):
    """A stored project with audio and three images."""
    from beatsync.db import store
    audio, images = assets
    p = store.create_project("Test project")
    store.set_project_audio(p.id, str(audio), "track.mp3", "audio/mpeg", audio.stat().st_size)
    store.add_project_images(p.id, [
        {"path": str(i), "original_name": i.name, "mime": "image/jpeg", "size": i.stat().st_size}
        for i in images
    ])
    return store.get_project(p.id)


@pytest.fixture
def big_host():
    """Pretend the host has plenty of memory so the direct strategy is eligible."""
    with patch("beatsync.render.command.psutil.virtual_memory",
               return_value=SimpleNamespace(total=16 * 1024 ** 3)):
        yield


# ── Mock ffmpeg ──────────────────────────────────────────────────────────────

def _fake_ffmpeg_run(cmd, **kwargs):
    Path(cmd[-1]).write_bytes(b"\x00\x00\x00\x18ftypmp42")
    return subprocess.CompletedProcess(cmd, 0, stdout="", stderr="")


@pytest.fixture
def fake_encoder():
    """Patch encoder resolution and execution; yields the subprocess.run mock."""
    with patch("beatsync.utils.media_executor.resolve_encoder", return_value="/usr/bin/ffmpeg"), \
         patch("beatsync.utils.media_executor.subprocess.run", side_effect=_fake_ffmpeg_run) as run:
        yield run


# ── TestClient ───────────────────────────────────────────────────────────────

@pytest.fixture
def client(cfg, fake_encoder):
    """FastAPI TestClient; lifespan opens the store and starts the queue."""
    from main import app
    with TestClient(app, raise_server_exceptions=False) as c:
        yield c
