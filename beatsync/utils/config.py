"""Configuration management with YAML support and pydantic models."""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field


class RenderDefaults(BaseModel):
    """Defaults for RenderConfig fields a caller leaves out."""
    width: int = Field(default=1920, gt=0)
    height: int = Field(default=1080, gt=0)
    fps: float = Field(default=30, gt=0)
    transition_max_duration: float = Field(default=0.35, gt=0)


class EncoderConfig(BaseModel):
    ffmpeg_path: str = "ffmpeg"   # Env: FFMPEG_PATH
    video_codec: str = "libx264"
    x264_preset: str = "veryfast"
    crf: int = Field(default=18, ge=0, le=51)
    audio_codec: str = "aac"
    audio_bitrate: str = "192k"
    stderr_tail_chars: int = Field(default=20000, gt=0)
    timeout: float = 0            # 0 = no timeout
    threads: int = 0              # 0 = let ffmpeg decide
    nice: int = Field(default=10, ge=0, le=19)  # Linux only


class LowMemConfig(BaseModel):
    force: bool = False           # Env: LOW_MEM_RENDER
    memory_threshold_mb: int = 1024
    segment_threshold: int = 30


class StorageConfig(BaseModel):
    data_dir: str = "data"        # Env: BEATSYNC_DATA_DIR
    db_path: str = ""             # "" = <data_dir>/beatsync.sqlite

    @property
    def root(self) -> Path:
        return Path(self.data_dir)

    @property
    def database(self) -> Path:
        return Path(self.db_path) if self.db_path else self.root / "beatsync.sqlite"

    @property
    def projects_dir(self) -> Path:
        return self.root / "projects"

    @property
    def renders_dir(self) -> Path:
        return self.root / "renders"


class AppConfig(BaseModel):
    render: RenderDefaults = RenderDefaults()
    encoder: EncoderConfig = EncoderConfig()
    low_mem: LowMemConfig = LowMemConfig()
    storage: StorageConfig = StorageConfig()


def parse_bool(value: Any) -> bool:
    """Lenient flag parsing: True/1/"1"/"true" are true, everything else is false."""
    if value is True or value is False:
        return value
    if value in (1, "1"):
        return True
    if isinstance(value, str):
        return value.strip().lower() == "true"
    return False


def apply_env_overrides(cfg: AppConfig) -> AppConfig:
    data = cfg.model_dump()
    ffmpeg = os.environ.get("FFMPEG_PATH", "").strip()
    if ffmpeg:
        data["encoder"]["ffmpeg_path"] = ffmpeg
    if "LOW_MEM_RENDER" in os.environ:
        data["low_mem"]["force"] = parse_bool(os.environ["LOW_MEM_RENDER"])
    data_dir = os.environ.get("BEATSYNC_DATA_DIR", "").strip()
    if data_dir:
        data["storage"]["data_dir"] = data_dir
    return AppConfig(**data)


def load_config(path: str | Path | None = None) -> AppConfig:
    if path is None:
        candidates = [Path("config.yaml"), Path("config.yml"), Path("beatsync.yaml")]
        for c in candidates:
            if c.exists():
                path = c
                break
    cfg = AppConfig()
    if path is not None:
        p = Path(path)
        if p.exists():
            with open(p) as f:
                data = yaml.safe_load(f) or {}
            cfg = AppConfig(**data)
    return apply_env_overrides(cfg)


def merge_cli_overrides(cfg: AppConfig, overrides: dict[str, Any]) -> AppConfig:
    data = cfg.model_dump()
    for key, val in overrides.items():
        if val is None:
            continue
        parts = key.split(".")
        d = data
        for p in parts[:-1]:
            d = d.setdefault(p, {})
        d[parts[-1]] = val
    return AppConfig(**data)


_config: AppConfig | None = None


def get_config() -> AppConfig:
    global _config
    if _config is None:
        _config = load_config()
    return _config


def set_config(cfg: AppConfig | None) -> None:
    """Replace the process-wide config (None = reload lazily on next access)."""
    global _config
    _config = cfg


DEFAULT_CONFIG_YAML = """\
# beatsync configuration

render:
  width: 1920
  height: 1080
  fps: 30
  transition_max_duration: 0.35   # seconds, upper bound for every cross-fade

encoder:
  ffmpeg_path: ffmpeg        # Env override: FFMPEG_PATH
  video_codec: libx264
  x264_preset: veryfast
  crf: 18
  audio_codec: aac
  audio_bitrate: 192k
  stderr_tail_chars: 20000   # diagnostic tail kept on failed jobs
  timeout: 0                 # seconds, 0 = no timeout
  threads: 0                 # 0 = ffmpeg default
  nice: 10                   # process priority 0-19 (Linux only)

low_mem:
  force: false               # Env override: LOW_MEM_RENDER=1
  memory_threshold_mb: 1024  # hosts below this use the concat strategy
  segment_threshold: 30      # more segments than this use the concat strategy

storage:
  data_dir: data             # Env override: BEATSYNC_DATA_DIR
  db_path: ""                # "" = <data_dir>/beatsync.sqlite
"""
