"""On-disk layout for uploaded project assets."""

from __future__ import annotations

import mimetypes
import re
from pathlib import Path

from beatsync.db.store import new_id
from beatsync.utils.config import StorageConfig


def project_dir(storage: StorageConfig, project_id: str) -> Path:
    if not re.fullmatch(r"[A-Za-z0-9_-]+", project_id):
        raise ValueError(f"Invalid project id: {project_id!r}")
    return storage.projects_dir / project_id


def init_project_dirs(storage: StorageConfig, project_id: str) -> None:
    base = project_dir(storage, project_id)
    (base / "audio").mkdir(parents=True, exist_ok=True)
    (base / "images").mkdir(parents=True, exist_ok=True)


def extension_for(mime: str | None, filename: str | None) -> str:
    """File extension from the MIME type, else from the original name."""
    ext = mimetypes.guess_extension(mime or "") if mime else None
    if ext:
        return ext
    suffix = Path(filename or "").suffix.lower()
    return suffix if re.fullmatch(r"\.[a-z0-9]{1,8}", suffix) else ""


def stored_path(storage: StorageConfig, project_id: str, kind: str, mime: str | None, filename: str | None) -> Path:
    """Fresh ``<random id><ext>`` path under the project's audio/ or images/ dir."""
    d = project_dir(storage, project_id) / kind
    d.mkdir(parents=True, exist_ok=True)
    return d / f"{new_id(12)}{extension_for(mime, filename)}"
