"""Projects, uploaded assets and render jobs: SQLite storage.

Schema auto-created on first connect. No ORM dependency, raw sqlite3.

The render table doubles as the job queue. ``claim_next_render`` is the only
way a job leaves ``queued`` and ``finish_render`` the only way it leaves
``running``; both are single statements, so a status poll never observes a
half-written job.
"""

from __future__ import annotations

import json
import secrets
import sqlite3
import string
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from beatsync.utils.logging import info, debug

_DB_PATH: Path | None = None
_con: sqlite3.Connection | None = None
_db_lock = threading.RLock()

TERMINAL_STATUSES = ("done", "failed")

SCHEMA = """
CREATE TABLE IF NOT EXISTS projects (
    id TEXT PRIMARY KEY,
    title TEXT NOT NULL DEFAULT 'Untitled',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS project_files (
    id TEXT PRIMARY KEY,
    project_id TEXT NOT NULL,
    kind TEXT NOT NULL,
    path TEXT NOT NULL,
    original_name TEXT DEFAULT '',
    mime TEXT DEFAULT '',
    size INTEGER DEFAULT 0,
    position INTEGER DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS renders (
    id TEXT PRIMARY KEY,
    seq INTEGER NOT NULL,
    project_id TEXT NOT NULL,
    status TEXT NOT NULL DEFAULT 'queued',
    progress INTEGER NOT NULL DEFAULT 0,
    output_path TEXT,
    error TEXT,
    config_json TEXT NOT NULL DEFAULT '{}',
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_project_files_project ON project_files(project_id, kind, position);
CREATE INDEX IF NOT EXISTS idx_renders_queue ON renders(status, created_at, seq);
CREATE INDEX IF NOT EXISTS idx_renders_project ON renders(project_id);
"""

_ID_ALPHABET = string.ascii_letters + string.digits + "_-"


def new_id(size: int) -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(size))


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def init_db(db_path: Path | None = None) -> None:
    """Initialize database connection and schema."""
    global _DB_PATH, _con
    close_db()
    _DB_PATH = db_path or Path("data/beatsync.sqlite")
    _DB_PATH.parent.mkdir(parents=True, exist_ok=True)
    _con = sqlite3.connect(str(_DB_PATH), check_same_thread=False)
    _con.row_factory = sqlite3.Row
    _con.execute("PRAGMA journal_mode=WAL")
    _con.executescript(SCHEMA)
    _con.commit()
    info(f"Store DB: {_DB_PATH}")


def get_con() -> sqlite3.Connection:
    if _con is None:
        init_db()
    return _con


def close_db() -> None:
    global _con
    if _con:
        _con.close()
        _con = None


# ── Data classes ──────────────────────────────────────────────────────────────

@dataclass
class FileRecord:
    id: str
    project_id: str
    kind: str  # "audio" | "image"
    path: str
    original_name: str
    mime: str
    size: int
    position: int
    created_at: str

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "path": self.path,
            "originalName": self.original_name,
            "mime": self.mime,
            "size": self.size,
        }

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> FileRecord:
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            kind=row["kind"],
            path=row["path"],
            original_name=row["original_name"] or "",
            mime=row["mime"] or "",
            size=row["size"] or 0,
            position=row["position"] or 0,
            created_at=row["created_at"],
        )


@dataclass
class ProjectRecord:
    id: str
    title: str
    created_at: str
    updated_at: str
    audio: FileRecord | None = None
    images: list[FileRecord] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "audio": self.audio.to_dict() if self.audio else None,
            "images": [i.to_dict() for i in self.images],
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }


@dataclass
class RenderRecord:
    id: str
    project_id: str
    status: str
    progress: int
    output_path: str | None
    error: str | None
    config: dict[str, Any]
    created_at: str
    updated_at: str

    @classmethod
    def from_row(cls, row: sqlite3.Row) -> RenderRecord:
        try:
            config = json.loads(row["config_json"]) if row["config_json"] else {}
        except (json.JSONDecodeError, TypeError):
            config = {}
        return cls(
            id=row["id"],
            project_id=row["project_id"],
            status=row["status"],
            progress=row["progress"] or 0,
            output_path=row["output_path"],
            error=row["error"],
            config=config,
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )


# ── Projects ──────────────────────────────────────────────────────────────────

def create_project(title: str = "Untitled") -> ProjectRecord:
    con = get_con()
    now = _now()
    pid = new_id(10)
    with _db_lock:
        con.execute(
            "INSERT INTO projects (id, title, created_at, updated_at) VALUES (?, ?, ?, ?)",
            (pid, title or "Untitled", now, now),
        )
        con.commit()
    info(f"Project created: {pid} '{title}'")
    return ProjectRecord(id=pid, title=title or "Untitled", created_at=now, updated_at=now)


def get_project(project_id: str) -> ProjectRecord | None:
    con = get_con()
    with _db_lock:
        row = con.execute("SELECT * FROM projects WHERE id = ?", (project_id,)).fetchone()
        if not row:
            return None
        files = con.execute(
            "SELECT * FROM project_files WHERE project_id = ? ORDER BY position, created_at",
            (project_id,),
        ).fetchall()
    audio = next((FileRecord.from_row(f) for f in files if f["kind"] == "audio"), None)
    images = [FileRecord.from_row(f) for f in files if f["kind"] == "image"]
    return ProjectRecord(
        id=row["id"], title=row["title"], created_at=row["created_at"],
        updated_at=row["updated_at"], audio=audio, images=images,
    )


def _touch_project(con: sqlite3.Connection, project_id: str) -> None:
    con.execute("UPDATE projects SET updated_at = ? WHERE id = ?", (_now(), project_id))


def set_project_audio(
    project_id: str, path: str, original_name: str = "", mime: str = "", size: int = 0,
) -> FileRecord:
    """Replace the project's audio asset. Returns the new record."""
    con = get_con()
    now = _now()
    rec = FileRecord(
        id=new_id(12), project_id=project_id, kind="audio", path=path,
        original_name=original_name, mime=mime, size=size, position=0, created_at=now,
    )
    with _db_lock:
        con.execute("DELETE FROM project_files WHERE project_id = ? AND kind = 'audio'", (project_id,))
        con.execute(
            "INSERT INTO project_files (id, project_id, kind, path, original_name, mime, size, position, created_at) "
            "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
            (rec.id, project_id, "audio", path, original_name, mime, size, 0, now),
        )
        _touch_project(con, project_id)
        con.commit()
    debug(f"Project {project_id}: audio set to {path}")
    return rec


def add_project_images(project_id: str, files: list[dict[str, Any]]) -> list[FileRecord]:
    """Append images after the existing ones, keeping the given order.

    ``files`` items: {"path", "original_name", "mime", "size"}.
    """
    con = get_con()
    now = _now()
    out: list[FileRecord] = []
    with _db_lock:
        start = con.execute(
            "SELECT COALESCE(MAX(position), -1) + 1 FROM project_files WHERE project_id = ? AND kind = 'image'",
            (project_id,),
        ).fetchone()[0]
        for offset, f in enumerate(files):
            rec = FileRecord(
                id=new_id(12), project_id=project_id, kind="image", path=f["path"],
                original_name=f.get("original_name", ""), mime=f.get("mime", ""),
                size=f.get("size", 0), position=start + offset, created_at=now,
            )
            con.execute(
                "INSERT INTO project_files (id, project_id, kind, path, original_name, mime, size, position, created_at) "
                "VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)",
                (rec.id, project_id, "image", rec.path, rec.original_name, rec.mime,
                 rec.size, rec.position, now),
            )
            out.append(rec)
        _touch_project(con, project_id)
        con.commit()
    debug(f"Project {project_id}: {len(out)} image(s) added")
    return out


# ── Renders ───────────────────────────────────────────────────────────────────

def create_render(project_id: str, config: dict[str, Any]) -> RenderRecord:
    con = get_con()
    now = _now()
    rid = new_id(12)
    with _db_lock:
        con.execute(
            "INSERT INTO renders (id, seq, project_id, status, progress, config_json, created_at, updated_at) "
            "VALUES (?, (SELECT COALESCE(MAX(seq), 0) + 1 FROM renders), ?, 'queued', 0, ?, ?, ?)",
            (rid, project_id, json.dumps(config), now, now),
        )
        con.commit()
    info(f"Render queued: {rid} (project {project_id})")
    return RenderRecord(
        id=rid, project_id=project_id, status="queued", progress=0, output_path=None,
        error=None, config=config, created_at=now, updated_at=now,
    )


def get_render(render_id: str) -> RenderRecord | None:
    con = get_con()
    with _db_lock:
        row = con.execute("SELECT * FROM renders WHERE id = ?", (render_id,)).fetchone()
    return RenderRecord.from_row(row) if row else None


def list_renders(project_id: str | None = None, status: str | None = None) -> list[RenderRecord]:
    con = get_con()
    where, params = [], []
    if project_id:
        where.append("project_id = ?")
        params.append(project_id)
    if status:
        where.append("status = ?")
        params.append(status)
    sql = "SELECT * FROM renders"
    if where:
        sql += " WHERE " + " AND ".join(where)
    with _db_lock:
        rows = con.execute(sql + " ORDER BY created_at, seq", params).fetchall()
    return [RenderRecord.from_row(r) for r in rows]


_CLAIM_SQL = """
UPDATE renders
   SET status = 'running', progress = 0, error = NULL, output_path = NULL, updated_at = ?
 WHERE id = (SELECT id FROM renders WHERE status = 'queued' ORDER BY created_at, seq LIMIT 1)
   AND status = 'queued'
RETURNING *
"""


def claim_next_render() -> RenderRecord | None:
    """Atomically move the oldest queued render to running and return it."""
    con = get_con()
    with _db_lock:
        con.execute("BEGIN IMMEDIATE")
        try:
            rows = con.execute(_CLAIM_SQL, (_now(),)).fetchall()
            con.commit()
        except sqlite3.Error:
            con.rollback()
            raise
    return RenderRecord.from_row(rows[0]) if rows else None


def finish_render(
    render_id: str, status: str, output_path: str | None = None, error: str | None = None,
) -> bool:
    """Write a terminal result for a running render. Returns False if it was not running."""
    if status not in TERMINAL_STATUSES:
        raise ValueError(f"finish_render needs a terminal status, got {status!r}")
    progress = 100 if status == "done" else 0
    if status == "done":
        error = None
    else:
        output_path = None
    con = get_con()
    with _db_lock:
        cur = con.execute(
            "UPDATE renders SET status = ?, progress = ?, output_path = ?, error = ?, updated_at = ? "
            "WHERE id = ? AND status = 'running'",
            (status, progress, output_path, error, _now(), render_id),
        )
        con.commit()
    return cur.rowcount > 0


def count_renders(status: str) -> int:
    con = get_con()
    with _db_lock:
        return con.execute("SELECT COUNT(*) FROM renders WHERE status = ?", (status,)).fetchone()[0]
