"""
Render error types.

Every failure that ends a single render job derives from RenderError. The
worker persists ``describe()`` on the job, so the kind prefix is part of the
stored error text and callers can classify failures without server logs.
"""

from __future__ import annotations


class RenderError(Exception):
    """Base exception for all job-level render failures."""

    kind = "RenderError"

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)

    def describe(self) -> str:
        return f"{self.kind}: {self.message}"


class InvalidSchedule(RenderError):
    """Cut times collapse to fewer than two points."""

    kind = "InvalidSchedule"


class TooManySegments(RenderError):
    """The schedule asks for more segments than a single render allows."""

    kind = "TooManySegments"

    def __init__(self, segments: int, limit: int):
        self.segments = segments
        self.limit = limit
        super().__init__(
            f"{segments} segments requested, at most {limit} allowed. "
            f"Use more beats per image or fewer cut times."
        )


class MissingAsset(RenderError):
    """The project has no audio or no images."""

    kind = "MissingAsset"


class InvalidConfig(RenderError):
    """A required numeric field is missing or not finite."""

    kind = "InvalidConfig"


class EncoderNotFound(RenderError):
    """The encoder executable is not present in the runtime environment."""

    kind = "EncoderNotFound"

    def __init__(self, binary: str):
        self.binary = binary
        super().__init__(
            f"Cannot find FFmpeg executable ({binary}). Install FFmpeg and ensure it is "
            f"available on PATH, or set FFMPEG_PATH to the full path of the ffmpeg binary."
        )


class EncoderFailed(RenderError):
    """The encoder ran and exited with a nonzero code (or timed out)."""

    kind = "EncoderFailed"

    def __init__(self, returncode: int | None, stderr_tail: str = "", reason: str = ""):
        self.returncode = returncode
        self.stderr_tail = stderr_tail
        head = reason or f"ffmpeg failed (code {returncode})"
        super().__init__(f"{head}\n{stderr_tail}" if stderr_tail else head)


# ── Artifact retrieval ────────────────────────────────────────────────────────

class RenderNotFound(Exception):
    """No render job with the given id."""

    def __init__(self, render_id: str):
        self.render_id = render_id
        super().__init__(f"Render not found: {render_id}")


class RenderNotReady(Exception):
    """The render exists but has no downloadable artifact yet."""

    def __init__(self, render_id: str, status: str):
        self.render_id = render_id
        self.status = status
        super().__init__(f"Render not ready: {render_id} (status={status})")
