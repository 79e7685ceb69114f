"""beatsync — FastAPI server for beat-synced slideshow renders.

Start with:
    python main.py
    python main.py --host 0.0.0.0 --port 8000
    python main.py --reload
"""

from __future__ import annotations

import argparse
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

from beatsync.render.errors import RenderNotFound, RenderNotReady

load_dotenv()


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Assign a unique request_id to every incoming request for log correlation."""

    async def dispatch(self, request: Request, call_next):
        from beatsync.utils.logging import set_request_id
        rid = request.headers.get("x-request-id", "")
        rid = set_request_id(rid)
        response = await call_next(request)
        response.headers["x-request-id"] = rid
        return response


@asynccontextmanager
async def lifespan(application: FastAPI):
    # Startup
    from beatsync.db.store import close_db, init_db
    from beatsync.render.queue import RenderQueue
    from beatsync.utils.config import get_config
    from beatsync.utils.deps_check import check_all, print_dep_status
    from beatsync.utils.logging import setup_logging, Verbosity, info, success

    cfg = get_config()
    setup_logging(Verbosity.NORMAL, log_dir=cfg.storage.root / "logs")
    info("beatsync starting...")

    print_dep_status(check_all(cfg))

    cfg.storage.renders_dir.mkdir(parents=True, exist_ok=True)
    cfg.storage.projects_dir.mkdir(parents=True, exist_ok=True)
    init_db(cfg.storage.database)

    queue = RenderQueue()
    application.state.queue = queue
    queue.start()

    success("Server ready")

    yield  # app runs here

    # Shutdown
    queue.shutdown(wait=True)
    close_db()


app = FastAPI(
    title="beatsync",
    description="Beat-synced slideshow video renderer",
    version="1.0.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(RequestIdMiddleware)


@app.exception_handler(RenderNotFound)
async def render_not_found(request: Request, exc: RenderNotFound):
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(RenderNotReady)
async def render_not_ready(request: Request, exc: RenderNotReady):
    return JSONResponse(status_code=409, content={"detail": str(exc), "status": exc.status})


# ── API Routes ────────────────────────────────────────────────────────────────

from beatsync.api.routes import router as api_router  # noqa: E402
app.include_router(api_router)


# ── CLI Entry Point ───────────────────────────────────────────────────────────

def main():
    parser = argparse.ArgumentParser(description="beatsync server")
    parser.add_argument("--host", default="127.0.0.1", help="Bind host (default: 127.0.0.1)")
    parser.add_argument("--port", type=int, default=8000, help="Port (default: 8000)")
    parser.add_argument("--reload", action="store_true", help="Auto-reload on code changes")
    args = parser.parse_args()

    import uvicorn
    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        workers=1,
        log_level="info",
    )


if __name__ == "__main__":
    main()
