#!/usr/bin/env python3
"""
ResoCtrl — FastAPI Backend
Serves the remote-control UI and bridges it to the mixer's REST API.

One ControlSession is live at a time. It polls the mixer, keeps the reconciled
composition, the master preview and the clip thumbnails. Saving new
connection settings closes that session (releasing every image it holds)
before the next one starts.
"""

import asyncio
import os
import sys
import logging
from contextlib import asynccontextmanager
from pathlib import Path

sys.path.insert(0, os.path.dirname(os.path.abspath(__file__)))

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.staticfiles import StaticFiles
from fastapi.responses import FileResponse
from starlette.middleware.base import BaseHTTPMiddleware
from pydantic import BaseModel, Field

from core.images import live_handles
from core.models import ConnectionSettings
from core.session import ControlSession
from core.settings import load_settings, save_settings
from core.view import render_state

logger = logging.getLogger(__name__)

SERVER_HOST = "127.0.0.1"
SERVER_PORT = 7860

UI_DIR = Path(__file__).parent / "ui"

# In-memory state for the current connection
_state = {
    "session": None,
}
_state_lock = asyncio.Lock()

# Structured error recovery hints for user-facing errors
ERROR_RECOVERY = {
    "not_connected": {"code": "NOT_CONNECTED", "hint": "Check the mixer's webserver is enabled and the host/port are right.", "action": "settings"},
    "invalid_layer": {"code": "INVALID_LAYER", "hint": "Layer index out of bounds.", "action": "refresh"},
    "invalid_clip": {"code": "INVALID_CLIP", "hint": "Clip index out of bounds.", "action": "refresh"},
    "invalid_column": {"code": "INVALID_COLUMN", "hint": "Column index out of bounds.", "action": "refresh"},
    "no_preview": {"code": "NO_PREVIEW", "hint": "The mixer has not sent a preview frame yet.", "action": None},
    "no_thumbnail": {"code": "NO_THUMBNAIL", "hint": "This clip has no thumbnail.", "action": None},
    "no_session": {"code": "NO_SESSION", "hint": "The server is starting or shutting down. Retry shortly.", "action": "retry"},
}


def _error_detail(key: str, message: str) -> dict:
    """Build structured error detail dict for the UI."""
    recovery = ERROR_RECOVERY.get(key, {})
    return {
        "detail": message,
        "code": recovery.get("code", "UNKNOWN"),
        "hint": recovery.get("hint", ""),
        "action": recovery.get("action"),
    }


def _make_session(settings: ConnectionSettings) -> ControlSession:
    return ControlSession(settings)


async def _restart_session(settings: ConnectionSettings) -> ControlSession:
    """Tear down the current session, then start one for `settings`."""
    async with _state_lock:
        old = _state["session"]
        _state["session"] = None
        if old is not None:
            await old.close()
        session = _make_session(settings)
        session.start()
        _state["session"] = session
        return session


async def _shutdown_session():
    async with _state_lock:
        session = _state["session"]
        _state["session"] = None
        if session is not None:
            await session.close()


@asynccontextmanager
async def lifespan(app: FastAPI):
    await _restart_session(load_settings())
    yield
    await _shutdown_session()


app = FastAPI(title="ResoCtrl", lifespan=lifespan)


class NoCacheStaticMiddleware(BaseHTTPMiddleware):
    """Keep browsers from caching the UI and the live images."""
    async def dispatch(self, request: Request, call_next):
        response = await call_next(request)
        path = request.url.path
        if path.startswith("/static") or path == "/" or path == "/api/preview":
            response.headers["Cache-Control"] = "no-cache, no-store, must-revalidate"
            response.headers["Pragma"] = "no-cache"
            response.headers["Expires"] = "0"
        return response


app.add_middleware(NoCacheStaticMiddleware)

app.mount("/static", StaticFiles(directory=str(UI_DIR / "static")), name="static")


def _session() -> ControlSession:
    session = _state["session"]
    if session is None:
        raise HTTPException(status_code=503, detail=_error_detail("no_session", "No active session"))
    return session


def _require_layer(session: ControlSession, layer_index: int):
    if session.composition is None:
        raise HTTPException(status_code=409, detail=_error_detail(
            "not_connected", f"No composition received from {session.settings.label()} yet"))
    if not session.reconciler.has_layer(layer_index):
        raise HTTPException(status_code=400, detail=_error_detail(
            "invalid_layer", f"Layer {layer_index} out of range (0-{session.reconciler.layer_count - 1})"))


def _image_response(handle) -> Response:
    # Bytes are copied out here; a later release can't touch this response
    return Response(content=handle.read(), media_type=handle.media_type)


@app.get("/")
async def index():
    return FileResponse(str(UI_DIR / "index.html"))


@app.get("/api/health")
async def health_check():
    """Health check endpoint for desktop app heartbeat."""
    return {"status": "ok", "live_images": len(live_handles())}


@app.get("/api/state")
async def get_state():
    """Reconciled composition, connection status and image URLs."""
    return render_state(_session())


@app.get("/api/settings")
async def get_settings():
    return _session().settings.model_dump()


@app.post("/api/settings")
async def update_settings(settings: ConnectionSettings):
    """Persist new connection settings and restart polling against them."""
    save_settings(settings)
    logger.info("Switching mixer to %s", settings.label())
    await _restart_session(settings)
    return settings.model_dump()


# ============ CONTROL COMMANDS ============
# Fire-and-forget: the response only says the command went out.
# The next poll shows what the mixer actually did.


class OpacityRequest(BaseModel):
    value: float = Field(ge=0.0, le=1.0)


@app.post("/api/layers/{layer_index}/clips/{clip_index}/trigger", status_code=202)
async def trigger_clip(layer_index: int, clip_index: int):
    session = _session()
    _require_layer(session, layer_index)
    if not session.reconciler.has_clip(layer_index, clip_index):
        raise HTTPException(status_code=400, detail=_error_detail(
            "invalid_clip", f"Clip {clip_index} not on layer {layer_index}"))
    session.trigger_clip(layer_index, clip_index)
    return {"status": "sent"}


@app.post("/api/layers/{layer_index}/clear", status_code=202)
async def clear_layer(layer_index: int):
    session = _session()
    _require_layer(session, layer_index)
    session.clear_layer(layer_index)
    return {"status": "sent"}


@app.put("/api/layers/{layer_index}/opacity", status_code=202)
async def set_opacity(layer_index: int, req: OpacityRequest):
    """Apply the fader value locally right away, then send it to the mixer."""
    session = _session()
    _require_layer(session, layer_index)
    session.set_opacity(layer_index, req.value)
    return {"status": "sent", "opacity": req.value}


@app.post("/api/columns/{column_index}/trigger", status_code=202)
async def trigger_column(column_index: int):
    session = _session()
    if session.composition is None:
        raise HTTPException(status_code=409, detail=_error_detail(
            "not_connected", f"No composition received from {session.settings.label()} yet"))
    columns = session.reconciler.column_count
    if not 0 <= column_index < columns:
        raise HTTPException(status_code=400, detail=_error_detail(
            "invalid_column", f"Column {column_index} out of range (0-{columns - 1})"))
    session.trigger_column(column_index)
    return {"status": "sent"}


# ============ IMAGES ============


@app.post("/api/thumbnails/reload", status_code=202)
async def reload_thumbnails():
    """Drop cached clip thumbnails and fetch them again."""
    await _session().reload_thumbnails()
    return {"status": "reloading"}


@app.get("/api/preview")
async def preview_image():
    handle = _session().preview_handle
    if handle is None:
        raise HTTPException(status_code=404, detail=_error_detail("no_preview", "No preview frame"))
    return _image_response(handle)


@app.get("/api/thumbnails/{layer_index}/{clip_index}")
async def thumbnail_image(layer_index: int, clip_index: int):
    handle = _session().thumbnail_for(layer_index, clip_index)
    if handle is None:
        raise HTTPException(status_code=404, detail=_error_detail(
            "no_thumbnail", f"No thumbnail for layer {layer_index} clip {clip_index}"))
    return _image_response(handle)


def start(host: str = SERVER_HOST, port: int = SERVER_PORT):
    import uvicorn
    print(f"ResoCtrl — launching at http://{host}:{port}")
    uvicorn.run(app, host=host, port=port, log_level="warning")


if __name__ == "__main__":
    start()
