"""
Conftest: shared fixtures for all ResoCtrl test modules.

1. Image registry reset (per-test) — leaked handles from one test can't
   pollute another's live-handle counts
2. FakeMixer — an in-process stand-in for the mixer's REST API, plugged into
   httpx via MockTransport, that records every request and mutates its
   composition the way the real mixer does
3. Settings dir isolation — nothing touches ~/.resoctrl
"""

import asyncio
import json
import os
import re
import sys
from io import BytesIO

import httpx
import pytest
from PIL import Image

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core import images
from core.models import ConnectionSettings
from core.session import ControlSession

MIXER_SETTINGS = ConnectionSettings(host="mixer.test", port=8080)

# Long enough that only the immediate first tick fires during a test
NO_REPEAT = 3600


def png_bytes(color=(255, 0, 0), size=(16, 9)):
    """A small real PNG."""
    buf = BytesIO()
    Image.new("RGB", size, color).save(buf, format="PNG")
    return buf.getvalue()


def make_composition_json(name="Test", layers=2, clips=3):
    """Composition in the mixer's wire form ({"value": ...} wrappers)."""
    return {
        "name": {"value": name},
        "layers": [
            {
                "id": 100 + li,
                "name": {"value": f"L{li + 1}"},
                "video": {"opacity": {"id": 900 + li, "value": 1.0, "min": 0.0, "max": 1.0}},
                "clips": [
                    {
                        "id": 1000 + li * 100 + ci,
                        "name": {"value": f"C{ci + 1}"},
                        "connected": {"value": "Empty"},
                    }
                    for ci in range(clips)
                ],
            }
            for li in range(layers)
        ],
    }


class FakeMixer:
    """Mixer REST API double.

    Attributes:
        composition: Wire-form composition served by GET /composition.
        requests: (method, path, params, body) for every request, path without /api/v1.
        down: Composition fetches fail with 503 (commands and images keep working).
        unreachable: Every request raises ConnectError.
        missing_thumbnails: {(layer_index, clip_index)} answered with 404.
        preview_down: Master thumbnail answers 500.
        gate: Optional asyncio.Event; requests whose path starts with one of
            `gated` wait for it before answering.
    """

    def __init__(self, composition=None):
        self.composition = composition if composition is not None else make_composition_json()
        self.requests = []
        self.down = False
        self.unreachable = False
        self.missing_thumbnails = set()
        self.preview_down = False
        self.preview_frames = 0
        self.gate = None
        self.gated = ()

    def transport(self):
        return httpx.MockTransport(self.handle)

    def paths(self, method=None, prefix=""):
        return [
            path for m, path, _, _ in self.requests
            if (method is None or m == method) and path.startswith(prefix)
        ]

    def _layer(self, n):
        layers = self.composition["layers"]
        if not 1 <= n <= len(layers):
            return None
        return layers[n - 1]

    def _set_clip(self, layer, clip_number):
        for ci, clip in enumerate(layer["clips"]):
            clip["connected"]["value"] = "Connected" if ci == clip_number - 1 else "Empty"

    async def handle(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path.startswith("/api/v1"):
            path = path[len("/api/v1"):]
        body = json.loads(request.content) if request.content else None
        self.requests.append((request.method, path, dict(request.url.params), body))

        if self.gate is not None and any(path.startswith(p) for p in self.gated):
            await self.gate.wait()
        if self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)

        method = request.method

        if method == "GET" and path == "/composition":
            if self.down:
                return httpx.Response(503, text="Service Unavailable")
            return httpx.Response(200, json=self.composition)

        if method == "GET" and path == "/composition/thumbnail":
            if self.preview_down:
                return httpx.Response(500)
            self.preview_frames += 1
            shade = (self.preview_frames * 40) % 256
            return httpx.Response(200, content=png_bytes((shade, shade, shade)),
                                  headers={"content-type": "image/png"})

        m = re.fullmatch(r"/composition/layers/(\d+)/clips/(\d+)/(connect|thumbnail)", path)
        if m:
            ln, cn, action = int(m.group(1)), int(m.group(2)), m.group(3)
            layer = self._layer(ln)
            if layer is None or not 1 <= cn <= len(layer["clips"]):
                return httpx.Response(404)
            if action == "thumbnail" and method == "GET":
                if (ln - 1, cn - 1) in self.missing_thumbnails:
                    return httpx.Response(404)
                return httpx.Response(200, content=png_bytes((0, ln * 20, cn * 20)),
                                      headers={"content-type": "image/png"})
            if action == "connect" and method == "POST":
                self._set_clip(layer, cn)
                return httpx.Response(204)
            return httpx.Response(405)

        m = re.fullmatch(r"/composition/layers/(\d+)/clear", path)
        if m and method == "POST":
            layer = self._layer(int(m.group(1)))
            if layer is None:
                return httpx.Response(404)
            self._set_clip(layer, 0)
            return httpx.Response(204)

        m = re.fullmatch(r"/composition/layers/(\d+)/video/opacity", path)
        if m and method == "PUT":
            layer = self._layer(int(m.group(1)))
            if layer is None or not isinstance(body, dict) or "value" not in body:
                return httpx.Response(400)
            layer["video"]["opacity"]["value"] = body["value"]
            return httpx.Response(204)

        m = re.fullmatch(r"/composition/columns/(\d+)/connect", path)
        if m and method == "POST":
            cn = int(m.group(1))
            for layer in self.composition["layers"]:
                if cn <= len(layer["clips"]):
                    self._set_clip(layer, cn)
            return httpx.Response(204)

        return httpx.Response(404)


def make_session(mixer, settings=MIXER_SETTINGS, **kwargs):
    """ControlSession wired to a FakeMixer; timers only fire their first tick."""
    kwargs.setdefault("snapshot_interval", NO_REPEAT)
    kwargs.setdefault("preview_interval", NO_REPEAT)
    return ControlSession(settings, transport=mixer.transport(), **kwargs)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture(autouse=True)
def reset_image_registry():
    """Start and end every test with no live image handles on record."""
    images._live.clear()
    yield
    images._live.clear()


@pytest.fixture(autouse=True)
def settings_dir(tmp_path, monkeypatch):
    """Point settings persistence at a temp dir."""
    from core import settings as settings_mod
    base = tmp_path / "resoctrl"
    monkeypatch.setattr(settings_mod, "DEFAULT_SETTINGS_DIR", base)
    return base


@pytest.fixture
def mixer():
    return FakeMixer()
