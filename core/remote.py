"""
ResoCtrl -- Mixer HTTP Client

Stateless request/response helpers for the mixer's REST API (v1).
Every call takes the shared httpx.AsyncClient and the ConnectionSettings to
address; nothing is cached here and nothing is retried.

Indices are zero-based on our side. The mixer's paths are one-based:

    layer 0, clip 0  ->  /composition/layers/1/clips/1/connect

Failure policy:
    fetch_composition   raises RemoteError (the poller turns it into status)
    commands            log and return False
    thumbnails/preview  return None (missing art is normal)
"""

import logging
import time

import httpx
from pydantic import ValidationError

from core.images import PREVIEW, THUMBNAIL, ImageDecodeError, decode_image
from core.models import Composition, ConnectionSettings

logger = logging.getLogger(__name__)

API_PREFIX = "/api/v1"


class RemoteError(Exception):
    """Composition fetch failed (network, HTTP status, or payload)."""
    pass


def base_url(settings: ConnectionSettings) -> str:
    return f"http://{settings.host}:{settings.port}{API_PREFIX}"


def _slot(index: int, what: str) -> int:
    """Zero-based index -> one-based path segment."""
    if index < 0:
        raise ValueError(f"{what} index must be >= 0, got {index}")
    return index + 1


def layer_path(layer_index: int) -> str:
    return f"/composition/layers/{_slot(layer_index, 'layer')}"


def clip_path(layer_index: int, clip_index: int) -> str:
    return f"{layer_path(layer_index)}/clips/{_slot(clip_index, 'clip')}"


def column_path(column_index: int) -> str:
    return f"/composition/columns/{_slot(column_index, 'column')}"


# ─── Snapshot ───────────────────────────────────────────────────────

async def fetch_composition(client: httpx.AsyncClient, settings: ConnectionSettings) -> Composition:
    """GET /composition and parse it.

    Raises:
        RemoteError: On transport failure, non-2xx status, or a body that is
            not a valid composition.
    """
    url = f"{base_url(settings)}/composition"
    try:
        resp = await client.get(url)
        resp.raise_for_status()
        return Composition.model_validate(resp.json())
    except httpx.HTTPStatusError as e:
        raise RemoteError(f"Mixer returned {e.response.status_code} for /composition") from e
    except httpx.HTTPError as e:
        raise RemoteError(f"Cannot reach mixer at {settings.label()}: {e}") from e
    except ValueError as e:
        # json.JSONDecodeError and pydantic.ValidationError are both ValueErrors
        kind = "invalid composition" if isinstance(e, ValidationError) else "non-JSON body"
        raise RemoteError(f"Mixer sent {kind} for /composition") from e


# ─── Commands (fire-and-forget) ─────────────────────────────────────

async def _command(client: httpx.AsyncClient, settings: ConnectionSettings,
                   method: str, path: str, body: dict | None = None) -> bool:
    url = f"{base_url(settings)}{path}"
    try:
        resp = await client.request(method, url, json=body)
    except httpx.HTTPError as e:
        logger.warning("%s %s failed: %s", method, path, e)
        return False
    if not resp.is_success:
        logger.warning("%s %s rejected with %d", method, path, resp.status_code)
        return False
    return True


async def trigger_clip(client, settings, layer_index: int, clip_index: int) -> bool:
    """Connect (play) one clip."""
    return await _command(client, settings, "POST", f"{clip_path(layer_index, clip_index)}/connect")


async def clear_layer(client, settings, layer_index: int) -> bool:
    """Disconnect whatever is playing on a layer."""
    return await _command(client, settings, "POST", f"{layer_path(layer_index)}/clear")


async def set_opacity(client, settings, layer_index: int, value: float) -> bool:
    """Set a layer's video opacity (0.0-1.0)."""
    return await _command(
        client, settings, "PUT", f"{layer_path(layer_index)}/video/opacity", {"value": value}
    )


async def trigger_column(client, settings, column_index: int) -> bool:
    """Connect every clip in a column."""
    return await _command(client, settings, "POST", f"{column_path(column_index)}/connect")


# ─── Images ─────────────────────────────────────────────────────────

async def _fetch_image(client: httpx.AsyncClient, url: str, owner: str, params: dict | None = None):
    try:
        resp = await client.get(url, params=params)
    except httpx.HTTPError as e:
        logger.debug("Image fetch %s failed: %s", url, e)
        return None
    if not resp.is_success:
        logger.debug("Image fetch %s returned %d", url, resp.status_code)
        return None
    try:
        return decode_image(resp.content, owner, resp.headers.get("content-type"))
    except ImageDecodeError as e:
        logger.debug("Image fetch %s: %s", url, e)
        return None


async def fetch_clip_thumbnail(client, settings, layer_index: int, clip_index: int):
    """Clip thumbnail as a new ImageHandle, or None."""
    url = f"{base_url(settings)}{clip_path(layer_index, clip_index)}/thumbnail"
    return await _fetch_image(client, url, THUMBNAIL)


async def fetch_master_thumbnail(client, settings):
    """Master output preview as a new ImageHandle, or None.

    The timestamp query keeps intermediaries from serving a cached frame.
    """
    url = f"{base_url(settings)}/composition/thumbnail"
    return await _fetch_image(client, url, PREVIEW, params={"t": int(time.time() * 1000)})
