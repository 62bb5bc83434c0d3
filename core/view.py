"""
ResoCtrl -- View State

Flattens a session into the JSON the browser renders. Layers come out in the
mixer's order (layer 1 first); the page decides whether to stack them
bottom-up like the mixer's own UI.
"""


def layer_display_name(layer, layer_index: int) -> str:
    return layer.name or f"Layer {layer_index + 1}"


def clip_display_name(clip) -> str:
    return clip.name or "Clip"


def thumbnail_url(layer_index: int, clip_index: int, handle) -> str | None:
    if handle is None:
        return None
    # Handle id busts the browser cache when thumbnails are reloaded
    return f"/api/thumbnails/{layer_index}/{clip_index}?v={handle.id[:12]}"


def render_layers(composition, thumbnail_lookup=None) -> list[dict]:
    """Layer/clip dicts for a composition.

    Args:
        composition: Current Composition.
        thumbnail_lookup: Optional callable (layer_index, clip_index) -> handle or None.
    """
    layers = []
    for li, layer in enumerate(composition.layers):
        clips = []
        for ci, clip in enumerate(layer.clips):
            handle = thumbnail_lookup(li, ci) if thumbnail_lookup else None
            clips.append({
                "index": ci,
                "id": clip.id,
                "name": clip_display_name(clip),
                "connected": clip.connected,
                "thumbnail": thumbnail_url(li, ci, handle),
            })
        layers.append({
            "index": li,
            "id": layer.id,
            "name": layer_display_name(layer, li),
            "opacity": layer.opacity,
            "opacity_percent": round(layer.opacity * 100),
            "clips": clips,
        })
    return layers


def render_state(session) -> dict:
    """Everything the UI needs for one frame."""
    composition = session.composition
    preview = session.preview_handle
    state = {
        "connected": session.connected,
        "status": session.status,
        "settings": session.settings.model_dump(),
        "composition": None,
        "layers": [],
        "columns": 0,
        "preview": f"/api/preview?v={preview.id[:12]}" if preview is not None else None,
    }
    if composition is not None:
        state["composition"] = composition.name or "Untitled"
        state["layers"] = render_layers(composition, session.thumbnail_for)
        state["columns"] = composition.column_count
    return state
