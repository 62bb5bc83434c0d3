"""
ResoCtrl -- Composition & Connection Models

Pydantic models for the mixer's composition snapshot and the connection
settings that address it.

The mixer wraps most scalar parameters in an object ({"value": ...}), e.g.
name.value, connected.value, video.opacity.value. The models accept that wire
form as well as the flat form ({"name": "L1", "opacity": 1.0}) so snapshots
can be built by hand in tests and tools.
"""

from __future__ import annotations

from typing import Any

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator, model_validator

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8080

# Clip states the mixer reports as "playing"
_ACTIVE_CLIP_STATES = {"connected", "connected & previewing"}


def _param_value(raw: Any) -> Any:
    """Unwrap a {"value": x} parameter object; pass anything else through."""
    if isinstance(raw, dict):
        return raw.get("value")
    return raw


# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

class ConnectionSettings(BaseModel):
    """Mixer endpoint. Replaced wholesale, never edited in place."""
    model_config = ConfigDict(frozen=True)

    host: str = Field(
        default=DEFAULT_HOST,
        min_length=1,
        validation_alias=AliasChoices("host", "ip"),
        description="Mixer hostname or IP. 'ip' is accepted for older saved settings.",
    )
    port: int = Field(
        default=DEFAULT_PORT,
        ge=1,
        le=65535,
        description="Mixer webserver port (Preferences > Webserver).",
    )

    @field_validator("host")
    @classmethod
    def strip_host(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("host must not be blank")
        return v

    def label(self) -> str:
        return f"{self.host}:{self.port}"


# ---------------------------------------------------------------------------
# Composition snapshot
# ---------------------------------------------------------------------------

class Clip(BaseModel):
    """A triggerable clip slot. `connected` is the only liveness signal."""
    id: int | None = None
    name: str = ""
    connected: bool = False

    @field_validator("name", mode="before")
    @classmethod
    def unwrap_name(cls, v):
        v = _param_value(v)
        return "" if v is None else str(v)

    @field_validator("connected", mode="before")
    @classmethod
    def unwrap_connected(cls, v):
        v = _param_value(v)
        if v is None:
            return False
        if isinstance(v, str):
            return v.strip().lower() in _ACTIVE_CLIP_STATES
        return bool(v)


class Layer(BaseModel):
    """A mixing channel: clips plus an opacity fader.

    `id` is stable across polls; the list position is not.
    """
    id: int | None = None
    name: str = ""
    opacity: float = 1.0
    clips: list[Clip] = Field(default_factory=list)

    @model_validator(mode="before")
    @classmethod
    def lift_video_opacity(cls, data):
        """Pull video.opacity.value up to `opacity` for wire-form payloads."""
        if isinstance(data, dict) and "opacity" not in data:
            video = data.get("video")
            if isinstance(video, dict) and "opacity" in video:
                data = {**data, "opacity": video["opacity"]}
        return data

    @field_validator("name", mode="before")
    @classmethod
    def unwrap_name(cls, v):
        v = _param_value(v)
        return "" if v is None else str(v)

    @field_validator("opacity", mode="before")
    @classmethod
    def clamp_opacity(cls, v):
        v = _param_value(v)
        if v is None:
            return 1.0
        return max(0.0, min(1.0, float(v)))

    @field_validator("clips", mode="before")
    @classmethod
    def default_clips(cls, v):
        return [] if v is None else v


class Composition(BaseModel):
    """Root snapshot. Replaced wholesale on every successful poll."""
    name: str = ""
    layers: list[Layer] = Field(default_factory=list)

    @field_validator("name", mode="before")
    @classmethod
    def unwrap_name(cls, v):
        v = _param_value(v)
        return "" if v is None else str(v)

    @field_validator("layers", mode="before")
    @classmethod
    def default_layers(cls, v):
        return [] if v is None else v

    @property
    def column_count(self) -> int:
        """Columns span every layer; the widest layer decides the count."""
        return max((len(layer.clips) for layer in self.layers), default=0)
