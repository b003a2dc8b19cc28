"""Messages exchanged between the host and the rendering surface.

Host messages are dataclasses serialized with ``to_payload``; surface
payloads are parsed with ``parse_message``. Payload keys use camelCase and
every payload carries a ``type`` field.
"""

from __future__ import annotations

from dataclasses import MISSING, dataclass, fields
from enum import Enum
from typing import Any, ClassVar, Dict, Mapping, Optional, Tuple, Type

from image_preview.formats import FormatDescriptor

__all__ = [
    "Directive",
    "MessageError",
    "HostMessage",
    "SurfaceMessage",
    "RequestViewerState",
    "RequestComparisonState",
    "SwitchImage",
    "PushSettings",
    "RestoreViewerState",
    "RestoreComparisonState",
    "StartComparison",
    "UpdateCollectionOverlay",
    "ViewerStateReport",
    "ComparisonStateReport",
    "FormatDetected",
    "StatsComputed",
    "SurfaceReady",
    "ToggleImage",
    "RestorePeerImage",
    "to_payload",
    "parse_message",
]


class Directive(str, Enum):
    """Switch directives ordered by increasing cost."""

    REUSE = "reuse"
    RERENDER = "rerender"
    RELOAD = "reload"


class MessageError(ValueError):
    """Raised for malformed surface payloads."""


class HostMessage:
    type: ClassVar[str] = ""


class SurfaceMessage:
    type: ClassVar[str] = ""


@dataclass(frozen=True)
class RequestViewerState(HostMessage):
    type: ClassVar[str] = "requestViewerState"
    seq: int


@dataclass(frozen=True)
class RequestComparisonState(HostMessage):
    type: ClassVar[str] = "requestComparisonState"
    seq: int


@dataclass(frozen=True)
class SwitchImage(HostMessage):
    """Show ``target_id``; ``settings`` accompanies Rerender and Reload."""

    type: ClassVar[str] = "switchImage"
    target_id: str
    directive: Directive
    settings: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    seq: int = 0


@dataclass(frozen=True)
class PushSettings(HostMessage):
    type: ClassVar[str] = "pushSettings"
    image_id: str
    settings: Dict[str, Any]


@dataclass(frozen=True)
class RestoreViewerState(HostMessage):
    type: ClassVar[str] = "restoreViewerState"
    scale: float
    pan_x: float
    pan_y: float


@dataclass(frozen=True)
class RestoreComparisonState(HostMessage):
    type: ClassVar[str] = "restoreComparisonState"
    peer_ids: Tuple[str, ...]
    is_showing_peer: bool = False


@dataclass(frozen=True)
class StartComparison(HostMessage):
    type: ClassVar[str] = "startComparison"
    peer_id: str


@dataclass(frozen=True)
class UpdateCollectionOverlay(HostMessage):
    type: ClassVar[str] = "updateCollectionOverlay"
    total_images: int
    current_index: int
    show: bool


@dataclass(frozen=True)
class ViewerStateReport(SurfaceMessage):
    type: ClassVar[str] = "viewerStateReport"
    seq: int
    scale: float
    pan_x: float
    pan_y: float


@dataclass(frozen=True)
class ComparisonStateReport(SurfaceMessage):
    type: ClassVar[str] = "comparisonStateReport"
    seq: int
    peer_ids: Tuple[str, ...] = ()
    is_showing_peer: bool = False


@dataclass(frozen=True)
class FormatDetected(SurfaceMessage):
    type: ClassVar[str] = "formatDetected"
    descriptor: FormatDescriptor


@dataclass(frozen=True)
class StatsComputed(SurfaceMessage):
    type: ClassVar[str] = "statsComputed"
    min: float
    max: float


@dataclass(frozen=True)
class SurfaceReady(SurfaceMessage):
    """Acknowledges that the surface finished showing ``target_id``."""

    type: ClassVar[str] = "surfaceReady"
    target_id: str


@dataclass(frozen=True)
class ToggleImage(SurfaceMessage):
    type: ClassVar[str] = "toggleImage"
    reverse: bool = False


@dataclass(frozen=True)
class RestorePeerImage(SurfaceMessage):
    type: ClassVar[str] = "restorePeerImage"
    peer_id: str


_SURFACE_MESSAGES: Dict[str, Type[SurfaceMessage]] = {
    cls.type: cls
    for cls in (
        ViewerStateReport,
        ComparisonStateReport,
        FormatDetected,
        StatsComputed,
        SurfaceReady,
        ToggleImage,
        RestorePeerImage,
    )
}


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(part.title() for part in rest)


def _encode(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, FormatDescriptor):
        return value.to_dict()
    if isinstance(value, tuple):
        return [_encode(item) for item in value]
    return value


def to_payload(message) -> dict:
    """Serialize a message dataclass to a JSON-compatible dict."""
    payload = {"type": message.type}
    for f in fields(message):
        payload[_camel(f.name)] = _encode(getattr(message, f.name))
    return payload


def _decode(cls: Type[SurfaceMessage], name: str, value: Any) -> Any:
    if cls is FormatDetected and name == "descriptor":
        if not isinstance(value, Mapping):
            raise MessageError("formatDetected.descriptor must be an object")
        return FormatDescriptor.from_dict(value)
    if name in ("seq",):
        return int(value)
    if name in ("scale", "pan_x", "pan_y", "min", "max"):
        return float(value)
    if name in ("is_showing_peer", "reverse"):
        return bool(value)
    if name == "peer_ids":
        return tuple(str(item) for item in value)
    if name in ("target_id", "peer_id"):
        return str(value)
    return value


def parse_message(payload: Mapping[str, Any]) -> Optional[SurfaceMessage]:
    """Parse a surface payload.

    Returns None for unknown message types and raises MessageError when a
    known type is missing fields or carries values of the wrong shape.
    """
    if not isinstance(payload, Mapping) or "type" not in payload:
        raise MessageError("surface payload must be an object with a 'type'")
    cls = _SURFACE_MESSAGES.get(str(payload["type"]))
    if cls is None:
        return None
    kwargs = {}
    for f in fields(cls):
        key = _camel(f.name)
        if key not in payload:
            if f.default is not MISSING or f.default_factory is not MISSING:
                continue
            raise MessageError(f"{cls.type} payload is missing '{key}'")
        try:
            kwargs[f.name] = _decode(cls, f.name, payload[key])
        except (TypeError, ValueError) as exc:
            raise MessageError(f"{cls.type}.{key}: {exc}") from exc
    return cls(**kwargs)
