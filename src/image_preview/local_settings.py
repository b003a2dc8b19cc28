"""Per-image overlay settings (mask filters and presentation flags).

These settings belong to an image identity, not to a format. Changing
them notifies observers with the image id but never counts as a format
settings change.
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, fields
from enum import Enum
from typing import Any, Dict, List, Optional

from image_preview.logger import get_logger
from image_preview.observers import Observers

__all__ = [
    "MaskDirection",
    "MaskFilter",
    "MaskSummary",
    "ImageLocalSettings",
    "ImageLocalSettingsStore",
    "NAN_COLORS",
]

LOGGER = get_logger(__name__)

NAN_COLORS = ("black", "fuchsia")


class MaskDirection(str, Enum):
    HIGHER = "higher"
    LOWER = "lower"


@dataclass
class MaskFilter:
    """Mask filter descriptor.

    Parameters
    ----------
    mask_ref : str
        Identity of the mask image.
    threshold : float
        Mask value that separates kept and hidden pixels.
    direction : MaskDirection
        Keep pixels whose mask value is higher or lower than the threshold.
    enabled : bool
        Disabled filters stay in the list but are not applied.
    """

    mask_ref: str
    threshold: float = 0.5
    direction: MaskDirection = MaskDirection.HIGHER
    enabled: bool = True

    def to_dict(self) -> dict:
        return {
            "maskUri": self.mask_ref,
            "threshold": float(self.threshold),
            "filterHigher": self.direction is MaskDirection.HIGHER,
            "enabled": bool(self.enabled),
        }


@dataclass(frozen=True)
class MaskSummary:
    """Mask counts for status display."""

    total: int
    enabled: int
    threshold: float = 0.0
    direction: MaskDirection = MaskDirection.HIGHER

    @property
    def text(self) -> Optional[str]:
        if self.enabled == 0:
            return None
        return f"{self.enabled}/{self.total} masks"


@dataclass
class ImageLocalSettings:
    """Overlay state for one image identity."""

    mask_filters: List[MaskFilter] = field(default_factory=list)
    nan_color: str = NAN_COLORS[0]
    color_picker_show_modified: bool = False

    def copy(self) -> "ImageLocalSettings":
        return copy.deepcopy(self)

    def to_dict(self) -> dict:
        return {
            "maskFilters": [mask.to_dict() for mask in self.mask_filters],
            "nanColor": self.nan_color,
            "colorPickerShowModified": bool(self.color_picker_show_modified),
        }


_MASK_FIELDS = {f.name for f in fields(MaskFilter)}


class ImageLocalSettingsStore:
    """Per-image settings keyed by image id.

    Notes
    -----
    Entries are created on first use. Every successful mutation fires one
    ``changed`` notification carrying the image id. Invalid indices are
    logged and reported by a False return value.
    """

    def __init__(self) -> None:
        self._entries: Dict[str, ImageLocalSettings] = {}
        self.changed = Observers()

    def _entry(self, image_id: str) -> ImageLocalSettings:
        return self._entries.setdefault(str(image_id), ImageLocalSettings())

    def _valid_index(self, image_id: str, index: int, action: str) -> bool:
        masks = self._entries.get(str(image_id))
        count = len(masks.mask_filters) if masks is not None else 0
        if 0 <= index < count:
            return True
        LOGGER.warning("Cannot %s mask %d for %s: %d mask(s) registered", action, index, image_id, count)
        return False

    def has_entry(self, image_id: str) -> bool:
        return str(image_id) in self._entries

    def snapshot(self, image_id: str) -> ImageLocalSettings:
        """Return a copy of the settings for ``image_id`` (defaults if unknown)."""
        entry = self._entries.get(str(image_id))
        return entry.copy() if entry is not None else ImageLocalSettings()

    def get_mask_filter_settings(self, image_id: str) -> List[MaskFilter]:
        entry = self._entries.get(str(image_id))
        if entry is None:
            return []
        return [copy.copy(mask) for mask in entry.mask_filters]

    def add_mask_filter(self, image_id: str, descriptor: MaskFilter) -> int:
        """Append a mask filter and return its index."""
        entry = self._entry(image_id)
        entry.mask_filters.append(copy.copy(descriptor))
        self.changed.notify(str(image_id))
        return len(entry.mask_filters) - 1

    def update_mask_filter(self, image_id: str, index: int, **partial: Any) -> bool:
        """Update selected fields of a mask filter."""
        if not self._valid_index(image_id, index, "update"):
            return False
        unknown = set(partial) - _MASK_FIELDS
        if unknown:
            LOGGER.warning("Ignoring unknown mask fields for %s: %s", image_id, ", ".join(sorted(unknown)))
        if "direction" in partial:
            try:
                partial["direction"] = MaskDirection(partial["direction"])
            except ValueError:
                LOGGER.warning("Invalid mask direction for %s: %r", image_id, partial["direction"])
                return False
        mask = self._entries[str(image_id)].mask_filters[index]
        for name, value in partial.items():
            if name in _MASK_FIELDS:
                setattr(mask, name, value)
        self.changed.notify(str(image_id))
        return True

    def remove_mask_filter(self, image_id: str, index: int) -> bool:
        if not self._valid_index(image_id, index, "remove"):
            return False
        del self._entries[str(image_id)].mask_filters[index]
        self.changed.notify(str(image_id))
        return True

    def set_mask_filter_enabled(self, image_id: str, index: int, enabled: bool) -> bool:
        if not self._valid_index(image_id, index, "toggle"):
            return False
        self._entries[str(image_id)].mask_filters[index].enabled = bool(enabled)
        self.changed.notify(str(image_id))
        return True

    def mask_summary(self, image_id: str) -> MaskSummary:
        masks = self.get_mask_filter_settings(image_id)
        enabled = [mask for mask in masks if mask.enabled]
        if not enabled:
            return MaskSummary(total=len(masks), enabled=0)
        first = enabled[0]
        return MaskSummary(len(masks), len(enabled), float(first.threshold), first.direction)

    def get_nan_color(self, image_id: str) -> str:
        entry = self._entries.get(str(image_id))
        return entry.nan_color if entry is not None else NAN_COLORS[0]

    def toggle_nan_color(self, image_id: str) -> str:
        entry = self._entry(image_id)
        entry.nan_color = NAN_COLORS[1] if entry.nan_color == NAN_COLORS[0] else NAN_COLORS[0]
        self.changed.notify(str(image_id))
        return entry.nan_color

    def get_color_picker_show_modified(self, image_id: str) -> bool:
        entry = self._entries.get(str(image_id))
        return entry.color_picker_show_modified if entry is not None else False

    def toggle_color_picker_mode(self, image_id: str) -> bool:
        entry = self._entry(image_id)
        entry.color_picker_show_modified = not entry.color_picker_show_modified
        self.changed.notify(str(image_id))
        return entry.color_picker_show_modified
