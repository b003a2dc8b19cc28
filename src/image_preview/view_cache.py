"""LRU cache of rendered-view snapshots with eviction telemetry.

The cache stores, per image id, the format and settings an image was last
rendered with plus the viewer state captured when the user switched away.
It never stores decoded samples; the rendering surface keeps those.

Eviction removes the entry with the smallest access time. Ties (possible
with a coarse clock) go to the entry touched earliest, tracked by a
monotonically increasing touch counter.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from image_preview.format_settings import FormatSettings, settings_equal
from image_preview.formats import ImageFormat, parse_format
from image_preview.local_settings import ImageLocalSettings
from image_preview.logger import get_logger

LOGGER = get_logger(__name__)

MAX_CACHED_VIEWS = 5


@dataclass(frozen=True)
class ViewerState:
    """Zoom and pan reported by the surface."""

    scale: float
    pan_x: float
    pan_y: float


@dataclass(frozen=True)
class ComparisonState:
    """Comparison peers reported by the surface."""

    peer_ids: Tuple[str, ...] = ()
    is_showing_peer: bool = False


@dataclass
class CachedView:
    """Snapshot of how an image was last displayed."""

    image_id: str
    format: ImageFormat
    rendered_with_settings: FormatSettings
    mask_snapshot: ImageLocalSettings
    viewer_state: Optional[ViewerState]
    comparison_state: Optional[ComparisonState]
    last_access_time: float
    touch_order: int = 0


@dataclass
class CacheTelemetry:
    """Telemetry tracking for cache behaviour."""

    hits: int = 0
    misses: int = 0
    evictions: int = 0
    invalidated: int = 0

    def hit_ratio(self) -> float:
        """Return cache hit ratio (0.0 to 1.0)."""
        total = self.hits + self.misses
        return self.hits / total if total > 0 else 0.0

    def reset(self) -> None:
        self.hits = 0
        self.misses = 0
        self.evictions = 0
        self.invalidated = 0


class ViewCache:
    """Bounded LRU store of ``CachedView`` entries keyed by image id.

    Notes
    -----
    - ``get``, ``set`` and ``touch`` touch an entry; ``is_valid`` and
      ``peek`` do not.
    - Settings are deep-copied on insert so cached entries never alias the
      live settings bank.
    - Mask state is stored for restoration but ignored by ``is_valid``.
    """

    def __init__(self, max_entries: int = MAX_CACHED_VIEWS, clock: Callable[[], float] = time.monotonic) -> None:
        assert int(max_entries) >= 1, "view cache needs room for one entry"
        self._max_entries = int(max_entries)
        self._clock = clock
        self._entries: Dict[str, CachedView] = {}
        self._touches = 0
        self._telemetry = CacheTelemetry()

    @property
    def max_entries(self) -> int:
        return self._max_entries

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, image_id: object) -> bool:
        return str(image_id) in self._entries

    def image_ids(self) -> List[str]:
        return list(self._entries.keys())

    def telemetry(self) -> CacheTelemetry:
        return self._telemetry

    def peek(self, image_id: str) -> Optional[CachedView]:
        """Return an entry without touching it."""
        return self._entries.get(str(image_id))

    def get(self, image_id: str) -> Optional[CachedView]:
        """Return a cached view and mark it as most-recently-used."""
        entry = self._entries.get(str(image_id))
        if entry is None:
            self._telemetry.misses += 1
            LOGGER.debug("View cache miss: %s", image_id)
            return None
        self._telemetry.hits += 1
        self._touch(entry)
        return entry

    def is_valid(self, image_id: str, current_settings: FormatSettings, current_format) -> bool:
        """Return True when the entry was rendered with ``current_settings`` for ``current_format``."""
        entry = self._entries.get(str(image_id))
        if entry is None:
            return False
        if current_format is None or entry.format != parse_format(current_format):
            return False
        return settings_equal(entry.rendered_with_settings, current_settings)

    def set(
        self,
        image_id: str,
        fmt,
        current_settings: FormatSettings,
        mask_snapshot: Optional[ImageLocalSettings] = None,
        viewer_state: Optional[ViewerState] = None,
        comparison_state: Optional[ComparisonState] = None,
    ) -> CachedView:
        """Insert or overwrite the entry for ``image_id``, evicting the LRU entry if full."""
        key = str(image_id)
        if key not in self._entries and len(self._entries) >= self._max_entries:
            self._evict_oldest()
        entry = CachedView(
            image_id=key,
            format=parse_format(fmt),
            rendered_with_settings=current_settings.copy(),
            mask_snapshot=mask_snapshot.copy() if mask_snapshot is not None else ImageLocalSettings(),
            viewer_state=viewer_state,
            comparison_state=comparison_state,
            last_access_time=0.0,
        )
        self._touch(entry)
        self._entries[key] = entry
        assert len(self._entries) <= self._max_entries, "view cache exceeded its capacity"
        return entry

    def invalidate_format(self, fmt) -> int:
        """Remove every entry tagged with ``fmt``; return the number removed."""
        fmt = parse_format(fmt)
        doomed = [key for key, entry in self._entries.items() if entry.format == fmt]
        for key in doomed:
            del self._entries[key]
        if doomed:
            self._telemetry.invalidated += len(doomed)
            LOGGER.debug("Invalidated %d cached view(s) for %s", len(doomed), fmt.value)
        return len(doomed)

    def touch(self, image_id: str) -> bool:
        """Mark a resident entry as most-recently-used without counting a hit."""
        entry = self._entries.get(str(image_id))
        if entry is None:
            return False
        self._touch(entry)
        return True

    def clear(self) -> None:
        """Drop every entry."""
        if self._entries:
            LOGGER.debug("Cleared %d cached view(s)", len(self._entries))
        self._entries.clear()

    def _touch(self, entry: CachedView) -> None:
        self._touches += 1
        entry.last_access_time = float(self._clock())
        entry.touch_order = self._touches

    def _evict_oldest(self) -> None:
        """Evict the least-recently-used entry."""
        if not self._entries:
            return
        victim = min(self._entries.values(), key=lambda e: (e.last_access_time, e.touch_order))
        del self._entries[victim.image_id]
        self._telemetry.evictions += 1
        LOGGER.debug("Evicted cached view %s (%s)", victim.image_id, victim.format.value)
