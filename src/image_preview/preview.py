"""Previews and the manager that owns the shared stores.

An ``ImagePreview`` is one rendering surface with an ordered collection of
images it can toggle through. The ``PreviewManager`` creates previews,
tracks which one is active and offers the format-targeted commands used by
the command surface.
"""

from __future__ import annotations

import itertools
import time
from typing import Callable, List, Optional, Tuple

from image_preview.config import DEFAULT_CONFIG, ViewerConfig
from image_preview.decoder import Decoder
from image_preview.format_settings import FormatSettingsStore
from image_preview.formats import ImageFormat, NormalizationMode
from image_preview.local_settings import ImageLocalSettingsStore, MaskDirection, MaskFilter
from image_preview.logger import get_logger, set_level
from image_preview.message_router import MessageRouter
from image_preview.messages import (
    ComparisonStateReport,
    Directive,
    FormatDetected,
    RestorePeerImage,
    StartComparison,
    StatsComputed,
    SurfaceReady,
    ToggleImage,
    UpdateCollectionOverlay,
    ViewerStateReport,
)
from image_preview.status_entries import StatusEntries
from image_preview.surface import Scheduler, SurfaceChannel
from image_preview.sync_protocol import SwitchCoordinator
from image_preview.view_cache import ViewCache

__all__ = ["ImagePreview", "PreviewManager"]

LOGGER = get_logger(__name__)

_preview_ids = itertools.count(1)


class ImagePreview:
    """One rendering surface plus its image collection.

    Parameters
    ----------
    resource_id : str
        The image the preview was opened for; first entry of the collection.
    surface : SurfaceChannel
        Outgoing message channel of this preview.
    format_store, local_store : shared stores owned by the manager.
    scheduler : Scheduler
        Timer used for settle and capture-timeout callbacks.
    status : StatusEntries
        Shared status entries; written only while this preview is active.
    """

    def __init__(
        self,
        resource_id: str,
        surface: SurfaceChannel,
        format_store: FormatSettingsStore,
        local_store: ImageLocalSettingsStore,
        scheduler: Scheduler,
        status: StatusEntries,
        decoder: Optional[Decoder] = None,
        config: ViewerConfig = DEFAULT_CONFIG,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.preview_id = f"preview-{next(_preview_ids)}"
        self.resource_id = str(resource_id)
        self._surface = surface
        self._format_store = format_store
        self._local_store = local_store
        self._status = status
        self._collection: List[str] = [self.resource_id]
        self._index = 0
        self.active = False
        self.stats: Optional[Tuple[float, float]] = None
        self.zoom: Optional[float] = None
        self.size: Optional[Tuple[int, int]] = None
        self.coordinator = SwitchCoordinator(
            surface,
            format_store,
            local_store,
            ViewCache(config.cache_capacity, clock),
            scheduler,
            decoder=decoder,
            config=config,
        )
        self.coordinator.switched.register(self._on_switched)
        self.router = MessageRouter()
        self.router.register(ViewerStateReport, self._on_viewer_state_report)
        self.router.register(ComparisonStateReport, self.coordinator.on_comparison_state_report)
        self.router.register(FormatDetected, self._on_format_detected)
        self.router.register(StatsComputed, self._on_stats_computed)
        self.router.register(SurfaceReady, self.coordinator.on_surface_ready)
        self.router.register(ToggleImage, self._on_toggle_image)
        self.router.register(RestorePeerImage, self._on_restore_peer_image)
        self._format_store.changed.register(self._on_store_changed)
        self._local_store.changed.register(self._on_store_changed)

    @property
    def image_id(self) -> str:
        return self.coordinator.current_id or self._collection[self._index]

    @property
    def image_format(self) -> Optional[ImageFormat]:
        return self.coordinator.current_format

    @property
    def collection(self) -> Tuple[str, ...]:
        return tuple(self._collection)

    @property
    def current_index(self) -> int:
        return self._index

    def open(self) -> Directive:
        return self.coordinator.open_image(self._collection[self._index])

    def close(self) -> None:
        self.coordinator.close()
        self._format_store.changed.unregister(self._on_store_changed)
        self._local_store.changed.unregister(self._on_store_changed)
        self._status.hide_all(self.preview_id)

    def handle_payload(self, payload: dict) -> None:
        """Entry point for messages posted by the surface."""
        self.router.handle(payload)

    def add_to_collection(self, image_id: str) -> bool:
        """Append ``image_id`` to the collection; duplicates are ignored."""
        image_id = str(image_id)
        if image_id in self._collection:
            return False
        self._collection.append(image_id)
        LOGGER.info("Added %s to collection (%d images)", image_id, len(self._collection))
        self._post_overlay()
        return True

    def toggle_next(self) -> Optional[int]:
        return self._toggle(1)

    def toggle_previous(self) -> Optional[int]:
        return self._toggle(-1)

    def _toggle(self, step: int) -> Optional[int]:
        if len(self._collection) < 2:
            return None
        self._index = (self._index + step) % len(self._collection)
        return self.coordinator.switch_to(self._collection[self._index])

    def start_comparison(self, peer_id: str) -> None:
        """Show ``peer_id`` side by side with the current image."""
        peer_id = str(peer_id)
        if peer_id not in self.coordinator.comparison_peers:
            self.coordinator.comparison_peers = self.coordinator.comparison_peers + (peer_id,)
        self._surface.post(StartComparison(peer_id))

    def update_status(self) -> None:
        """Refresh the shared status entries if this preview is active."""
        if not self.active:
            return
        owner = self.preview_id
        status = self._status
        if self.size is not None:
            status["size"].show(owner, f"{self.size[0]}x{self.size[1]}")
        else:
            status["size"].hide(owner)
        if self.zoom is not None:
            status["zoom"].show(owner, f"{self.zoom * 100:.0f}%")
        else:
            status["zoom"].hide(owner)
        fmt = self.coordinator.current_format
        settings = self._format_store.settings_for(fmt) if fmt is not None else self._format_store.get_active()
        norm = settings.normalization
        mode = norm.mode
        if mode is NormalizationMode.AUTO:
            text = "Auto"
            if self.stats is not None:
                text += f" [{self.stats[0]:g}, {self.stats[1]:g}]"
        elif mode is NormalizationMode.GAMMA:
            text = "Gamma [0, 1]"
        else:
            text = f"Manual [{norm.min:g}, {norm.max:g}]"
        status["normalization"].show(owner, text)
        if mode is NormalizationMode.GAMMA:
            status["gamma"].show(owner, f"Gamma {settings.gamma.gamma_in:g}/{settings.gamma.gamma_out:g}")
            status["brightness"].show(owner, f"Brightness {settings.brightness.offset:+g}")
        else:
            status["gamma"].hide(owner)
            status["brightness"].hide(owner)
        masks = self._local_store.mask_summary(self.image_id).text
        if masks:
            status["masks"].show(owner, masks)
        else:
            status["masks"].hide(owner)

    def _post_overlay(self) -> None:
        total = len(self._collection)
        self._surface.post(UpdateCollectionOverlay(total, self._index, total > 1))

    def _on_switched(self, target_id: str, directive: Directive) -> None:
        if target_id in self._collection:
            self._index = self._collection.index(target_id)
        if directive is not Directive.REUSE:
            self.stats = None
        self._post_overlay()
        self.update_status()

    def _on_viewer_state_report(self, report: ViewerStateReport) -> None:
        if self.coordinator.on_viewer_state_report(report):
            self.zoom = float(report.scale)
            self.update_status()

    def _on_format_detected(self, message: FormatDetected) -> None:
        descriptor = message.descriptor
        if descriptor.width and descriptor.height:
            self.size = (int(descriptor.width), int(descriptor.height))
        self.coordinator.on_format_detected(message)
        self.update_status()

    def _on_stats_computed(self, message: StatsComputed) -> None:
        self.stats = (float(message.min), float(message.max))
        self.update_status()

    def _on_toggle_image(self, message: ToggleImage) -> None:
        if message.reverse:
            self.toggle_previous()
        else:
            self.toggle_next()

    def _on_restore_peer_image(self, message: RestorePeerImage) -> None:
        self.add_to_collection(message.peer_id)

    def _on_store_changed(self, *_args) -> None:
        self.update_status()


class PreviewManager:
    """Own the shared stores and route commands to the active preview.

    Notes
    -----
    Stores are created once here and passed to every preview; nothing
    reaches them through module-level state.
    """

    def __init__(
        self,
        config: ViewerConfig = DEFAULT_CONFIG,
        decoder: Optional[Decoder] = None,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        set_level(config.log_level)
        self.config = config
        self._decoder = decoder
        self._clock = clock
        self.format_store = FormatSettingsStore(config)
        self.local_store = ImageLocalSettingsStore()
        self.status = StatusEntries()
        self._previews: List[ImagePreview] = []
        self._active: Optional[ImagePreview] = None

    @property
    def active_preview(self) -> Optional[ImagePreview]:
        return self._active

    def previews(self) -> List[ImagePreview]:
        return list(self._previews)

    def create_preview(self, resource_id: str, surface: SurfaceChannel, scheduler: Scheduler) -> ImagePreview:
        """Create a preview, open its resource and make it active."""
        preview = ImagePreview(
            resource_id,
            surface,
            self.format_store,
            self.local_store,
            scheduler,
            self.status,
            decoder=self._decoder,
            config=self.config,
            clock=self._clock,
        )
        self._previews.append(preview)
        preview.open()
        self.set_active_preview(preview)
        return preview

    def remove_preview(self, preview: ImagePreview) -> None:
        if preview not in self._previews:
            return
        self._previews.remove(preview)
        preview.close()
        if preview is self._active:
            self.set_active_preview(None)

    def set_active_preview(self, preview: Optional[ImagePreview]) -> None:
        """Mark ``preview`` active (None when no preview has focus)."""
        if preview is self._active:
            return
        previous = self._active
        if previous is not None:
            previous.active = False
            self.status.hide_all(previous.preview_id)
        self._active = preview
        if preview is None:
            self.status.force_hide_all()
            return
        preview.active = True
        self.ensure_active_preview_format()
        preview.update_status()

    def ensure_active_preview_format(self) -> Optional[ImageFormat]:
        """Make the active preview's format the active settings bank."""
        preview = self._active
        if preview is None or preview.image_format is None:
            return self.format_store.active_format
        fmt = preview.image_format
        if self.format_store.active_format != fmt:
            self.format_store.set_active_format(fmt)
        return fmt

    def _apply(self, description: str, mutate: Callable[[], bool]) -> bool:
        fmt = self.ensure_active_preview_format()
        LOGGER.info("[%s] %s", fmt.value if fmt is not None else "no format", description)
        return mutate()

    def set_normalization(self, min_val: float, max_val: float) -> bool:
        return self._apply(
            f"Normalization range: [{min_val}, {max_val}]",
            lambda: self.format_store.update_normalization(min_val, max_val),
        )

    def set_auto_normalize(self, enabled: bool) -> bool:
        return self._apply(f"Auto-normalize: {bool(enabled)}", lambda: self.format_store.set_auto_normalize(enabled))

    def set_gamma_mode(self, enabled: bool) -> bool:
        return self._apply(f"Gamma mode: {bool(enabled)}", lambda: self.format_store.set_gamma_mode(enabled))

    def set_gamma(self, gamma_in: float, gamma_out: float) -> bool:
        return self._apply(
            f"Gamma: in={gamma_in}, out={gamma_out}",
            lambda: self.format_store.update_gamma(gamma_in, gamma_out),
        )

    def set_brightness(self, offset: float) -> bool:
        return self._apply(f"Brightness offset: {offset}", lambda: self.format_store.update_brightness(offset))

    def set_packed_grayscale(self, enabled: bool, scale_factor: Optional[float] = None) -> bool:
        return self._apply(
            f"Packed RGB as grayscale: {bool(enabled)} (scale={scale_factor})",
            lambda: self.format_store.set_packed_grayscale(enabled, scale_factor),
        )

    def set_normalized_float_mode(self, enabled: bool) -> bool:
        return self._apply(
            f"Normalized float mode: {bool(enabled)}",
            lambda: self.format_store.set_normalized_float_mode(enabled),
        )

    def reset_settings(self, all_formats: bool = False) -> None:
        """Reset the active format's bank, or every bank."""
        fmt = self.ensure_active_preview_format()
        if all_formats or fmt is None:
            LOGGER.info("[all formats] Reset to defaults")
            self.format_store.reset_to_defaults()
            return
        LOGGER.info("[%s] Reset to defaults", fmt.value)
        self.format_store.reset_to_defaults(fmt)

    def add_mask_filter(
        self, mask_ref: str, threshold: float = 0.5, direction: MaskDirection = MaskDirection.HIGHER
    ) -> Optional[int]:
        """Add a mask filter to the active preview's image."""
        if self._active is None:
            LOGGER.warning("No active preview to add a mask to")
            return None
        return self.local_store.add_mask_filter(
            self._active.image_id, MaskFilter(str(mask_ref), float(threshold), MaskDirection(direction))
        )

    def toggle_nan_color(self) -> Optional[str]:
        if self._active is None:
            return None
        return self.local_store.toggle_nan_color(self._active.image_id)

    def toggle_color_picker_mode(self) -> Optional[bool]:
        if self._active is None:
            return None
        return self.local_store.toggle_color_picker_mode(self._active.image_id)
