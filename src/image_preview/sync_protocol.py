"""Switch orchestration between the host stores and the rendering surface.

A switch runs ``IDLE -> CAPTURING -> COMMITTING -> SWITCHING -> RESTORING``:

1. Capture: request the viewer state (and comparison state when peers are
   active) under a fresh sequence number. The host does not wait.
2. Commit: the matching report writes a ``CachedView`` for the outgoing
   image using its format's bank and its local settings snapshot.
3. Switch: decide Reuse/Rerender/Reload for the target and post exactly
   one ``SwitchImage`` message.
4. Restore: re-send the captured viewer state once the surface reports
   ``SurfaceReady`` for the target, or when the settle timer fires.

Reports that do not carry the latest sequence number are discarded.
Settings changes invalidate cache entries of the changed format and are
pushed only to images of that format.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Dict, Optional, Tuple

from image_preview.config import DEFAULT_CONFIG, ViewerConfig
from image_preview.decoder import DecodeError, Decoder
from image_preview.format_settings import FormatSettingsStore, SettingsEvent, SettingsEventKind, settings_to_dict
from image_preview.formats import ImageFormat, detect_format
from image_preview.local_settings import ImageLocalSettingsStore
from image_preview.logger import get_logger
from image_preview.messages import (
    ComparisonStateReport,
    Directive,
    FormatDetected,
    PushSettings,
    RequestComparisonState,
    RequestViewerState,
    RestoreComparisonState,
    RestoreViewerState,
    SurfaceReady,
    SwitchImage,
    ViewerStateReport,
)
from image_preview.observers import Observers
from image_preview.sequence_guard import SequenceGuard
from image_preview.surface import Scheduler, SurfaceChannel
from image_preview.view_cache import CachedView, ComparisonState, ViewCache, ViewerState

__all__ = ["SwitchPhase", "SwitchCoordinator"]

LOGGER = get_logger(__name__)

VIEWER_STATE = "viewer_state"
COMPARISON_STATE = "comparison_state"
SWITCH = "switch"


class SwitchPhase(Enum):
    IDLE = "idle"
    CAPTURING = "capturing"
    COMMITTING = "committing"
    SWITCHING = "switching"
    RESTORING = "restoring"


@dataclass
class _Capture:
    """Outstanding capture for one switch request."""

    target_id: str
    viewer_seq: int
    comparison_seq: Optional[int] = None
    viewer_state: Optional[ViewerState] = None
    comparison_state: Optional[ComparisonState] = None
    viewer_done: bool = False
    comparison_done: bool = True


@dataclass
class _Restore:
    target_id: str
    token: int
    viewer_state: Optional[ViewerState]
    comparison_state: Optional[ComparisonState]


class SwitchCoordinator:
    """Drive image switches for one rendering surface.

    Parameters
    ----------
    surface : SurfaceChannel
        Outgoing, non-blocking message channel.
    format_store : FormatSettingsStore
        Shared per-format settings banks.
    local_store : ImageLocalSettingsStore
        Shared per-image overlay settings.
    view_cache : ViewCache
        Snapshots of recently displayed images.
    scheduler : Scheduler
        Runs the settle and capture-timeout callbacks later.
    decoder : Decoder, optional
        Used to probe a target's format before deciding a directive.
    """

    def __init__(
        self,
        surface: SurfaceChannel,
        format_store: FormatSettingsStore,
        local_store: ImageLocalSettingsStore,
        view_cache: ViewCache,
        scheduler: Scheduler,
        decoder: Optional[Decoder] = None,
        config: ViewerConfig = DEFAULT_CONFIG,
    ) -> None:
        self._surface = surface
        self._format_store = format_store
        self._local_store = local_store
        self._cache = view_cache
        self._scheduler = scheduler
        self._decoder = decoder
        self._config = config
        self.guard = SequenceGuard()
        self.phase = SwitchPhase.IDLE
        self.current_id: Optional[str] = None
        self.current_format: Optional[ImageFormat] = None
        self.comparison_peers: Tuple[str, ...] = ()
        self._known_formats: Dict[str, ImageFormat] = {}
        self._capture: Optional[_Capture] = None
        self._restore: Optional[_Restore] = None
        self.switched = Observers()
        self._format_store.changed.register(self._on_format_settings_changed)
        self._local_store.changed.register(self._on_local_settings_changed)

    @property
    def cache(self) -> ViewCache:
        return self._cache

    @property
    def pending_target(self) -> Optional[str]:
        return self._capture.target_id if self._capture is not None else None

    def close(self) -> None:
        """Detach from the shared stores."""
        self._format_store.changed.unregister(self._on_format_settings_changed)
        self._local_store.changed.unregister(self._on_local_settings_changed)
        self._capture = None
        self._restore = None
        self.phase = SwitchPhase.IDLE

    def known_format(self, image_id: str) -> Optional[ImageFormat]:
        return self._known_formats.get(str(image_id))

    # ------------------------------------------------------------------
    # Switch entry points
    # ------------------------------------------------------------------
    def open_image(self, image_id: str) -> Directive:
        """Show ``image_id`` on a fresh surface; always a Reload."""
        self._capture = None
        self.guard.clear(VIEWER_STATE)
        self.guard.clear(COMPARISON_STATE)
        return self._switch(str(image_id), None, None, force_reload=True)

    def switch_to(self, target_id: str) -> Optional[int]:
        """Start a switch to ``target_id``; return the capture sequence number.

        Returns None when there is nothing to switch (the target is already
        displayed and no other switch is pending).
        """
        target_id = str(target_id)
        if self.current_id is None:
            self.open_image(target_id)
            return None
        if target_id == self.current_id and self._capture is None:
            LOGGER.debug("Switch to %s ignored: already displayed", target_id)
            return None
        if self._capture is not None:
            LOGGER.info(
                "Switch to %s supersedes pending switch to %s",
                target_id,
                self._capture.target_id,
                extra={"seq": self._capture.viewer_seq},
            )
        viewer_seq = self.guard.issue(VIEWER_STATE)
        capture = _Capture(target_id=target_id, viewer_seq=viewer_seq)
        self._surface.post(RequestViewerState(viewer_seq))
        if self.comparison_peers:
            capture.comparison_seq = self.guard.issue(COMPARISON_STATE)
            capture.comparison_done = False
            self._surface.post(RequestComparisonState(capture.comparison_seq))
        else:
            self.guard.clear(COMPARISON_STATE)
        self._capture = capture
        self.phase = SwitchPhase.CAPTURING
        LOGGER.debug("Capturing viewer state before switching to %s", target_id, extra={"seq": viewer_seq})
        self._scheduler(int(self._config.capture_timeout_ms), lambda: self._on_capture_timeout(viewer_seq))
        return viewer_seq

    # ------------------------------------------------------------------
    # Surface reports
    # ------------------------------------------------------------------
    def on_viewer_state_report(self, report: ViewerStateReport) -> bool:
        """Accept the report if it answers the latest request; return True when accepted."""
        capture = self._capture
        if capture is None or capture.viewer_seq != report.seq or not self.guard.is_current(VIEWER_STATE, report.seq):
            LOGGER.warning("Discarding stale viewer state report", extra={"seq": report.seq})
            return False
        self.guard.clear(VIEWER_STATE)
        capture.viewer_state = ViewerState(float(report.scale), float(report.pan_x), float(report.pan_y))
        capture.viewer_done = True
        self._complete_capture()
        return True

    def on_comparison_state_report(self, report: ComparisonStateReport) -> bool:
        capture = self._capture
        if (
            capture is None
            or capture.comparison_seq != report.seq
            or not self.guard.is_current(COMPARISON_STATE, report.seq)
        ):
            LOGGER.warning("Discarding stale comparison state report", extra={"seq": report.seq})
            return False
        self.guard.clear(COMPARISON_STATE)
        self.comparison_peers = tuple(report.peer_ids)
        if report.peer_ids:
            capture.comparison_state = ComparisonState(tuple(report.peer_ids), bool(report.is_showing_peer))
        capture.comparison_done = True
        self._complete_capture()
        return True

    def on_format_detected(self, message: FormatDetected) -> ImageFormat:
        """Record the displayed image's format and activate its settings bank."""
        descriptor = message.descriptor
        fmt = detect_format(descriptor)
        if self.current_id is None:
            LOGGER.debug("Format %s reported with no image displayed", fmt.value)
            return fmt
        self._known_formats[self.current_id] = fmt
        previous = self.current_format
        self.current_format = fmt
        if self._format_store.active_format != fmt:
            self._format_store.set_active_format(fmt, descriptor.bits_per_sample)
        if previous != fmt:
            LOGGER.info("Detected %s for %s", fmt.value, self.current_id)
            self.push_settings()
        return fmt

    def on_surface_ready(self, message: SurfaceReady) -> None:
        restore = self._restore
        if restore is None or restore.target_id != message.target_id:
            LOGGER.debug("Ignoring readiness for %s", message.target_id)
            return
        self._run_restore(restore.token)

    # ------------------------------------------------------------------
    # Settings propagation
    # ------------------------------------------------------------------
    def push_settings(self) -> bool:
        """Send the displayed image's settings to the surface."""
        if self.current_id is None:
            return False
        payload = self.settings_payload(self.current_id, self.current_format)
        self._surface.post(PushSettings(self.current_id, payload))
        return True

    def settings_payload(self, image_id: str, fmt: Optional[ImageFormat]) -> dict:
        """Return the settings snapshot sent alongside Rerender/Reload and pushes."""
        if fmt is None:
            fmt = self._format_store.active_format
        settings = self._format_store.settings_for(fmt) if fmt is not None else self._format_store.get_active()
        return {
            "format": fmt.value if fmt is not None else None,
            "formatSettings": settings_to_dict(settings),
            "localSettings": self._local_store.snapshot(image_id).to_dict(),
        }

    def _on_format_settings_changed(self, event: SettingsEvent) -> None:
        if event.kind is SettingsEventKind.ACTIVATED:
            return
        if event.kind is SettingsEventKind.RESET_ALL:
            self._cache.clear()
            self.push_settings()
            return
        if event.format is None:
            return
        self._cache.invalidate_format(event.format)
        if self.current_format == event.format:
            self.push_settings()

    def _on_local_settings_changed(self, image_id: str) -> None:
        if image_id == self.current_id:
            self.push_settings()

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------
    def _on_capture_timeout(self, viewer_seq: int) -> None:
        capture = self._capture
        if capture is None or capture.viewer_seq != viewer_seq:
            return
        LOGGER.warning(
            "No viewer state from surface within %d ms; switching to %s without it",
            self._config.capture_timeout_ms,
            capture.target_id,
            extra={"seq": viewer_seq},
        )
        self.guard.clear(VIEWER_STATE)
        self.guard.clear(COMPARISON_STATE)
        capture.viewer_done = True
        capture.comparison_done = True
        self._complete_capture()

    def _complete_capture(self) -> None:
        capture = self._capture
        if capture is None or not (capture.viewer_done and capture.comparison_done):
            return
        self._capture = None
        # the commit may evict; the switch target must not be the victim
        self._cache.touch(capture.target_id)
        self._commit(capture)
        self._switch(capture.target_id, capture.viewer_state, capture.comparison_state)

    def _commit(self, capture: _Capture) -> Optional[CachedView]:
        self.phase = SwitchPhase.COMMITTING
        outgoing_id, outgoing_format = self.current_id, self.current_format
        if outgoing_id is None or outgoing_format is None:
            LOGGER.debug("Nothing to commit for %s: format not detected", outgoing_id)
            return None
        entry = self._cache.set(
            outgoing_id,
            outgoing_format,
            self._format_store.settings_for(outgoing_format),
            self._local_store.snapshot(outgoing_id),
            capture.viewer_state,
            capture.comparison_state,
        )
        LOGGER.debug("Committed view of %s (%s)", outgoing_id, outgoing_format.value, extra={"seq": capture.viewer_seq})
        return entry

    def _expected_format(
        self, target_id: str, entry: Optional[CachedView]
    ) -> Tuple[Optional[ImageFormat], Optional[int]]:
        if self._decoder is not None:
            descriptor = self._decoder.probe(target_id)
            return detect_format(descriptor), descriptor.bits_per_sample
        known = self._known_formats.get(target_id)
        if known is not None:
            return known, None
        return (entry.format if entry is not None else None), None

    def _decide(self, target_id: str, force_reload: bool):
        entry = self._cache.get(target_id)
        try:
            fmt, bits = self._expected_format(target_id, entry)
        except DecodeError as exc:
            LOGGER.warning("Cannot probe %s: %s", target_id, exc)
            return Directive.RELOAD, None, None, str(exc)
        if force_reload or entry is None:
            return Directive.RELOAD, fmt, bits, None
        if fmt != entry.format:
            LOGGER.debug("Format of %s changed from %s to %s", target_id, entry.format.value, fmt)
            return Directive.RELOAD, fmt, bits, None
        if self._cache.is_valid(target_id, self._format_store.settings_for(fmt), fmt):
            return Directive.REUSE, fmt, bits, None
        return Directive.RERENDER, fmt, bits, None

    def _switch(
        self,
        target_id: str,
        viewer_state: Optional[ViewerState],
        comparison_state: Optional[ComparisonState],
        force_reload: bool = False,
    ) -> Directive:
        self.phase = SwitchPhase.SWITCHING
        directive, fmt, bits, error = self._decide(target_id, force_reload)
        if fmt is not None:
            self._known_formats[target_id] = fmt
            if self._format_store.active_format != fmt:
                self._format_store.set_active_format(fmt, bits)
        if viewer_state is None and not force_reload:
            cached = self._cache.peek(target_id)
            if cached is not None:
                viewer_state = cached.viewer_state
        self.current_id = target_id
        self.current_format = fmt
        token = self.guard.issue(SWITCH)
        settings = self.settings_payload(target_id, fmt) if directive is not Directive.REUSE else None
        self._surface.post(SwitchImage(target_id, directive, settings=settings, error=error, seq=token))
        LOGGER.info("Switch to %s: %s", target_id, directive.value, extra={"seq": token})
        self.switched.notify(target_id, directive)
        if viewer_state is None and comparison_state is None:
            self._restore = None
            self.phase = SwitchPhase.IDLE
            return directive
        self._restore = _Restore(target_id, token, viewer_state, comparison_state)
        self.phase = SwitchPhase.RESTORING
        self._scheduler(int(self._config.settle_delay_ms), lambda: self._run_restore(token))
        return directive

    def _run_restore(self, token: int) -> None:
        restore = self._restore
        if restore is None or restore.token != token:
            return
        self._restore = None
        if restore.viewer_state is not None:
            state = restore.viewer_state
            self._surface.post(RestoreViewerState(state.scale, state.pan_x, state.pan_y))
        if restore.comparison_state is not None:
            comparison = restore.comparison_state
            self._surface.post(RestoreComparisonState(comparison.peer_ids, comparison.is_showing_peer))
        LOGGER.debug("Restored view state on %s", restore.target_id, extra={"seq": token})
        if self._capture is None:
            self.phase = SwitchPhase.IDLE
