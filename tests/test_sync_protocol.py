"""Tests for the switch protocol between host stores and the surface."""

import pytest

from image_preview.decoder import DecodeError, Decoder
from image_preview.formats import FormatDescriptor, ImageFormat
from image_preview.local_settings import MaskFilter
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
from image_preview.sync_protocol import SwitchCoordinator, SwitchPhase
from image_preview.view_cache import ComparisonState, ViewerState


class FakeDecoder(Decoder):
    """Decoder answering probes from a dict of descriptors."""

    def __init__(self, formats):
        self.formats = dict(formats)

    def probe(self, image_id):
        if image_id not in self.formats:
            raise DecodeError(f"cannot read {image_id}")
        return FormatDescriptor(format_type=self.formats[image_id])

    def decode(self, image_id):
        raise DecodeError("not used")


def show(coordinator, image_id, fmt="png", scale=1.0, pan=(0.0, 0.0)):
    """Display ``image_id``: answer the capture request and report the format."""
    if coordinator.current_id is None:
        coordinator.open_image(image_id)
    else:
        seq = coordinator.switch_to(image_id)
        coordinator.on_viewer_state_report(ViewerStateReport(seq, scale, pan[0], pan[1]))
    coordinator.on_format_detected(FormatDetected(FormatDescriptor(format_type=fmt)))


def complete_switch(coordinator, image_id, scale=1.0):
    seq = coordinator.switch_to(image_id)
    coordinator.on_viewer_state_report(ViewerStateReport(seq, scale, 0.0, 0.0))
    return seq


class TestOpenAndCapture:
    def test_open_image_sends_reload(self, coordinator, surface):
        assert coordinator.open_image("A") is Directive.RELOAD
        switch = surface.last(SwitchImage)
        assert switch.target_id == "A"
        assert switch.directive is Directive.RELOAD
        assert switch.settings is not None
        assert coordinator.phase is SwitchPhase.IDLE

    def test_format_detection_activates_bank_and_pushes(self, coordinator, surface, format_store):
        coordinator.open_image("A")
        coordinator.on_format_detected(FormatDetected(FormatDescriptor(format_type="tiff-int", bits_per_sample=12)))
        assert format_store.active_format is ImageFormat.TIFF_INT
        assert format_store.get_active().normalization.max == 4095.0
        push = surface.last(PushSettings)
        assert push.image_id == "A"
        assert push.settings["format"] == "tiff-int"

    def test_switch_requests_viewer_state_without_blocking(self, coordinator, surface):
        show(coordinator, "A")
        surface.clear()
        seq = coordinator.switch_to("B")
        assert [type(msg) for msg in surface.sent] == [RequestViewerState]
        assert surface.sent[0].seq == seq
        assert coordinator.phase is SwitchPhase.CAPTURING
        assert coordinator.pending_target == "B"
        assert coordinator.current_id == "A"

    def test_switch_to_displayed_image_is_ignored(self, coordinator, surface):
        show(coordinator, "A")
        surface.clear()
        assert coordinator.switch_to("A") is None
        assert surface.sent == []


class TestCommitAndDirectives:
    def test_report_commits_outgoing_image(self, coordinator, view_cache, format_store, local_store):
        show(coordinator, "A", "png")
        local_store.add_mask_filter("A", MaskFilter("mask.png"))
        complete_switch(coordinator, "B", scale=2.5)

        entry = view_cache.peek("A")
        assert entry.format is ImageFormat.PNG
        assert entry.viewer_state == ViewerState(2.5, 0.0, 0.0)
        assert entry.rendered_with_settings == format_store.settings_for("png")
        assert len(entry.mask_snapshot.mask_filters) == 1

    def test_unknown_target_reloads(self, coordinator, surface):
        show(coordinator, "A")
        complete_switch(coordinator, "B")
        assert surface.last(SwitchImage).directive is Directive.RELOAD

    def test_switch_back_reuses_valid_entry(self, coordinator, surface, format_store):
        show(coordinator, "A", "png")
        show(coordinator, "B", "tiff-float")
        assert format_store.active_format is ImageFormat.TIFF_FLOAT
        complete_switch(coordinator, "A")
        switch = surface.last(SwitchImage)
        assert switch.directive is Directive.REUSE
        assert switch.settings is None
        assert format_store.active_format is ImageFormat.PNG

    def test_changed_settings_rerender(self, coordinator, surface, view_cache, format_store):
        show(coordinator, "A", "png")
        show(coordinator, "B", "png")
        stale = format_store.settings_for("png")
        stale.brightness.offset = 0.5
        view_cache.set("A", "png", stale)

        complete_switch(coordinator, "A")

        switch = surface.last(SwitchImage)
        assert switch.directive is Directive.RERENDER
        assert switch.settings["formatSettings"]["brightness"]["offset"] == 0.0

    def test_format_mismatch_reloads(self, surface, format_store, local_store, view_cache, scheduler):
        decoder = FakeDecoder({"A": "png", "B": "png"})
        coordinator = SwitchCoordinator(surface, format_store, local_store, view_cache, scheduler, decoder)
        coordinator.open_image("A")
        complete_switch(coordinator, "B")
        decoder.formats["A"] = "tiff-float"

        complete_switch(coordinator, "A")

        assert surface.last(SwitchImage).directive is Directive.RELOAD
        assert format_store.active_format is ImageFormat.TIFF_FLOAT
        assert coordinator.current_format is ImageFormat.TIFF_FLOAT

    def test_decoder_probe_selects_bank_before_reload(self, surface, format_store, local_store, view_cache, scheduler):
        decoder = FakeDecoder({"A": "npy-float"})
        coordinator = SwitchCoordinator(surface, format_store, local_store, view_cache, scheduler, decoder)
        coordinator.open_image("A")
        assert format_store.active_format is ImageFormat.NPY_FLOAT
        assert surface.last(SwitchImage).settings["format"] == "npy-float"

    def test_decode_error_becomes_reload_with_error(self, surface, format_store, local_store, view_cache, scheduler):
        decoder = FakeDecoder({"A": "png"})
        coordinator = SwitchCoordinator(surface, format_store, local_store, view_cache, scheduler, decoder)
        coordinator.open_image("A")
        complete_switch(coordinator, "broken.tif")
        switch = surface.last(SwitchImage)
        assert switch.target_id == "broken.tif"
        assert switch.directive is Directive.RELOAD
        assert "cannot read broken.tif" in switch.error
        assert coordinator.current_id == "broken.tif"
        assert coordinator.current_format is None


class TestStaleResponses:
    def test_back_to_back_switches_commit_only_latest(self, coordinator, surface, view_cache):
        show(coordinator, "A")
        first = coordinator.switch_to("B")
        second = coordinator.switch_to("C")
        assert second != first

        assert coordinator.on_viewer_state_report(ViewerStateReport(first, 9.0, 9.0, 9.0)) is False
        assert "A" not in view_cache
        assert surface.of_type(SwitchImage)[-1].target_id == "A"

        assert coordinator.on_viewer_state_report(ViewerStateReport(second, 2.0, 3.0, 4.0)) is True
        assert view_cache.peek("A").viewer_state == ViewerState(2.0, 3.0, 4.0)
        assert surface.last(SwitchImage).target_id == "C"
        assert all(msg.target_id != "B" for msg in surface.of_type(SwitchImage))

    def test_late_report_after_commit_is_discarded(self, coordinator, view_cache):
        show(coordinator, "A")
        seq = complete_switch(coordinator, "B", scale=2.0)
        assert coordinator.on_viewer_state_report(ViewerStateReport(seq, 7.0, 0.0, 0.0)) is False
        assert view_cache.peek("A").viewer_state.scale == 2.0

    def test_stale_report_is_logged(self, coordinator, caplog):
        import logging

        show(coordinator, "A")
        first = coordinator.switch_to("B")
        coordinator.switch_to("C")
        base = logging.getLogger("image_preview")
        base.addHandler(caplog.handler)
        try:
            coordinator.on_viewer_state_report(ViewerStateReport(first, 1.0, 0.0, 0.0))
        finally:
            base.removeHandler(caplog.handler)
        assert any("stale" in record.getMessage() for record in caplog.records)
        assert any(getattr(record, "seq", None) == first for record in caplog.records)

    def test_capture_timeout_switches_without_viewer_state(self, coordinator, surface, scheduler, view_cache):
        show(coordinator, "A")
        seq = coordinator.switch_to("B")
        assert scheduler.fire(1000) == 1
        assert surface.last(SwitchImage).target_id == "B"
        assert view_cache.peek("A").viewer_state is None
        assert coordinator.on_viewer_state_report(ViewerStateReport(seq, 1.0, 0.0, 0.0)) is False

    def test_timeout_of_superseded_request_is_noop(self, coordinator, surface, scheduler):
        show(coordinator, "A")
        coordinator.switch_to("B")
        second = coordinator.switch_to("C")
        switches = len(surface.of_type(SwitchImage))
        coordinator.on_viewer_state_report(ViewerStateReport(second, 1.0, 0.0, 0.0))
        scheduler.fire(1000)
        assert len(surface.of_type(SwitchImage)) == switches + 1


class TestRestore:
    def test_settle_timer_restores_captured_state(self, coordinator, surface, scheduler):
        show(coordinator, "A")
        complete_switch(coordinator, "B", scale=3.0)
        assert coordinator.phase is SwitchPhase.RESTORING
        assert surface.last(RestoreViewerState) is None

        scheduler.fire(150)

        restore = surface.last(RestoreViewerState)
        assert (restore.scale, restore.pan_x, restore.pan_y) == (3.0, 0.0, 0.0)
        assert coordinator.phase is SwitchPhase.IDLE

    def test_surface_ready_restores_immediately(self, coordinator, surface, scheduler):
        show(coordinator, "A")
        complete_switch(coordinator, "B", scale=3.0)
        coordinator.on_surface_ready(SurfaceReady("B"))
        assert len(surface.of_type(RestoreViewerState)) == 1

        scheduler.fire(150)
        assert len(surface.of_type(RestoreViewerState)) == 1

    def test_surface_ready_for_other_target_is_ignored(self, coordinator, surface):
        show(coordinator, "A")
        complete_switch(coordinator, "B")
        coordinator.on_surface_ready(SurfaceReady("A"))
        assert surface.of_type(RestoreViewerState) == []

    def test_comparison_state_is_captured_and_restored(self, coordinator, surface, scheduler, view_cache):
        show(coordinator, "A")
        coordinator.comparison_peers = ("P",)
        seq = coordinator.switch_to("B")
        comparison_seq = surface.last(RequestComparisonState).seq

        coordinator.on_viewer_state_report(ViewerStateReport(seq, 1.0, 0.0, 0.0))
        assert surface.last(SwitchImage).target_id == "A"

        coordinator.on_comparison_state_report(ComparisonStateReport(comparison_seq, ("P",), True))
        assert surface.last(SwitchImage).target_id == "B"
        assert view_cache.peek("A").comparison_state == ComparisonState(("P",), True)

        scheduler.fire(150)
        restore = surface.last(RestoreComparisonState)
        assert restore.peer_ids == ("P",)
        assert restore.is_showing_peer is True


class TestSettingsPropagation:
    def test_settings_change_invalidates_and_pushes_matching_format(self, coordinator, surface, view_cache, format_store):
        show(coordinator, "A", "png")
        view_cache.set("x", "png", format_store.settings_for("png"))
        view_cache.set("y", "tiff-float", format_store.settings_for("tiff-float"))
        surface.clear()

        format_store.update_gamma(1.8, 2.2)

        assert "x" not in view_cache
        assert "y" in view_cache
        push = surface.last(PushSettings)
        assert push.image_id == "A"
        assert push.settings["formatSettings"]["gamma"] == {"in": 1.8, "out": 2.2}

    def test_other_format_change_is_not_pushed(self, coordinator, surface, format_store):
        show(coordinator, "A", "tiff-float")
        format_store.set_active_format("png")
        surface.clear()
        format_store.update_gamma(1.8, 2.2)
        assert surface.of_type(PushSettings) == []

    def test_activation_alone_does_not_invalidate(self, coordinator, view_cache, format_store):
        show(coordinator, "A", "png")
        show(coordinator, "B", "tiff-float")
        assert "A" in view_cache
        format_store.set_active_format("png")
        format_store.set_active_format("tiff-float")
        assert "A" in view_cache

    def test_invalidated_entry_reloads(self, coordinator, surface, format_store):
        show(coordinator, "A", "png")
        show(coordinator, "B", "png")
        format_store.update_brightness(0.2)
        complete_switch(coordinator, "A")
        assert surface.last(SwitchImage).directive is Directive.RELOAD

    def test_mask_change_pushes_to_current_image_only(self, coordinator, surface, view_cache, format_store, local_store):
        show(coordinator, "A", "png")
        show(coordinator, "B", "png")
        surface.clear()

        local_store.add_mask_filter("A", MaskFilter("m.png"))
        assert surface.of_type(PushSettings) == []
        assert view_cache.is_valid("A", format_store.settings_for("png"), "png")

        local_store.add_mask_filter("B", MaskFilter("m.png"))
        push = surface.last(PushSettings)
        assert push.image_id == "B"
        assert len(push.settings["localSettings"]["maskFilters"]) == 1
        assert "A" in view_cache

    def test_reset_all_clears_cache(self, coordinator, view_cache, format_store):
        show(coordinator, "A", "png")
        show(coordinator, "B", "tiff-float")
        format_store.reset_to_defaults()
        assert len(view_cache) == 0

    def test_close_detaches_from_stores(self, coordinator, surface, format_store):
        show(coordinator, "A", "png")
        coordinator.close()
        surface.clear()
        format_store.update_gamma(1.0, 1.0)
        assert surface.sent == []


class TestCapacityThroughSwitches:
    def test_cache_stays_bounded(self, coordinator, view_cache):
        for name in "ABCDEFGHIJ":
            show(coordinator, name, "png")
            assert len(view_cache) <= 5
        assert len(view_cache) == 5

    def test_sixth_commit_evicts_first(self, coordinator, view_cache, clock):
        for name in "ABCDEF":
            clock.advance()
            show(coordinator, name, "png")
        clock.advance()
        show(coordinator, "G", "png")
        # A..F were committed in order; committing F evicted A
        assert set(view_cache.image_ids()) == set("BCDEF")

    def test_wrap_around_to_oldest_entry_reuses(self, coordinator, surface, view_cache, clock):
        for name in "123456":
            clock.advance()
            show(coordinator, name, "png")
        assert set(view_cache.image_ids()) == set("12345")

        clock.advance()
        complete_switch(coordinator, "1")

        assert surface.last(SwitchImage).directive is Directive.REUSE
        assert set(view_cache.image_ids()) == set("13456")


@pytest.mark.parametrize("fmt", ["png", "tiff-float", "npy-float"])
def test_reuse_for_each_format(coordinator, surface, fmt):
    show(coordinator, "A", fmt)
    show(coordinator, "B", "jpg")
    complete_switch(coordinator, "A")
    assert surface.last(SwitchImage).directive is Directive.REUSE
