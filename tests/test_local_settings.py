"""Unit tests for per-image overlay settings."""

from image_preview.local_settings import ImageLocalSettingsStore, MaskDirection, MaskFilter


def _store_with_events():
    store = ImageLocalSettingsStore()
    events = []
    store.changed.register(events.append)
    return store, events


class TestMaskFilters:
    def test_unknown_image_has_no_masks(self):
        store = ImageLocalSettingsStore()
        assert store.get_mask_filter_settings("a.tif") == []
        assert not store.has_entry("a.tif")

    def test_add_update_remove_notify_once_each(self):
        store, events = _store_with_events()
        index = store.add_mask_filter("a.tif", MaskFilter("mask.tif", threshold=0.3))
        assert index == 0
        assert store.update_mask_filter("a.tif", 0, threshold=0.7, direction="lower") is True
        masks = store.get_mask_filter_settings("a.tif")
        assert masks[0].threshold == 0.7
        assert masks[0].direction is MaskDirection.LOWER
        assert store.remove_mask_filter("a.tif", 0) is True
        assert store.get_mask_filter_settings("a.tif") == []
        assert events == ["a.tif", "a.tif", "a.tif"]

    def test_order_is_preserved(self):
        store = ImageLocalSettingsStore()
        store.add_mask_filter("a", MaskFilter("m1"))
        store.add_mask_filter("a", MaskFilter("m2"))
        store.add_mask_filter("a", MaskFilter("m3"))
        store.remove_mask_filter("a", 1)
        assert [m.mask_ref for m in store.get_mask_filter_settings("a")] == ["m1", "m3"]

    def test_invalid_index_is_rejected_without_notification(self):
        store, events = _store_with_events()
        store.add_mask_filter("a", MaskFilter("m1"))
        events.clear()
        assert store.update_mask_filter("a", 3, threshold=0.1) is False
        assert store.remove_mask_filter("a", -1) is False
        assert store.set_mask_filter_enabled("b", 0, False) is False
        assert events == []

    def test_invalid_direction_is_rejected(self):
        store, events = _store_with_events()
        store.add_mask_filter("a", MaskFilter("m1"))
        events.clear()
        assert store.update_mask_filter("a", 0, direction="sideways") is False
        assert store.get_mask_filter_settings("a")[0].direction is MaskDirection.HIGHER
        assert events == []

    def test_returned_filters_are_copies(self):
        store = ImageLocalSettingsStore()
        store.add_mask_filter("a", MaskFilter("m1"))
        store.get_mask_filter_settings("a")[0].threshold = 0.99
        assert store.get_mask_filter_settings("a")[0].threshold == 0.5

    def test_images_are_independent(self):
        store = ImageLocalSettingsStore()
        store.add_mask_filter("a", MaskFilter("m1"))
        assert store.get_mask_filter_settings("b") == []

    def test_mask_summary(self):
        store = ImageLocalSettingsStore()
        assert store.mask_summary("a").text is None
        store.add_mask_filter("a", MaskFilter("m1", threshold=0.25))
        store.add_mask_filter("a", MaskFilter("m2"))
        store.set_mask_filter_enabled("a", 1, False)
        summary = store.mask_summary("a")
        assert summary.text == "1/2 masks"
        assert summary.threshold == 0.25


class TestPresentationFlags:
    def test_nan_color_toggles(self):
        store, events = _store_with_events()
        assert store.get_nan_color("a") == "black"
        assert store.toggle_nan_color("a") == "fuchsia"
        assert store.toggle_nan_color("a") == "black"
        assert events == ["a", "a"]

    def test_color_picker_mode_toggles(self):
        store = ImageLocalSettingsStore()
        assert store.get_color_picker_show_modified("a") is False
        assert store.toggle_color_picker_mode("a") is True
        assert store.get_color_picker_show_modified("a") is True

    def test_snapshot_serializes_for_surface(self):
        store = ImageLocalSettingsStore()
        store.add_mask_filter("a", MaskFilter("m1", threshold=0.4, direction=MaskDirection.LOWER))
        payload = store.snapshot("a").to_dict()
        assert payload["maskFilters"] == [
            {"maskUri": "m1", "threshold": 0.4, "filterHigher": False, "enabled": True}
        ]
        assert payload["nanColor"] == "black"
