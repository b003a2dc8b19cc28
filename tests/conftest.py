import os
from typing import Callable, List, Tuple

import matplotlib
import pytest

from image_preview.config import ViewerConfig
from image_preview.format_settings import FormatSettingsStore
from image_preview.local_settings import ImageLocalSettingsStore
from image_preview.messages import to_payload
from image_preview.surface import SurfaceChannel
from image_preview.sync_protocol import SwitchCoordinator
from image_preview.view_cache import ViewCache


def pytest_addoption(parser):
    parser.addoption(
        "--run-gui",
        action="store_true",
        default=False,
        help="Run GUI tests (requires Qt backend / Xvfb).",
    )


def pytest_configure(config):
    config.addinivalue_line("markers", "gui: GUI tests that require a Qt backend/Xvfb")


def pytest_collection_modifyitems(config, items):
    run_gui = config.getoption("--run-gui")
    selected_marker = config.getoption("-m")
    marker_includes_gui = selected_marker and "gui" in selected_marker

    if run_gui or marker_includes_gui:
        return

    skip_gui = pytest.mark.skip(reason="Use --run-gui or -m gui to run GUI tests.")
    for item in items:
        if "gui" in item.keywords:
            item.add_marker(skip_gui)


# Ensure a safe backend/environment for GUI tests under CI/headless
if "CI" in os.environ:
    os.environ.setdefault("QT_QPA_PLATFORM", "offscreen")
    os.environ.setdefault("QT_XCB_GL_INTEGRATION", "none")
    os.environ.setdefault("QT_OPENGL", "software")
    os.environ.setdefault("MPLBACKEND", "Agg")
matplotlib.use(os.environ.get("MPLBACKEND", "Agg"), force=True)


class RecordingSurface(SurfaceChannel):
    """Surface that records every posted host message."""

    def __init__(self):
        self.sent = []

    def post(self, message):
        self.sent.append(message)

    def of_type(self, cls):
        return [msg for msg in self.sent if isinstance(msg, cls)]

    def last(self, cls):
        found = self.of_type(cls)
        return found[-1] if found else None

    def payloads(self):
        return [to_payload(msg) for msg in self.sent]

    def clear(self):
        self.sent.clear()


class ManualScheduler:
    """Scheduler whose callbacks run only when the test fires them."""

    def __init__(self):
        self.pending: List[Tuple[int, Callable[[], None]]] = []

    def __call__(self, delay_ms, callback):
        self.pending.append((delay_ms, callback))

    def fire(self, delay_ms=None):
        """Run (and drop) every pending callback, optionally only for one delay."""
        due = [item for item in self.pending if delay_ms is None or item[0] == delay_ms]
        self.pending = [item for item in self.pending if item not in due]
        for _, callback in due:
            callback()
        return len(due)


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start=100.0):
        self.now = float(start)

    def __call__(self):
        return self.now

    def advance(self, seconds=1.0):
        self.now += seconds
        return self.now


@pytest.fixture
def config():
    return ViewerConfig()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def surface():
    return RecordingSurface()


@pytest.fixture
def scheduler():
    return ManualScheduler()


@pytest.fixture
def format_store(config):
    return FormatSettingsStore(config)


@pytest.fixture
def local_store():
    return ImageLocalSettingsStore()


@pytest.fixture
def view_cache(clock):
    return ViewCache(5, clock)


@pytest.fixture
def coordinator(surface, format_store, local_store, view_cache, scheduler, config):
    return SwitchCoordinator(surface, format_store, local_store, view_cache, scheduler, config=config)
