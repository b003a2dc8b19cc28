"""Qt adapters for the surface channel and the settle timer.

Host messages leave through the ``message_posted`` signal as plain dicts;
the rendering widget answers by calling ``deliver`` with its payload, which
is re-emitted as ``message_received`` for the bound preview.
"""

from __future__ import annotations

from typing import Callable, Optional

from matplotlib.backends.qt_compat import QtCore

from image_preview.logger import get_logger
from image_preview.messages import HostMessage, to_payload
from image_preview.preview import ImagePreview
from image_preview.surface import SurfaceChannel

LOGGER = get_logger(__name__)


def qt_scheduler(delay_ms: int, callback: Callable[[], None]) -> None:
    """Run ``callback`` on the Qt event loop after ``delay_ms``."""
    QtCore.QTimer.singleShot(max(0, int(delay_ms)), callback)


class SurfaceSignals(QtCore.QObject):
    """Qt signals carrying payloads between host and widget."""

    message_posted = QtCore.pyqtSignal(dict)
    message_received = QtCore.pyqtSignal(dict)


class QtSurfaceChannel(SurfaceChannel):
    """Surface channel backed by Qt signals.

    Host and widget never call each other directly; both sides only see
    ``signals``.
    """

    def __init__(self, parent: Optional[QtCore.QObject] = None) -> None:
        self.signals = SurfaceSignals(parent)
        self._preview: Optional[ImagePreview] = None

    def post(self, message: HostMessage) -> None:
        self.signals.message_posted.emit(to_payload(message))

    def deliver(self, payload: dict) -> None:
        """Hand a surface payload to the host."""
        self.signals.message_received.emit(dict(payload))

    def bind(self, preview: ImagePreview) -> None:
        """Route received payloads to ``preview``."""
        if self._preview is not None:
            self.signals.message_received.disconnect(self._preview.handle_payload)
        self._preview = preview
        self.signals.message_received.connect(preview.handle_payload)
        LOGGER.debug("Bound surface channel to %s", preview.preview_id)
