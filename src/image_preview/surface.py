"""Collaborator contracts for the rendering surface and the settle timer."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Callable

from image_preview.messages import HostMessage

Scheduler = Callable[[int, Callable[[], None]], None]
"""Run a callback once after a delay in milliseconds, without blocking."""


class SurfaceChannel(ABC):
    """One-way, non-blocking channel from the host to a rendering surface.

    Responses from the surface arrive later as independent calls into the
    host (see ``ImagePreview.handle_payload``).
    """

    @abstractmethod
    def post(self, message: HostMessage) -> None:
        """Queue ``message`` for the surface and return immediately."""

