"""Stale-response protection for surface requests.

Every request sent to the rendering surface gets a sequence number from a
monotonically increasing counter. Responses echo the number back; only a
response carrying the most recently issued number for its request kind is
accepted. Superseded requests are never cancelled, their late responses
are simply discarded.

Pattern:
    seq = guard.issue("viewer_state")
    surface.post(RequestViewerState(seq))

Then in the response handler:
    def on_report(report):
        if not guard.is_current("viewer_state", report.seq):
            return  # Discard stale response
        # Process report...
"""

from __future__ import annotations

from typing import Dict, Optional

__all__ = ["SequenceGuard"]


class SequenceGuard:
    """Tracks the latest outstanding sequence number per request kind."""

    def __init__(self) -> None:
        self._counter = 0
        self._current: Dict[str, int] = {}

    @property
    def last_issued(self) -> int:
        return self._counter

    def issue(self, kind: str) -> int:
        """Issue a new sequence number and make it current for ``kind``.

        Parameters
        ----------
        kind : str
            Request kind identifier (e.g., "viewer_state", "comparison_state").
        """
        self._counter += 1
        self._current[kind] = self._counter
        return self._counter

    def current(self, kind: str) -> Optional[int]:
        return self._current.get(kind)

    def is_current(self, kind: str, seq: int) -> bool:
        """Check whether ``seq`` is the outstanding request for ``kind``."""
        return self._current.get(kind) == seq

    def clear(self, kind: str) -> None:
        """Forget the outstanding request for ``kind`` once it has been answered."""
        self._current.pop(kind, None)
