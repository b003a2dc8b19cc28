"""Status entries guarded by an owner token.

Several previews share the same status widgets. A preview shows an entry
under its own token; ``hide`` only takes effect for the current owner, so a
preview going inactive cannot hide text another preview just put up.
"""

from __future__ import annotations

from typing import Dict, Hashable, Iterable, Optional

from image_preview.observers import Observers

__all__ = ["OwnedStatusEntry", "StatusEntries", "STATUS_ENTRY_NAMES"]

STATUS_ENTRY_NAMES = ("size", "zoom", "normalization", "gamma", "brightness", "masks")


class OwnedStatusEntry:
    """One status line with text, visibility and an owner token."""

    def __init__(self, name: str) -> None:
        self.name = name
        self.text = ""
        self._owner: Optional[Hashable] = None
        self._visible = False
        self.changed = Observers()

    @property
    def owner(self) -> Optional[Hashable]:
        return self._owner

    @property
    def is_visible(self) -> bool:
        return self._visible

    def show(self, owner: Hashable, text: str) -> None:
        """Display ``text`` and take ownership of the entry."""
        if self._visible and self._owner == owner and self.text == text:
            return
        self._owner = owner
        self.text = text
        self._visible = True
        self.changed.notify(self)

    def hide(self, owner: Hashable) -> bool:
        """Hide the entry if ``owner`` still owns it; return True if hidden."""
        if self._owner != owner:
            return False
        if self._visible:
            self._visible = False
            self.changed.notify(self)
        return True

    def force_hide(self) -> None:
        """Hide regardless of owner and release ownership."""
        was_visible = self._visible
        self._owner = None
        self._visible = False
        if was_visible:
            self.changed.notify(self)


class StatusEntries:
    """Named collection of owned status entries."""

    def __init__(self, names: Iterable[str] = STATUS_ENTRY_NAMES) -> None:
        self._entries: Dict[str, OwnedStatusEntry] = {name: OwnedStatusEntry(name) for name in names}

    def __getitem__(self, name: str) -> OwnedStatusEntry:
        return self._entries[name]

    def __iter__(self):
        return iter(self._entries.values())

    def visible_text(self) -> Dict[str, str]:
        return {entry.name: entry.text for entry in self if entry.is_visible}

    def hide_all(self, owner: Hashable) -> None:
        for entry in self:
            entry.hide(owner)

    def force_hide_all(self) -> None:
        for entry in self:
            entry.force_hide()
