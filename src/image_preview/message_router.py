"""Dispatch surface payloads to host-side handlers."""

from __future__ import annotations

from typing import Any, Callable, Dict, Mapping, Optional, Type

from image_preview.logger import get_logger
from image_preview.messages import MessageError, SurfaceMessage, parse_message

LOGGER = get_logger(__name__)

Handler = Callable[[Any], None]


class MessageRouter:
    """Route parsed surface messages to one handler per message class.

    Notes
    -----
    Malformed payloads are logged and dropped; exceptions raised by a
    handler propagate to the caller.
    """

    def __init__(self) -> None:
        self._handlers: Dict[Type[SurfaceMessage], Handler] = {}

    def register(self, message_cls: Type[SurfaceMessage], handler: Handler) -> None:
        assert message_cls not in self._handlers, f"handler already registered for {message_cls.type}"
        self._handlers[message_cls] = handler

    def handle(self, payload: Mapping[str, Any]) -> Optional[SurfaceMessage]:
        """Parse ``payload`` and dispatch it; return the parsed message if handled."""
        try:
            message = parse_message(payload)
        except MessageError as exc:
            LOGGER.warning("Dropping malformed surface message: %s", exc)
            return None
        if message is None:
            LOGGER.debug("Ignoring unknown surface message type: %s", payload.get("type"))
            return None
        return message if self.dispatch(message) else None

    def dispatch(self, message: SurfaceMessage) -> bool:
        handler = self._handlers.get(type(message))
        if handler is None:
            LOGGER.debug("No handler registered for message type: %s", message.type)
            return False
        handler(message)
        return True
