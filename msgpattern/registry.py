"""Pattern-to-handler registry and a decorator-friendly registration helper."""

from __future__ import annotations

import threading
from typing import Any, Callable

_Handler = Callable[[Any], Any]


class Registry:
    """Thread-safe mapping from pattern commands to handlers."""

    def __init__(self) -> None:
        self._handlers: dict[str, _Handler] = {}
        self._lock = threading.Lock()

    def register(self, pattern: str, handler: _Handler) -> None:
        """Register ``handler`` for ``pattern``, replacing any earlier one."""
        with self._lock:
            self._handlers[pattern] = handler

    def get(self, pattern: str) -> _Handler | None:
        """Return the handler for ``pattern``, or None if there is none."""
        with self._lock:
            return self._handlers.get(pattern)


class ServerWrapper:
    """Registers message-pattern handlers on a server."""

    def __init__(self, server: Any) -> None:
        self.server = server

    def message_pattern(self, pattern: str, handler: _Handler | None = None):
        """Register ``handler`` for ``pattern``.

        Without a handler, returns a decorator that registers the decorated
        function and returns it unchanged.
        """
        if handler is not None:
            self.server.register_handler(pattern, handler)
            return handler

        def decorator(func: _Handler) -> _Handler:
            self.server.register_handler(pattern, func)
            return func

        return decorator