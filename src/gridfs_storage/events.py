"""Synchronous event emitter."""

from collections.abc import Callable
from typing import Any

Listener = Callable[..., Any]


class EventEmitter:
    """Minimal event emitter.

    Listeners run synchronously, in registration order, at ``emit`` time.
    Listeners added while an event is being emitted are not called for that
    emission.
    """

    def __init__(self) -> None:
        self._listeners: dict[str, list[tuple[Listener, bool]]] = {}

    def on(self, event: str, listener: Listener) -> Listener:
        """Register a listener and return it."""
        self._listeners.setdefault(event, []).append((listener, False))
        return listener

    def once(self, event: str, listener: Listener) -> Listener:
        """Register a listener that is removed after its first call."""
        self._listeners.setdefault(event, []).append((listener, True))
        return listener

    def off(self, event: str, listener: Listener) -> None:
        """Remove the first registration of a listener."""
        listeners = self._listeners.get(event)
        if not listeners:
            return
        for i, (registered, _) in enumerate(listeners):
            if registered == listener:
                del listeners[i]
                break
        if not listeners:
            del self._listeners[event]

    def emit(self, event: str, *args: Any) -> bool:
        """Call every listener of an event. Returns True if there were any."""
        listeners = self._listeners.get(event)
        if not listeners:
            return False
        for listener, once in list(listeners):
            if once:
                self.off(event, listener)
            listener(*args)
        return True

    def listener_count(self, event: str) -> int:
        return len(self._listeners.get(event, ()))

    def remove_all_listeners(self, event: str | None = None) -> None:
        if event is None:
            self._listeners.clear()
        else:
            self._listeners.pop(event, None)
