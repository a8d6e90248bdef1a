"""
HMR Harness Log Streams

Line-oriented publish/subscribe channel for child-process output.
"""

from __future__ import annotations

from typing import Callable

import structlog

logger = structlog.get_logger(__name__)

LineListener = Callable[[str], None]


class LogStream:
    """
    Fan-out of decoded output lines to subscribed listeners.

    Listeners are called synchronously in subscription order. A listener
    that raises is logged and left subscribed; it never stops delivery to
    the others.
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: list[LineListener] = []
        self._line_count = 0

    def subscribe(self, listener: LineListener) -> Callable[[], None]:
        """
        Add a listener.

        Returns:
            A callable that unsubscribes the listener
        """
        self._listeners.append(listener)
        return lambda: self.unsubscribe(listener)

    def unsubscribe(self, listener: LineListener) -> bool:
        """Remove a listener; returns False if it was not subscribed."""
        try:
            self._listeners.remove(listener)
            return True
        except ValueError:
            return False

    def clear(self) -> None:
        """Detach every listener."""
        self._listeners.clear()

    def publish(self, line: str) -> None:
        self._line_count += 1
        for listener in list(self._listeners):
            try:
                listener(line)
            except Exception as e:
                logger.warning(
                    "log_listener_failed",
                    stream=self.name,
                    error=str(e),
                )

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    @property
    def line_count(self) -> int:
        return self._line_count
