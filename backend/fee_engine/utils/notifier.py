"""Observable state holder.

Subscribers are plain callables invoked synchronously, in subscription
order, whenever the owner calls ``notify_listeners``.
"""

import logging
from typing import Callable

logger = logging.getLogger(__name__)

Listener = Callable[[], None]


class ChangeNotifier:
    """Minimal subscribe/unsubscribe/notify mixin."""

    def __init__(self) -> None:
        self._listeners: list[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        try:
            self._listeners.remove(listener)
        except ValueError:
            pass

    @property
    def has_listeners(self) -> bool:
        return bool(self._listeners)

    def notify_listeners(self) -> None:
        # Copy so listeners may unsubscribe while being notified
        for listener in list(self._listeners):
            try:
                listener()
            except Exception:
                logger.exception(f"[NOTIFY] Listener {listener!r} raised")

    def dispose(self) -> None:
        self._listeners.clear()
