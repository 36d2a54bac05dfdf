from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable
from threading import Lock
from typing import Any

logger = logging.getLogger(__name__)

Listener = Callable[[dict[str, Any]], None]


class ChangeFeed:
    """In-process fan-out of full session_state rows, keyed by session id."""

    def __init__(self) -> None:
        self._lock = Lock()
        self._listeners: dict[str, list[Listener]] = defaultdict(list)
        self.published_count = 0

    def subscribe(self, session_id: object, on_change: Listener) -> Callable[[], None]:
        key = str(session_id)
        with self._lock:
            self._listeners[key].append(on_change)

        def _unsubscribe() -> None:
            with self._lock:
                listeners = self._listeners.get(key)
                if not listeners:
                    return
                try:
                    listeners.remove(on_change)
                except ValueError:
                    return
                if not listeners:
                    self._listeners.pop(key, None)

        return _unsubscribe

    def publish(self, session_id: object, row: dict[str, Any]) -> int:
        key = str(session_id)
        with self._lock:
            listeners = list(self._listeners.get(key, ()))
            self.published_count += 1
        delivered = 0
        for listener in listeners:
            try:
                listener(dict(row))
            except Exception:
                logger.exception("change feed listener failed session=%s", key)
                continue
            delivered += 1
        return delivered

    def subscriber_count(self, session_id: object) -> int:
        with self._lock:
            return len(self._listeners.get(str(session_id), ()))

    def reset(self) -> None:
        with self._lock:
            self._listeners.clear()
            self.published_count = 0


_change_feed = ChangeFeed()


def get_change_feed() -> ChangeFeed:
    return _change_feed


def reset_change_feed() -> None:
    _change_feed.reset()
