"""
Fire-and-forget broadcast of new uploads.

Subscribers receive payloads on a worker pool; broadcast() never waits for
delivery and a failing subscriber never affects the uploader.
"""

import logging
import threading
from collections import deque
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, List

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileBroadcast:
    """Live-feed payload for a stored upload."""
    owner: str
    cid: str
    timestamp: datetime
    size_bytes: int
    hourly_cost: float


Subscriber = Callable[[FileBroadcast], None]


class Notifier:
    """Broadcasts uploads to subscribers and keeps the most recent ones."""

    def __init__(self, history_size: int = 20, max_workers: int = 2):
        self._history = deque(maxlen=history_size)
        self._subscribers: List[Subscriber] = []
        self._lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=max_workers, thread_name_prefix="notifier")

    def subscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(subscriber)

    def unsubscribe(self, subscriber: Subscriber) -> None:
        with self._lock:
            if subscriber in self._subscribers:
                self._subscribers.remove(subscriber)

    def recent(self) -> List[FileBroadcast]:
        """Most recent broadcasts, oldest first."""
        with self._lock:
            return list(self._history)

    def broadcast(self, payload: FileBroadcast) -> None:
        with self._lock:
            self._history.append(payload)
            subscribers = list(self._subscribers)
        for subscriber in subscribers:
            self._executor.submit(self._deliver, subscriber, payload)

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)

    @staticmethod
    def _deliver(subscriber: Subscriber, payload: FileBroadcast) -> None:
        try:
            subscriber(payload)
        except Exception:
            logger.warning("Subscriber failed for cid=%s", payload.cid, exc_info=True)
