"""In-process message bus carrying upload and share notifications."""

from __future__ import annotations

import logging
import threading
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Callable, DefaultDict, Dict, List

logger = logging.getLogger(__name__)

Handler = Callable[["MessageEnvelope"], None]


@dataclass
class MessageEnvelope:
    topic: str
    payload: Dict[str, Any]
    retries: int = 0


class InMemoryBus:
    """Naive pub/sub bus for local development and unit tests.

    Publishing may happen from transfer worker threads, so the subscriber
    table is guarded. Handlers run on the publishing thread; a failing handler
    is logged and does not stop delivery to the others.
    """

    def __init__(self) -> None:
        self._subscribers: DefaultDict[str, List[Handler]] = defaultdict(list)
        self._lock = threading.Lock()

    def publish(self, envelope: MessageEnvelope) -> None:
        with self._lock:
            handlers = list(self._subscribers[envelope.topic])
        for callback in handlers:
            try:
                callback(envelope)
            except Exception:
                logger.exception("Subscriber for %s failed", envelope.topic)

    def subscribe(self, topic: str, handler: Handler) -> None:
        with self._lock:
            self._subscribers[topic].append(handler)

    def unsubscribe(self, topic: str, handler: Handler) -> None:
        with self._lock:
            handlers = self._subscribers.get(topic, [])
            if handler in handlers:
                handlers.remove(handler)


def build_bus(backend: str = "in-memory") -> InMemoryBus:
    if backend != "in-memory":
        raise NotImplementedError("Only in-memory backend is scaffolded right now")
    return InMemoryBus()
