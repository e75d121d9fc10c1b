"""Activity feed fed by upload and share notifications."""

from __future__ import annotations

import threading
from collections import deque
from dataclasses import dataclass, field
from typing import Deque, List, Optional, Sequence

from ..messaging import InMemoryBus, MessageEnvelope
from ..telemetry import TelemetryCollector

FEED_TOPICS = ("uploads.status", "shares.issued", "shares.revoked", "files.updated")


@dataclass
class ActivityService:
    bus: InMemoryBus
    telemetry: TelemetryCollector
    max_events: int = 200
    topics: Sequence[str] = FEED_TOPICS
    events: Deque[MessageEnvelope] = field(init=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def __post_init__(self) -> None:
        self.events = deque(maxlen=self.max_events)
        self.topics = tuple(self.topics)
        for topic in self.topics:
            self.bus.subscribe(topic, self._handle_event)

    def recent(self, limit: Optional[int] = None, *, topic: Optional[str] = None) -> List[MessageEnvelope]:
        with self._lock:
            events = list(self.events)
        if topic:
            events = [event for event in events if event.topic == topic]
        if limit is not None and limit >= 0:
            events = events[-limit:] if limit else []
        return events

    def close(self) -> None:
        """Stop listening; events already recorded stay readable."""
        for topic in self.topics:
            self.bus.unsubscribe(topic, self._handle_event)

    def _handle_event(self, envelope: MessageEnvelope) -> None:
        with self._lock:
            self.events.append(envelope)
        self.telemetry.emit_event(f"activity_{envelope.topic}", envelope.payload)
