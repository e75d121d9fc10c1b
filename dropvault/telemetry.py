"""Observability scaffolding."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional

from .config import ObservabilityConfig


@dataclass
class TelemetryEvent:
    message: str
    attributes: Optional[dict] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


@dataclass
class TelemetryCollector:
    config: ObservabilityConfig
    metrics: List[Dict[str, object]] = field(default_factory=list)
    events: List[TelemetryEvent] = field(default_factory=list)
    _lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)

    def emit_metric(self, name: str, value: float, labels: Dict[str, str] | None = None) -> None:
        payload = {
            "name": name,
            "value": value,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            **(labels or {}),
        }
        with self._lock:
            self.metrics.append(payload)

    def emit_event(self, message: str, attributes: Dict[str, str] | None = None) -> None:
        with self._lock:
            self.events.append(TelemetryEvent(message=message, attributes=attributes))

    def metric_values(self, name: str) -> List[float]:
        with self._lock:
            return [float(metric["value"]) for metric in self.metrics if metric.get("name") == name]

    def flush(self) -> None:
        with self._lock:
            self.metrics.clear()
            self.events.clear()


def configure_logging(config: ObservabilityConfig) -> None:
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    logging.basicConfig(level=level, format="[%(asctime)s] %(levelname)s %(name)s %(message)s")
