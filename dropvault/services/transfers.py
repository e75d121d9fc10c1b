"""Transfer drivers feeding progress into the upload coordinator."""

from __future__ import annotations

import logging
import random
import threading
from dataclasses import dataclass, field
from typing import Optional, Protocol

from ..config import UploadConfig
from ..errors import TransferError
from ..models import UploadHandle

logger = logging.getLogger(__name__)


class ProgressSink(Protocol):
    def advance_progress(self, handle: UploadHandle, delta: float) -> bool: ...

    def report_failure(self, handle: UploadHandle, error: BaseException) -> bool: ...


class TransferDriver(Protocol):
    def start(self, sink: ProgressSink, handle: UploadHandle, stop: threading.Event) -> Optional[threading.Thread]: ...


class ExternalTransfer:
    """Progress arrives through the coordinator's ``report_*`` entry points."""

    def start(self, sink: ProgressSink, handle: UploadHandle, stop: threading.Event) -> Optional[threading.Thread]:
        return None


@dataclass
class SimulatedTransfer:
    """Worker thread per upload that advances progress by a random step each tick.

    The worker waits on the handle's stop event between ticks, so a cancel or a
    terminal transition is observed before the next tick is emitted.
    """

    tick_interval_seconds: float = 0.3
    max_tick_percent: float = 10.0
    rng: random.Random = field(default_factory=random.Random)

    def start(self, sink: ProgressSink, handle: UploadHandle, stop: threading.Event) -> Optional[threading.Thread]:
        worker = threading.Thread(
            target=self._run,
            args=(sink, handle, stop),
            name=f"dropvault-transfer-{handle.handle_id[:8]}",
            daemon=True,
        )
        worker.start()
        return worker

    def _run(self, sink: ProgressSink, handle: UploadHandle, stop: threading.Event) -> None:
        try:
            while not stop.wait(self.tick_interval_seconds):
                step = self.rng.uniform(0.0, self.max_tick_percent)
                if not sink.advance_progress(handle, step):
                    break
        except Exception as exc:
            logger.exception("Simulated transfer for %s crashed", handle.handle_id)
            sink.report_failure(handle, TransferError(f"transfer aborted: {exc}"))


def build_transfer(config: UploadConfig) -> TransferDriver:
    if config.transfer_mode == "simulated":
        return SimulatedTransfer(
            tick_interval_seconds=config.tick_interval_seconds,
            max_tick_percent=config.max_tick_percent,
        )
    if config.transfer_mode == "external":
        return ExternalTransfer()
    raise ValueError(f"Unknown transfer mode: {config.transfer_mode}")
