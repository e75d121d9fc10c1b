"""Upload lifecycle coordinator.

Each upload owns a ``_UploadCell`` holding its progress and status behind a
per-handle lock. Transfer producers and the finalize step only mutate state
through that lock, and finalize is claimed with a single compare-and-set, so
duplicate or racing completion signals persist exactly one ``FileRecord``.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..errors import (
    DropVaultError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    TransferError,
    error_kind,
)
from ..messaging import InMemoryBus, MessageEnvelope
from ..models import (
    ALLOWED_TRANSITIONS,
    FileRecord,
    FileStatus,
    UploadEvent,
    UploadHandle,
    UploadMetadata,
    UploadStatus,
    utcnow,
)
from .base import BaseService
from .record_store import RecordStore
from .transfers import TransferDriver, build_transfer

logger = logging.getLogger(__name__)

Listener = Callable[[UploadEvent], None]


@dataclass
class _UploadCell:
    handle: UploadHandle
    metadata: UploadMetadata
    mime_type: str
    listener: Optional[Listener] = None
    status: UploadStatus = UploadStatus.PENDING
    progress: float = 0.0
    file_id: Optional[str] = None
    error: Optional[str] = None
    error_kind: Optional[str] = None
    attempts: int = 0
    finalize_claimed: bool = False
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)
    worker: Optional[threading.Thread] = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False)
    stop: threading.Event = field(default_factory=threading.Event, repr=False)
    done: threading.Event = field(default_factory=threading.Event, repr=False)


@dataclass
class UploadCoordinator(BaseService):
    record_store: RecordStore
    bus: InMemoryBus
    transfer: Optional[TransferDriver] = None
    sleep: Callable[[float], None] = time.sleep
    _uploads: Dict[str, _UploadCell] = field(default_factory=dict, init=False, repr=False)
    _retired: "OrderedDict[str, None]" = field(default_factory=OrderedDict, init=False, repr=False)
    _registry_lock: threading.Lock = field(default_factory=threading.Lock, init=False, repr=False)
    _executor: Optional[ThreadPoolExecutor] = field(default=None, init=False, repr=False)
    _closed: bool = field(default=False, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.transfer is None:
            self.transfer = build_transfer(self.config.uploads)
        self._executor = ThreadPoolExecutor(
            max_workers=max(1, self.config.uploads.finalize_workers),
            thread_name_prefix="dropvault-finalize",
        )

    # Entry points ------------------------------------------------------------

    def enqueue(self, metadata: UploadMetadata, *, listener: Optional[Listener] = None) -> UploadHandle:
        """Register an upload and start its transfer; returns immediately."""
        metadata.validate()
        if self._closed:
            raise InvalidStateError("upload coordinator is shut down")
        handle = UploadHandle(uuid.uuid4().hex)
        cell = _UploadCell(
            handle=handle,
            metadata=metadata,
            mime_type=metadata.mime_type or self._infer_mime_type(metadata.name),
            listener=listener,
        )
        with self._registry_lock:
            self._uploads[handle.handle_id] = cell
        with cell.lock:
            self._publish(cell, "uploads.status")
            self._transition(cell, UploadStatus.UPLOADING)
        self.emit_event("upload_enqueued", handle_id=handle.handle_id, name=metadata.name)
        logger.info("Upload %s enqueued (%s, %d bytes)", handle.handle_id, metadata.name, metadata.size_bytes)

        try:
            cell.worker = self.transfer.start(self, handle, cell.stop)
        except Exception as exc:
            logger.exception("Unable to start transfer for %s", handle.handle_id)
            self.report_failure(handle, TransferError(f"unable to start transfer: {exc}"))
        return handle

    def cancel(self, handle: UploadHandle) -> None:
        cell = self._require(handle)
        with cell.lock:
            if cell.status.is_terminal:
                raise InvalidStateError(f"upload {handle.handle_id} is already {cell.status.value}")
            if cell.finalize_claimed:
                raise InvalidStateError(f"upload {handle.handle_id} is already being persisted")
            self._transition(cell, UploadStatus.CANCELLED)
        with self._registry_lock:
            self._uploads.pop(handle.handle_id, None)
        self._release(cell)
        self.emit_metric("upload.cancelled", 1, handle_id=handle.handle_id)
        logger.info("Upload %s cancelled at %.1f%%", handle.handle_id, cell.progress)

    def progress_of(self, handle: UploadHandle) -> float:
        cell = self._require(handle)
        with cell.lock:
            return cell.progress

    def status_of(self, handle: UploadHandle) -> UploadStatus:
        cell = self._require(handle)
        with cell.lock:
            return cell.status

    def describe(self, handle: UploadHandle) -> Dict[str, object]:
        cell = self._require(handle)
        with cell.lock:
            return self._describe(cell)

    def list_uploads(self) -> List[Dict[str, object]]:
        with self._registry_lock:
            cells = list(self._uploads.values())
        summaries = []
        for cell in cells:
            with cell.lock:
                summaries.append(self._describe(cell))
        return summaries

    def wait(self, handle: UploadHandle, timeout: Optional[float] = None) -> UploadStatus:
        """Block until the upload reaches a terminal status."""
        cell = self._require(handle)
        if not cell.done.wait(timeout):
            raise TimeoutError(f"upload {handle.handle_id} still {cell.status.value}")
        with cell.lock:
            return cell.status

    def release(self, handle: UploadHandle) -> None:
        """Forget a terminal upload."""
        cell = self._require(handle)
        with cell.lock:
            if not cell.status.is_terminal:
                raise InvalidStateError(f"upload {handle.handle_id} is still {cell.status.value}")
        with self._registry_lock:
            self._uploads.pop(handle.handle_id, None)
            self._retired.pop(handle.handle_id, None)

    def shutdown(self, *, wait: bool = True) -> None:
        self._closed = True
        with self._registry_lock:
            cells = list(self._uploads.values())
        for cell in cells:
            try:
                self.cancel(cell.handle)
            except (InvalidStateError, NotFoundError):
                continue
        self._executor.shutdown(wait=wait)

    # Transfer signals ----------------------------------------------------------

    def advance_progress(self, handle: UploadHandle, delta: float) -> bool:
        """Relative progress tick; returns False once the producer should stop."""
        cell = self._lookup(handle)
        if cell is None:
            return False
        with cell.lock:
            target = cell.progress + max(0.0, float(delta))
        return self._apply_progress(cell, target)

    def report_progress(self, handle: UploadHandle, percent: float) -> bool:
        cell = self._lookup(handle)
        if cell is None:
            return False
        return self._apply_progress(cell, float(percent))

    def report_complete(self, handle: UploadHandle) -> bool:
        """Completion signal. True only for the call that wins the finalize claim."""
        cell = self._lookup(handle)
        if cell is None:
            logger.debug("Ignoring completion for unknown upload %s", handle.handle_id)
            return False
        return self._claim_finalize(cell)

    def report_failure(self, handle: UploadHandle, error: BaseException) -> bool:
        cell = self._lookup(handle)
        if cell is None:
            return False
        if not isinstance(error, DropVaultError):
            error = TransferError(str(error) or type(error).__name__)
        with cell.lock:
            if cell.status is not UploadStatus.UPLOADING or cell.finalize_claimed:
                return False
            self._transition(cell, UploadStatus.FAILED, error=error)
        self._release(cell)
        self.emit_metric("upload.failed", 1, handle_id=handle.handle_id, kind=error_kind(error))
        logger.warning("Upload %s failed during transfer: %s", handle.handle_id, error)
        return True

    # Internals -----------------------------------------------------------------

    def _apply_progress(self, cell: _UploadCell, value: float) -> bool:
        value = min(max(value, 0.0), 100.0)
        with cell.lock:
            if cell.status is not UploadStatus.UPLOADING or cell.finalize_claimed:
                return False
            if value <= cell.progress:
                return True
            cell.progress = value
            cell.updated_at = utcnow()
            self._publish(cell, "uploads.progress")
            reached = value >= 100.0
        if reached:
            self._claim_finalize(cell)
            return False
        return True

    def _claim_finalize(self, cell: _UploadCell) -> bool:
        with cell.lock:
            if cell.status is not UploadStatus.UPLOADING or cell.finalize_claimed:
                return False
            cell.finalize_claimed = True
            cell.stop.set()
            if cell.progress < 100.0:
                cell.progress = 100.0
                cell.updated_at = utcnow()
                self._publish(cell, "uploads.progress")
        try:
            self._executor.submit(self._finalize, cell)
        except RuntimeError as exc:
            self._fail_finalize(cell, PersistenceError(f"finalize unavailable: {exc}"))
        return True

    def _finalize(self, cell: _UploadCell) -> None:
        uploads = self.config.uploads
        meta = cell.metadata
        record = FileRecord(
            name=meta.name.strip(),
            mime_type=cell.mime_type,
            size_bytes=meta.size_bytes,
            owner_id=meta.owner_id,
            status=FileStatus.COMPLETED,
            tags=tuple(meta.tags),
        )
        delay = uploads.persist_backoff_seconds
        attempts = max(1, uploads.persist_max_attempts)
        last_error: Optional[DropVaultError] = None
        try:
            for attempt in range(1, attempts + 1):
                with cell.lock:
                    cell.attempts = attempt
                try:
                    stored = self.record_store.create_file(record)
                except PersistenceError as exc:
                    last_error = exc
                    self.emit_metric("upload.persist_retry", attempt, handle_id=cell.handle.handle_id)
                    logger.warning(
                        "Persisting upload %s failed (attempt %d/%d): %s",
                        cell.handle.handle_id,
                        attempt,
                        attempts,
                        exc,
                    )
                    if attempt == attempts:
                        break
                    with cell.lock:
                        cell.error, cell.error_kind = str(exc), exc.kind
                        self._publish(cell, "uploads.status")
                    self.sleep(delay)
                    delay = min(delay * uploads.persist_backoff_multiplier, uploads.persist_backoff_max_seconds)
                    continue
                with cell.lock:
                    self._transition(cell, UploadStatus.COMPLETED, file_id=stored.id)
                latency_ms = max(0.0, (utcnow() - cell.created_at).total_seconds() * 1000)
                self.emit_metric("upload.finalize", 1, handle_id=cell.handle.handle_id)
                self.emit_metric("ingest.latency_ms", latency_ms)
                logger.info("Upload %s persisted as file %s", cell.handle.handle_id, stored.id)
                return
            self._fail_finalize(cell, last_error)
        except Exception as exc:
            logger.exception("Unexpected error finalizing upload %s", cell.handle.handle_id)
            self._fail_finalize(cell, exc)
        finally:
            self._release(cell)

    def _fail_finalize(self, cell: _UploadCell, error: BaseException) -> None:
        with cell.lock:
            if cell.status.is_terminal:
                return
            self._transition(cell, UploadStatus.FAILED, error=error)
        self.emit_metric("upload.failed", 1, handle_id=cell.handle.handle_id, kind=error_kind(error))
        logger.error("Upload %s failed: %s", cell.handle.handle_id, error)
        self._release(cell)

    def _transition(
        self,
        cell: _UploadCell,
        status: UploadStatus,
        *,
        file_id: Optional[str] = None,
        error: Optional[BaseException] = None,
    ) -> None:
        # Caller holds cell.lock.
        if status not in ALLOWED_TRANSITIONS[cell.status]:
            raise InvalidStateError(f"cannot move upload from {cell.status.value} to {status.value}")
        cell.status = status
        cell.updated_at = utcnow()
        if file_id is not None:
            cell.file_id = file_id
        if status is UploadStatus.COMPLETED:
            cell.error = cell.error_kind = None
        if error is not None:
            cell.error = str(error)
            cell.error_kind = error_kind(error)
        self._publish(cell, "uploads.status")
        if status.is_terminal:
            cell.stop.set()
            if status is not UploadStatus.CANCELLED:
                self._retire(cell)
            cell.done.set()

    def _retire(self, cell: _UploadCell) -> None:
        """Keep the most recent terminal uploads describable; evict the oldest."""
        limit = max(0, self.config.uploads.retain_terminal)
        with self._registry_lock:
            self._retired[cell.handle.handle_id] = None
            while len(self._retired) > limit:
                evicted, _ = self._retired.popitem(last=False)
                self._uploads.pop(evicted, None)
                logger.debug("Evicted terminal upload %s from the registry", evicted)

    def _publish(self, cell: _UploadCell, topic: str) -> None:
        event = UploadEvent(
            handle_id=cell.handle.handle_id,
            status=cell.status,
            progress=cell.progress,
            file_id=cell.file_id,
            error_kind=cell.error_kind,
            error=cell.error,
            attempt=cell.attempts,
        )
        self.bus.publish(MessageEnvelope(topic=topic, payload=event.to_dict()))
        if cell.listener is not None:
            try:
                cell.listener(event)
            except Exception:
                logger.exception("Upload listener for %s failed", cell.handle.handle_id)

    def _release(self, cell: _UploadCell) -> None:
        cell.stop.set()
        worker, cell.worker = cell.worker, None
        if worker is not None and worker is not threading.current_thread():
            worker.join(timeout=max(1.0, self.config.uploads.tick_interval_seconds * 2))
        if cell.status.is_terminal:
            cell.listener = None

    def _describe(self, cell: _UploadCell) -> Dict[str, object]:
        return {
            "handle_id": cell.handle.handle_id,
            "name": cell.metadata.name,
            "size_bytes": cell.metadata.size_bytes,
            "mime_type": cell.mime_type,
            "owner_id": cell.metadata.owner_id,
            "status": cell.status.value,
            "progress": cell.progress,
            "file_id": cell.file_id,
            "error": cell.error,
            "error_kind": cell.error_kind,
            "attempts": cell.attempts,
            "created_at": cell.created_at.isoformat(),
            "updated_at": cell.updated_at.isoformat(),
        }

    def _lookup(self, handle: UploadHandle) -> Optional[_UploadCell]:
        with self._registry_lock:
            return self._uploads.get(handle.handle_id)

    def _require(self, handle: UploadHandle) -> _UploadCell:
        cell = self._lookup(handle)
        if cell is None:
            raise NotFoundError(f"upload {handle.handle_id} not found")
        return cell

    @staticmethod
    def _infer_mime_type(file_name: Optional[str]) -> str:
        if not file_name:
            return "application/octet-stream"
        lowered = file_name.lower()
        if lowered.endswith(".txt"):
            return "text/plain"
        if lowered.endswith(".jpg") or lowered.endswith(".jpeg"):
            return "image/jpeg"
        if lowered.endswith(".png"):
            return "image/png"
        if lowered.endswith(".gif"):
            return "image/gif"
        if lowered.endswith(".pdf"):
            return "application/pdf"
        if lowered.endswith(".zip"):
            return "application/zip"
        if lowered.endswith(".mp4"):
            return "video/mp4"
        if lowered.endswith(".mp3"):
            return "audio/mpeg"
        return "application/octet-stream"
