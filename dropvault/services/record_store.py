"""Record store contract and the in-memory implementation used locally."""

from __future__ import annotations

import logging
import pickle
import threading
import uuid
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Dict, Iterable, List, Optional, Protocol, Tuple, runtime_checkable

from ..errors import ConflictError, NotFoundError, PersistenceError, ValidationError
from ..models import FileRecord, FileStatus, ShareRecord, Visibility

logger = logging.getLogger(__name__)


@runtime_checkable
class RecordStore(Protocol):
    """Durable keyed storage for file and share records.

    ``create_*`` receive records without an id and return them with the id the
    store assigned. Lookups return ``None`` for missing keys.
    """

    def create_file(self, record: FileRecord) -> FileRecord: ...

    def create_share(self, record: ShareRecord) -> ShareRecord: ...

    def get_file_by_id(self, file_id: str) -> Optional[FileRecord]: ...

    def get_share_by_token(self, token: str) -> Optional[ShareRecord]: ...

    def get_share_by_id(self, share_id: str) -> Optional[ShareRecord]: ...

    def update_file(
        self,
        file_id: str,
        *,
        name: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> FileRecord: ...

    def list_files(
        self,
        *,
        status: Optional[FileStatus] = None,
        tags: Optional[Iterable[str]] = None,
        owner_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[FileRecord]: ...

    def list_shares(
        self,
        *,
        file_id: Optional[str] = None,
        visibility: Optional[Visibility] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ShareRecord]: ...

    def delete_file(self, file_id: str) -> bool: ...

    def delete_share(self, share_id: str) -> bool: ...


@dataclass
class InMemoryRecordStore:
    """Thread-safe dictionary store with an optional pickle snapshot on disk."""

    state_path: Optional[str] = None
    _files: Dict[str, FileRecord] = field(default_factory=dict, init=False, repr=False)
    _shares: Dict[str, ShareRecord] = field(default_factory=dict, init=False, repr=False)
    _share_ids_by_token: Dict[str, str] = field(default_factory=dict, init=False, repr=False)
    _lock: threading.RLock = field(default_factory=threading.RLock, init=False, repr=False)
    _state_file: Optional[Path] = field(default=None, init=False, repr=False)

    def __post_init__(self) -> None:
        if self.state_path:
            self._state_file = Path(self.state_path).expanduser()
            self._state_file.parent.mkdir(parents=True, exist_ok=True)
            self._load_state()

    # Files -------------------------------------------------------------------

    def create_file(self, record: FileRecord) -> FileRecord:
        if record.id is not None:
            raise ValidationError("file records are created without an id")
        with self._lock:
            stored = replace(record, id=str(uuid.uuid4()), tags=_normalise_tags(record.tags))
            self._files[stored.id] = stored
            try:
                self._persist_state()
            except PersistenceError:
                self._files.pop(stored.id, None)
                raise
        return stored

    def get_file_by_id(self, file_id: str) -> Optional[FileRecord]:
        with self._lock:
            return self._files.get(file_id)

    def update_file(
        self,
        file_id: str,
        *,
        name: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
    ) -> FileRecord:
        with self._lock:
            current = self._files.get(file_id)
            if current is None:
                raise NotFoundError(f"file {file_id} not found")
            changes = {}
            if name is not None:
                if not name.strip():
                    raise ValidationError("name must be non-empty")
                changes["name"] = name.strip()
            if tags is not None:
                changes["tags"] = _normalise_tags(tags)
            updated = replace(current, **changes)
            self._files[file_id] = updated
            try:
                self._persist_state()
            except PersistenceError:
                self._files[file_id] = current
                raise
        return updated

    def list_files(
        self,
        *,
        status: Optional[FileStatus] = None,
        tags: Optional[Iterable[str]] = None,
        owner_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[FileRecord]:
        wanted = set(_normalise_tags(tags)) if tags else set()
        with self._lock:
            records = list(self._files.values())
        if status is not None:
            records = [record for record in records if record.status == status]
        if wanted:
            records = [record for record in records if wanted.issubset(record.tags)]
        if owner_id:
            records = [record for record in records if record.owner_id == owner_id]
        records.sort(key=lambda record: record.created_at, reverse=True)
        return _page(records, limit, offset)

    def delete_file(self, file_id: str) -> bool:
        with self._lock:
            removed = self._files.pop(file_id, None)
            if removed is not None:
                try:
                    self._persist_state()
                except PersistenceError:
                    self._files[file_id] = removed
                    raise
        return removed is not None

    # Shares ------------------------------------------------------------------

    def create_share(self, record: ShareRecord) -> ShareRecord:
        if record.id is not None:
            raise ValidationError("share records are created without an id")
        with self._lock:
            if record.token in self._share_ids_by_token:
                raise ConflictError("share token already in use")
            stored = replace(record, id=str(uuid.uuid4()))
            self._shares[stored.id] = stored
            self._share_ids_by_token[stored.token] = stored.id
            try:
                self._persist_state()
            except PersistenceError:
                self._shares.pop(stored.id, None)
                self._share_ids_by_token.pop(stored.token, None)
                raise
        return stored

    def get_share_by_token(self, token: str) -> Optional[ShareRecord]:
        with self._lock:
            share_id = self._share_ids_by_token.get(token)
            return self._shares.get(share_id) if share_id else None

    def get_share_by_id(self, share_id: str) -> Optional[ShareRecord]:
        with self._lock:
            return self._shares.get(share_id)

    def list_shares(
        self,
        *,
        file_id: Optional[str] = None,
        visibility: Optional[Visibility] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ShareRecord]:
        with self._lock:
            shares = list(self._shares.values())
        if file_id is not None:
            shares = [share for share in shares if share.file_id == file_id]
        if visibility is not None:
            shares = [share for share in shares if share.visibility == visibility]
        shares.sort(key=lambda share: share.created_at)
        return _page(shares, limit, offset)

    def delete_share(self, share_id: str) -> bool:
        with self._lock:
            removed = self._shares.pop(share_id, None)
            if removed is not None:
                self._share_ids_by_token.pop(removed.token, None)
                try:
                    self._persist_state()
                except PersistenceError:
                    self._shares[share_id] = removed
                    self._share_ids_by_token[removed.token] = share_id
                    raise
        return removed is not None

    def snapshot_stats(self) -> Dict[str, int]:
        with self._lock:
            return {"files": len(self._files), "shares": len(self._shares)}

    # Persistence helpers -----------------------------------------------------

    def _load_state(self) -> None:
        if not self._state_file or not self._state_file.exists():
            return
        try:
            with self._state_file.open("rb") as handle:
                snapshot = pickle.load(handle)
        except (OSError, pickle.PickleError, EOFError) as exc:
            logger.warning("Ignoring unreadable record store snapshot %s: %s", self._state_file, exc)
            return
        self._files = snapshot.get("files", {})
        self._shares = snapshot.get("shares", {})
        self._share_ids_by_token = {share.token: share_id for share_id, share in self._shares.items()}

    def _persist_state(self) -> None:
        if not self._state_file:
            return
        payload = {"files": self._files, "shares": self._shares}
        temp_path = self._state_file.with_suffix(self._state_file.suffix + ".tmp")
        try:
            with temp_path.open("wb") as handle:
                pickle.dump(payload, handle)
            temp_path.replace(self._state_file)
        except OSError as exc:
            raise PersistenceError(f"unable to write record store snapshot: {exc}") from exc


def _normalise_tags(tags: Iterable[str]) -> Tuple[str, ...]:
    seen = []
    for tag in tags:
        cleaned = str(tag).strip()
        if cleaned and cleaned not in seen:
            seen.append(cleaned)
    return tuple(seen)


def _page(records: List, limit: Optional[int], offset: int) -> List:
    if offset < 0 or (limit is not None and limit < 0):
        raise ValidationError("limit and offset must be non-negative")
    if limit is None:
        return records[offset:]
    return records[offset:offset + limit]
