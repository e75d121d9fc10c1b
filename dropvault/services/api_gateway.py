"""API gateway façade for the UI boundary."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from ..errors import NotFoundError, TransferError, ValidationError
from ..messaging import InMemoryBus, MessageEnvelope
from ..models import FileRecord, FileStatus, SharePolicy, ShareRecord, UploadHandle, UploadMetadata, Visibility
from .activity_service import ActivityService
from .record_store import RecordStore
from .sharing_service import ShareIssuer
from .upload_service import Listener, UploadCoordinator

logger = logging.getLogger(__name__)


@dataclass
class DropVaultGateway:
    record_store: RecordStore
    upload_service: UploadCoordinator
    sharing_service: ShareIssuer
    activity_service: ActivityService
    bus: InMemoryBus

    # Upload lifecycle -----------------------------------------------------

    def start_upload(
        self,
        owner_id: str,
        name: str,
        size_bytes: int,
        *,
        mime_type: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        listener: Optional[Listener] = None,
    ) -> UploadHandle:
        metadata = UploadMetadata(
            name=name,
            size_bytes=size_bytes,
            owner_id=owner_id,
            mime_type=mime_type,
            tags=tuple(tags or ()),
        )
        return self.upload_service.enqueue(metadata, listener=listener)

    def describe_upload(self, handle_id: str) -> Dict[str, object]:
        return self.upload_service.describe(UploadHandle(handle_id))

    def list_uploads(self) -> List[Dict[str, object]]:
        return self.upload_service.list_uploads()

    def cancel_upload(self, handle_id: str) -> None:
        self.upload_service.cancel(UploadHandle(handle_id))

    def release_upload(self, handle_id: str) -> None:
        self.upload_service.release(UploadHandle(handle_id))

    def report_progress(self, handle_id: str, percent: float) -> bool:
        return self.upload_service.report_progress(UploadHandle(handle_id), percent)

    def report_complete(self, handle_id: str) -> bool:
        return self.upload_service.report_complete(UploadHandle(handle_id))

    def report_failure(self, handle_id: str, reason: str) -> bool:
        return self.upload_service.report_failure(UploadHandle(handle_id), TransferError(reason))

    # File records ---------------------------------------------------------

    def get_file(self, file_id: str) -> FileRecord:
        record = self.record_store.get_file_by_id(file_id)
        if record is None:
            raise NotFoundError(f"file {file_id} not found")
        return record

    def list_files(
        self,
        *,
        status: Optional[str] = None,
        tags: Optional[Iterable[str]] = None,
        owner_id: Optional[str] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[FileRecord]:
        parsed_status = None
        if status:
            try:
                parsed_status = FileStatus(status)
            except ValueError as exc:
                raise ValidationError(f"unknown file status: {status!r}") from exc
        return self.record_store.list_files(
            status=parsed_status,
            tags=tags,
            owner_id=owner_id,
            limit=limit,
            offset=offset,
        )

    def rename_file(self, file_id: str, name: str) -> FileRecord:
        record = self.record_store.update_file(file_id, name=name)
        self._file_updated(record.id, "renamed")
        return record

    def tag_file(self, file_id: str, tags: Iterable[str]) -> FileRecord:
        record = self.record_store.update_file(file_id, tags=tags)
        self._file_updated(record.id, "tagged")
        return record

    def delete_file(self, file_id: str) -> bool:
        deleted = self.record_store.delete_file(file_id)
        if not deleted:
            raise NotFoundError(f"file {file_id} not found")
        self._file_updated(file_id, "deleted")
        return deleted

    # Sharing --------------------------------------------------------------

    def issue_share(
        self,
        file_id: str,
        policy: Union[SharePolicy, Mapping[str, Any]],
        *,
        created_by: Optional[str] = None,
    ) -> ShareRecord:
        if not isinstance(policy, SharePolicy):
            policy = SharePolicy.from_settings(policy)
        return self.sharing_service.issue(file_id, policy, created_by=created_by)

    def access_share(self, token: str, password: Optional[str] = None) -> FileRecord:
        return self.sharing_service.access(token, password)

    def list_shares(
        self,
        file_id: str,
        *,
        public_only: Optional[bool] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ShareRecord]:
        visibility = None
        if public_only is not None:
            visibility = Visibility.PUBLIC if public_only else Visibility.PRIVATE
        return self.sharing_service.list_shares(file_id, visibility=visibility, limit=limit, offset=offset)

    def get_share(self, share_id: str) -> ShareRecord:
        return self.sharing_service.get_share(share_id)

    def revoke_share(self, share_id: str) -> None:
        if not self.sharing_service.revoke(share_id):
            raise NotFoundError(f"share {share_id} not found")

    def describe_share(self, share: ShareRecord) -> Dict[str, object]:
        return self.sharing_service.describe(share)

    # Activity -------------------------------------------------------------

    def list_activity(self, limit: Optional[int] = None) -> List[MessageEnvelope]:
        return self.activity_service.recent(limit)

    def _file_updated(self, file_id: str, action: str) -> None:
        self.bus.publish(MessageEnvelope(topic="files.updated", payload={"file_id": file_id, "action": action}))
        logger.info("File %s %s", file_id, action)
