"""Share-link issuance and policy enforcement."""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Dict, List, Optional

from ..errors import AuthError, ConflictError, ExpiredError, NotFoundError, ValidationError
from ..messaging import InMemoryBus, MessageEnvelope
from ..models import FileRecord, SharePolicy, ShareRecord, Visibility, utcnow
from .base import BaseService
from .record_store import RecordStore

logger = logging.getLogger(__name__)

_HASH_SCHEME = "pbkdf2_sha256"


@dataclass
class ShareIssuer(BaseService):
    record_store: RecordStore
    bus: InMemoryBus
    clock: Callable[[], datetime] = utcnow
    token_factory: Optional[Callable[[], str]] = None

    def __post_init__(self) -> None:
        if self.token_factory is None:
            nbytes = self.config.sharing.token_bytes
            if nbytes < 16:
                raise ValueError("share tokens need at least 16 random bytes")
            self.token_factory = lambda: secrets.token_urlsafe(nbytes)

    def issue(self, file_id: str, policy: SharePolicy, *, created_by: Optional[str] = None) -> ShareRecord:
        if not isinstance(policy, SharePolicy):
            raise ValidationError("policy must be a SharePolicy")
        policy.validate()
        if self.record_store.get_file_by_id(file_id) is None:
            raise NotFoundError(f"file {file_id} not found")

        issued_at = self.clock()
        expires_at = policy.expires_at(issued_at)
        if expires_at is not None and expires_at <= issued_at:
            raise ValidationError("share expiry must be in the future")
        password_hash = self._hash_password(policy.password) if policy.password is not None else None

        attempts = max(1, self.config.sharing.max_token_attempts)
        for attempt in range(1, attempts + 1):
            token = self.token_factory()
            if self.record_store.get_share_by_token(token) is not None:
                self.emit_metric("share.token_collision", attempt)
                logger.warning("Share token collision for file %s (attempt %d/%d)", file_id, attempt, attempts)
                continue
            candidate = ShareRecord(
                file_id=file_id,
                token=token,
                visibility=policy.visibility,
                created_at=issued_at,
                password_hash=password_hash,
                expires_at=expires_at,
                created_by=created_by,
            )
            try:
                share = self.record_store.create_share(candidate)
            except ConflictError:
                self.emit_metric("share.token_collision", attempt)
                logger.warning("Share token taken during create for file %s (attempt %d/%d)", file_id, attempt, attempts)
                continue
            self.bus.publish(
                MessageEnvelope(
                    topic="shares.issued",
                    payload={"share_id": share.id, "file_id": file_id, "visibility": share.visibility.value},
                )
            )
            self.emit_event("share_issued", file_id=file_id, share_id=share.id, visibility=share.visibility.value)
            self.emit_metric("share.issued", 1, visibility=share.visibility.value)
            logger.info("Issued share %s for file %s (token %s...)", share.id, file_id, token[:6])
            return share
        raise ConflictError(f"unable to mint a unique share token after {attempts} attempts")

    def access(self, token: str, password: Optional[str] = None) -> FileRecord:
        """Resolve a share token to its file.

        Checks run in a fixed order: existence, expiry, password, so an expired
        link reports expiry even when the password is also wrong.
        """
        share = self.record_store.get_share_by_token(token) if token else None
        if share is None:
            self._deny("not_found")
            raise NotFoundError("share link not found")
        if share.is_expired(self.clock()):
            self._deny("expired", share)
            raise ExpiredError("share link has expired", detail={"expires_at": share.expires_at.isoformat()})
        if share.password_hash is not None:
            if password is None or not self._verify_password(password, share.password_hash):
                self._deny("auth", share)
                raise AuthError("password required" if password is None else "incorrect password")
        record = self.record_store.get_file_by_id(share.file_id)
        if record is None:
            self._deny("file_missing", share)
            raise NotFoundError("shared file no longer exists")
        self.emit_metric("share.accessed", 1, share_id=share.id)
        return record

    def revoke(self, share_id: str) -> bool:
        share = self.record_store.get_share_by_id(share_id)
        deleted = self.record_store.delete_share(share_id)
        if deleted:
            self.bus.publish(
                MessageEnvelope(
                    topic="shares.revoked",
                    payload={"share_id": share_id, "file_id": share.file_id if share else None},
                )
            )
            self.emit_event("share_revoked", share_id=share_id)
            logger.info("Revoked share %s", share_id)
        return deleted

    def get_share(self, share_id: str) -> ShareRecord:
        share = self.record_store.get_share_by_id(share_id)
        if share is None:
            raise NotFoundError(f"share {share_id} not found")
        return share

    def list_shares(
        self,
        file_id: Optional[str] = None,
        *,
        visibility: Optional[Visibility] = None,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[ShareRecord]:
        return self.record_store.list_shares(file_id=file_id, visibility=visibility, limit=limit, offset=offset)

    def link_for(self, share: ShareRecord) -> str:
        return f"{self.config.sharing.link_base_url.rstrip('/')}/{share.token}"

    def describe(self, share: ShareRecord) -> Dict[str, object]:
        return {
            "share_id": share.id,
            "file_id": share.file_id,
            "token": share.token,
            "link": self.link_for(share),
            "visibility": share.visibility.value,
            "is_public": share.visibility is Visibility.PUBLIC,
            "has_password": share.has_password,
            "expires_at": share.expires_at.isoformat() if share.expires_at else None,
            "expired": share.is_expired(self.clock()),
            "created_at": share.created_at.isoformat(),
            "created_by": share.created_by,
        }

    def _deny(self, reason: str, share: Optional[ShareRecord] = None) -> None:
        self.emit_metric("share.access_denied", 1, reason=reason)
        if share is not None:
            logger.info("Denied access to share %s: %s", share.id, reason)

    def _hash_password(self, password: str) -> str:
        sharing = self.config.sharing
        salt = secrets.token_bytes(sharing.password_salt_bytes)
        digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, sharing.password_hash_iterations)
        return f"{_HASH_SCHEME}${sharing.password_hash_iterations}${salt.hex()}${digest.hex()}"

    @staticmethod
    def _verify_password(password: str, encoded: str) -> bool:
        try:
            scheme, iterations, salt_hex, digest_hex = encoded.split("$")
            rounds = int(iterations)
            salt = bytes.fromhex(salt_hex)
            expected = bytes.fromhex(digest_hex)
        except ValueError:
            logger.error("Malformed password hash on share record")
            return False
        if scheme != _HASH_SCHEME:
            return False
        actual = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, rounds)
        return hmac.compare_digest(expected, actual)
