"""Data models shared by the upload coordinator, share issuer and record store."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, FrozenSet, Mapping, Optional, Tuple, Union

from .errors import ValidationError

NEVER = "never"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FileStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"


class UploadStatus(str, Enum):
    PENDING = "pending"
    UPLOADING = "uploading"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES: FrozenSet[UploadStatus] = frozenset(
    {UploadStatus.COMPLETED, UploadStatus.FAILED, UploadStatus.CANCELLED}
)

ALLOWED_TRANSITIONS: Dict[UploadStatus, FrozenSet[UploadStatus]] = {
    UploadStatus.PENDING: frozenset({UploadStatus.UPLOADING, UploadStatus.CANCELLED}),
    UploadStatus.UPLOADING: frozenset(
        {UploadStatus.COMPLETED, UploadStatus.FAILED, UploadStatus.CANCELLED}
    ),
    UploadStatus.COMPLETED: frozenset(),
    UploadStatus.FAILED: frozenset(),
    UploadStatus.CANCELLED: frozenset(),
}


class Visibility(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


@dataclass(frozen=True)
class FileRecord:
    name: str
    mime_type: str
    size_bytes: int
    owner_id: str
    status: FileStatus = FileStatus.COMPLETED
    created_at: datetime = field(default_factory=utcnow)
    tags: Tuple[str, ...] = ()
    id: Optional[str] = None


@dataclass(frozen=True)
class ShareRecord:
    file_id: str
    token: str
    visibility: Visibility
    created_at: datetime
    password_hash: Optional[str] = None
    expires_at: Optional[datetime] = None
    created_by: Optional[str] = None
    id: Optional[str] = None

    @property
    def has_password(self) -> bool:
        return self.password_hash is not None

    @property
    def never_expires(self) -> bool:
        return self.expires_at is None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and now >= self.expires_at


@dataclass(frozen=True)
class UploadHandle:
    """Opaque reference to one in-flight upload."""

    handle_id: str

    def __str__(self) -> str:
        return self.handle_id


@dataclass
class UploadMetadata:
    name: str
    size_bytes: int
    owner_id: str = "anonymous"
    mime_type: Optional[str] = None
    tags: Tuple[str, ...] = ()

    def validate(self) -> None:
        if not isinstance(self.name, str) or not self.name.strip():
            raise ValidationError("name must be a non-empty string")
        if isinstance(self.size_bytes, bool) or not isinstance(self.size_bytes, int):
            raise ValidationError("size_bytes must be an integer")
        if self.size_bytes <= 0:
            raise ValidationError("size_bytes must be positive", detail={"size_bytes": self.size_bytes})
        if not self.owner_id:
            raise ValidationError("owner_id is required")


@dataclass
class UploadEvent:
    handle_id: str
    status: UploadStatus
    progress: float
    file_id: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None
    attempt: int = 0
    timestamp: datetime = field(default_factory=utcnow)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "handle_id": self.handle_id,
            "status": self.status.value,
            "progress": self.progress,
            "file_id": self.file_id,
            "error_kind": self.error_kind,
            "error": self.error,
            "attempt": self.attempt,
            "timestamp": self.timestamp.isoformat(),
        }


ExpiresIn = Union[timedelta, str]

_POLICY_KEYS = frozenset({"visibility", "is_public", "password", "has_password", "expires_in"})


@dataclass(frozen=True)
class SharePolicy:
    """Closed set of parameters governing a share link."""

    visibility: Visibility = Visibility.PRIVATE
    password: Optional[str] = None
    expires_in: ExpiresIn = NEVER

    def __post_init__(self) -> None:
        if not isinstance(self.visibility, Visibility):
            try:
                object.__setattr__(self, "visibility", Visibility(self.visibility))
            except ValueError as exc:
                raise ValidationError(f"unknown visibility: {self.visibility!r}") from exc

    def __repr__(self) -> str:
        masked = "***" if self.password is not None else None
        return f"SharePolicy(visibility={self.visibility.value!r}, password={masked!r}, expires_in={self.expires_in!r})"

    def validate(self) -> None:
        if self.password is not None:
            if not isinstance(self.password, str) or not self.password:
                raise ValidationError("password must be a non-empty string when provided")
        if isinstance(self.expires_in, timedelta):
            if self.expires_in <= timedelta(0):
                raise ValidationError("expires_in must be a positive duration")
        elif self.expires_in != NEVER:
            raise ValidationError(f"expires_in must be a duration or {NEVER!r}")

    def expires_at(self, issued_at: datetime) -> Optional[datetime]:
        if self.expires_in == NEVER:
            return None
        try:
            return issued_at + self.expires_in
        except OverflowError as exc:
            raise ValidationError("expires_in is too far in the future") from exc

    @classmethod
    def from_settings(cls, settings: Mapping[str, Any]) -> "SharePolicy":
        """Parse UI share settings into a validated policy.

        Accepts either ``visibility`` or the ``is_public`` flag, either a bare
        ``password`` or ``has_password`` + ``password``, and ``expires_in`` as a
        number of days (``"7"``), a ``timedelta`` or ``"never"``. Unknown keys
        are rejected.
        """
        unknown = set(settings) - _POLICY_KEYS
        if unknown:
            raise ValidationError(f"unknown share settings: {', '.join(sorted(unknown))}")
        if "visibility" in settings and "is_public" in settings:
            raise ValidationError("use either visibility or is_public, not both")

        if "is_public" in settings:
            visibility = Visibility.PUBLIC if _as_bool(settings["is_public"], "is_public") else Visibility.PRIVATE
        else:
            visibility = settings.get("visibility", Visibility.PRIVATE)

        password = settings.get("password") or None
        if "has_password" in settings:
            has_password = _as_bool(settings["has_password"], "has_password")
            if has_password and not password:
                raise ValidationError("has_password is set but no password was supplied")
            if not has_password:
                password = None

        policy = cls(
            visibility=visibility,
            password=password,
            expires_in=parse_expires_in(settings.get("expires_in", NEVER)),
        )
        policy.validate()
        return policy


def parse_expires_in(value: Any) -> ExpiresIn:
    if value is None:
        return NEVER
    if isinstance(value, timedelta):
        return value
    if isinstance(value, bool):
        raise ValidationError("expires_in must be a number of days or 'never'")
    if isinstance(value, (int, float)):
        try:
            days = float(value)
        except OverflowError as exc:
            raise ValidationError(f"expires_in is out of range: {value!r}") from exc
    elif isinstance(value, str):
        text = value.strip().lower()
        if text == NEVER:
            return NEVER
        try:
            days = float(text)
        except ValueError as exc:
            raise ValidationError(f"invalid expires_in: {value!r}") from exc
    else:
        raise ValidationError(f"invalid expires_in: {value!r}")
    if not math.isfinite(days):
        raise ValidationError(f"invalid expires_in: {value!r}")
    if days <= 0:
        raise ValidationError("expires_in must be positive")
    try:
        return timedelta(days=days)
    except OverflowError as exc:
        raise ValidationError(f"expires_in is out of range: {value!r}") from exc


def _as_bool(value: Any, name: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in {"true", "false"}:
        return value.lower() == "true"
    raise ValidationError(f"{name} must be a boolean")
