"""Error taxonomy shared by the upload and sharing services.

Every error carries a stable ``kind`` so the UI boundary can render a message
without inspecting internals. Each class also derives from the closest builtin
exception, so callers written against ``KeyError``/``ValueError`` keep working.
"""

from __future__ import annotations

from typing import Optional


class DropVaultError(Exception):
    kind = "error"
    retryable = False

    def __init__(self, message: str = "", *, detail: Optional[dict] = None) -> None:
        super().__init__(message)
        self.message = message
        self.detail = detail or {}

    def __str__(self) -> str:
        return self.message or self.kind

    def to_dict(self) -> dict:
        return {"error": self.kind, "detail": self.message, **self.detail}


class ValidationError(DropVaultError, ValueError):
    kind = "validation"


class TransferError(DropVaultError, RuntimeError):
    kind = "transfer"


NetworkError = TransferError


class PersistenceError(DropVaultError, RuntimeError):
    kind = "persistence"
    retryable = True


class ConflictError(DropVaultError, RuntimeError):
    kind = "conflict"


class ExpiredError(DropVaultError, PermissionError):
    kind = "expired"


class AuthError(DropVaultError, PermissionError):
    kind = "auth"


class NotFoundError(DropVaultError, KeyError):
    kind = "not_found"


class InvalidStateError(DropVaultError, RuntimeError):
    kind = "invalid_state"


def error_kind(exc: BaseException) -> str:
    if isinstance(exc, DropVaultError):
        return exc.kind
    return "internal"
