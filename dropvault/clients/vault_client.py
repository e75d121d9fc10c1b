"""HTTP client helpers for the DropVault API."""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional
from urllib.parse import urlparse

import requests

from ..errors import (
    AuthError,
    ConflictError,
    DropVaultError,
    ExpiredError,
    InvalidStateError,
    NotFoundError,
    PersistenceError,
    TransferError,
    ValidationError,
)

_ERRORS_BY_KIND = {
    cls.kind: cls
    for cls in (
        AuthError,
        ConflictError,
        ExpiredError,
        InvalidStateError,
        NotFoundError,
        PersistenceError,
        TransferError,
        ValidationError,
    )
}

TERMINAL = {"completed", "failed", "cancelled"}


@dataclass
class VaultClient:
    base_url: str
    user_id: str = "user-123"
    timeout: float = 5.0
    http_client: Any = requests

    def _url(self, suffix: str) -> str:
        base = self.base_url.rstrip("/")
        return f"{base}{suffix}"

    def _headers(self) -> Dict[str, str]:
        return {"Content-Type": "application/json", "X-User-Id": self.user_id}

    def _request(self, method: str, suffix: str, payload: Optional[dict] = None) -> Any:
        caller = getattr(self.http_client, method)
        kwargs: Dict[str, Any] = {"headers": self._headers(), "timeout": self.timeout}
        if payload is not None:
            kwargs["json"] = payload
        response = caller(self._url(suffix), **kwargs)
        if response.status_code >= 400:
            raise _decode_error(response)
        return response.json()

    # Uploads ---------------------------------------------------------------

    def enqueue(self, name: str, size_bytes: int, *, mime_type: Optional[str] = None, tags: Optional[List[str]] = None) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"name": name, "size_bytes": size_bytes, "tags": list(tags or [])}
        if mime_type:
            payload["mime_type"] = mime_type
        return self._request("post", "/uploads", payload)

    def upload_status(self, handle_id: str) -> Dict[str, Any]:
        return self._request("get", f"/uploads/{handle_id}")

    def cancel(self, handle_id: str) -> Dict[str, Any]:
        return self._request("post", f"/uploads/{handle_id}:cancel")

    def release(self, handle_id: str) -> Dict[str, Any]:
        return self._request("delete", f"/uploads/{handle_id}")

    def report_progress(self, handle_id: str, percent: float) -> Dict[str, Any]:
        return self._request("post", f"/uploads/{handle_id}:progress", {"percent": percent})

    def report_complete(self, handle_id: str) -> Dict[str, Any]:
        return self._request("post", f"/uploads/{handle_id}:complete")

    def wait_for_upload(
        self,
        handle_id: str,
        *,
        poll_interval: float = 0.5,
        max_polls: int = 120,
        on_progress: Optional[Callable[[Dict[str, Any]], None]] = None,
        sleep: Callable[[float], None] = time.sleep,
    ) -> Dict[str, Any]:
        """Poll an upload until it reaches a terminal status."""
        last_progress = -1.0
        for _ in range(max_polls):
            status = self.upload_status(handle_id)
            if on_progress and status.get("progress", 0.0) > last_progress:
                last_progress = status["progress"]
                on_progress(status)
            if status.get("status") in TERMINAL:
                return status
            sleep(poll_interval)
        raise TimeoutError(f"upload {handle_id} did not finish after {max_polls} polls")

    # Shares ----------------------------------------------------------------

    def share(
        self,
        file_id: str,
        *,
        public: bool = False,
        password: Optional[str] = None,
        expires_in: Any = "never",
    ) -> Dict[str, Any]:
        payload: Dict[str, Any] = {
            "visibility": "public" if public else "private",
            "expires_in": expires_in,
        }
        if password:
            payload["password"] = password
        return self._request("post", f"/files/{file_id}:share", payload)

    def list_shares(self, file_id: str) -> List[Dict[str, Any]]:
        return self._request("get", f"/files/{file_id}/shares")

    def get_share(self, share_id: str) -> Dict[str, Any]:
        return self._request("get", f"/shares/{share_id}")

    def revoke(self, share_id: str) -> Dict[str, Any]:
        return self._request("delete", f"/shares/{share_id}")

    def open_link(self, link_or_token: str, password: Optional[str] = None) -> Dict[str, Any]:
        """Resolve a share link (or bare token) to the shared file."""
        token = token_from_link(link_or_token)
        payload = {"password": password} if password is not None else {}
        return self._request("post", f"/s/{token}", payload)


def token_from_link(link_or_token: str) -> str:
    parsed = urlparse(link_or_token)
    if parsed.scheme and parsed.path:
        token = parsed.path.rstrip("/").rsplit("/", 1)[-1]
    else:
        token = link_or_token.strip().rstrip("/")
    if not token:
        raise ValidationError(f"no share token in {link_or_token!r}")
    return token


def _decode_error(response) -> DropVaultError:
    try:
        body = response.json()
    except ValueError:
        body = {}
    kind = body.get("error") if isinstance(body, dict) else None
    detail = body.get("detail") if isinstance(body, dict) else None
    message = detail if isinstance(detail, str) else f"HTTP {response.status_code}"
    error_cls = _ERRORS_BY_KIND.get(kind, DropVaultError)
    return error_cls(message)
