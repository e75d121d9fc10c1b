from __future__ import annotations

import pytest

from dropvault.clients.vault_client import VaultClient, token_from_link
from dropvault.errors import AuthError, DropVaultError, ExpiredError, InvalidStateError, ValidationError


class _DummyResponse:
    def __init__(self, payload, status_code=200):
        self._payload = payload
        self.status_code = status_code

    def json(self):
        if isinstance(self._payload, Exception):
            raise self._payload
        return self._payload


class _StubHTTP:
    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def _respond(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        return self.responses.pop(0)

    def get(self, url, headers, timeout):
        return self._respond("get", url, headers=headers)

    def post(self, url, headers, timeout, json=None):
        return self._respond("post", url, headers=headers, json=json)

    def delete(self, url, headers, timeout):
        return self._respond("delete", url, headers=headers)


def test_wait_for_upload_polls_until_terminal():
    http = _StubHTTP(
        [
            _DummyResponse({"status": "uploading", "progress": 20.0}),
            _DummyResponse({"status": "uploading", "progress": 20.0}),
            _DummyResponse({"status": "uploading", "progress": 70.0}),
            _DummyResponse({"status": "completed", "progress": 100.0, "file_id": "file-1"}),
        ]
    )
    client = VaultClient(base_url="http://localhost:8000/", user_id="alice", http_client=http)
    seen, naps = [], []

    final = client.wait_for_upload("h-1", on_progress=lambda status: seen.append(status["progress"]), sleep=naps.append)

    assert final["file_id"] == "file-1"
    assert seen == [20.0, 70.0, 100.0]
    assert len(naps) == 3
    assert http.calls[0][1] == "http://localhost:8000/uploads/h-1"
    assert http.calls[0][2]["headers"]["X-User-Id"] == "alice"


def test_wait_for_upload_gives_up():
    http = _StubHTTP([_DummyResponse({"status": "uploading", "progress": 1.0})] * 3)
    client = VaultClient(base_url="http://localhost:8000", http_client=http)

    with pytest.raises(TimeoutError):
        client.wait_for_upload("h-2", max_polls=3, sleep=lambda _: None)


def test_share_builds_policy_payload():
    http = _StubHTTP([_DummyResponse({"token": "tok", "link": "https://dropvault.example.com/share/tok"})])
    client = VaultClient(base_url="http://localhost:8000", http_client=http)

    client.share("file-9", public=False, password="abc123", expires_in="1")

    method, url, kwargs = http.calls[0]
    assert method == "post"
    assert url.endswith("/files/file-9:share")
    assert kwargs["json"] == {"visibility": "private", "expires_in": "1", "password": "abc123"}


def test_open_link_extracts_token_and_sends_password():
    http = _StubHTTP([_DummyResponse({"id": "file-9"})])
    client = VaultClient(base_url="http://localhost:8000", http_client=http)

    record = client.open_link("https://dropvault.example.com/share/tok-123", password="abc123")

    assert record["id"] == "file-9"
    assert http.calls[0][1] == "http://localhost:8000/s/tok-123"
    assert http.calls[0][2]["json"] == {"password": "abc123"}


def test_error_bodies_map_to_error_kinds():
    http = _StubHTTP(
        [
            _DummyResponse({"error": "auth", "detail": "incorrect password"}, status_code=401),
            _DummyResponse({"error": "expired", "detail": "share link has expired"}, status_code=410),
            _DummyResponse(ValueError("not json"), status_code=502),
        ]
    )
    client = VaultClient(base_url="http://localhost:8000", http_client=http)

    with pytest.raises(AuthError, match="incorrect password"):
        client.open_link("tok", password="nope")
    with pytest.raises(ExpiredError):
        client.open_link("tok")
    with pytest.raises(DropVaultError, match="HTTP 502"):
        client.revoke("share-1")


def test_token_from_link_variants():
    assert token_from_link("https://dropvault.example.com/share/abc/") == "abc"
    assert token_from_link("  raw-token ") == "raw-token"
    with pytest.raises(ValidationError):
        token_from_link("https://dropvault.example.com/")


def test_release_and_share_lookup_use_rest_paths():
    http = _StubHTTP(
        [
            _DummyResponse({"status": "released", "handle_id": "h-9"}),
            _DummyResponse({"share_id": "s-1", "token": "tok"}),
            _DummyResponse({"error": "invalid_state", "detail": "upload h-10 is still uploading"}, status_code=409),
        ]
    )
    client = VaultClient(base_url="http://localhost:8000", http_client=http)

    assert client.release("h-9")["status"] == "released"
    assert client.get_share("s-1")["token"] == "tok"
    with pytest.raises(InvalidStateError):
        client.release("h-10")

    assert [(method, url) for method, url, _ in http.calls] == [
        ("delete", "http://localhost:8000/uploads/h-9"),
        ("get", "http://localhost:8000/shares/s-1"),
        ("delete", "http://localhost:8000/uploads/h-10"),
    ]
