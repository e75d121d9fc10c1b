"""FastAPI integration tests covering the upload and share flows."""

from __future__ import annotations

import os
from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

# Progress is driven through the HTTP signals rather than a background ticker
os.environ.setdefault("DROPVAULT_TRANSFER_MODE", "external")

from dropvault.api import server as api_server  # noqa: E402  (env vars must be set first)
from dropvault.config import DropVaultConfig  # noqa: E402
from dropvault.messaging import MessageEnvelope  # noqa: E402
from dropvault.models import UploadHandle  # noqa: E402
from dropvault.runtime import DropVaultRuntime  # noqa: E402


class FakeClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 3, 1, 9, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def api_client(clock, monkeypatch):
    cfg = DropVaultConfig.default()
    cfg.uploads.transfer_mode = "external"
    cfg.sharing.password_hash_iterations = 1_000
    runtime = DropVaultRuntime.bootstrap(cfg, clock=clock, sleep=lambda _: None)
    monkeypatch.setattr(api_server, "runtime", runtime)
    with TestClient(api_server.app) as client:
        yield client


def _uploaded_file(client: TestClient, name: str = "report.pdf", user: str = "alice") -> str:
    resp = client.post("/uploads", json={"name": name, "size_bytes": 2 * 1024 * 1024}, headers={"X-User-Id": user})
    resp.raise_for_status()
    handle_id = resp.json()["handle_id"]
    client.post(f"/uploads/{handle_id}:complete").raise_for_status()
    api_server.runtime.upload_service.wait(UploadHandle(handle_id), timeout=5)
    return client.get(f"/uploads/{handle_id}").json()["file_id"]


def test_upload_lifecycle_over_http(api_client: TestClient):
    resp = api_client.post(
        "/uploads",
        json={"name": "report.pdf", "size_bytes": 2 * 1024 * 1024, "tags": ["q1"]},
        headers={"X-User-Id": "alice"},
    )
    resp.raise_for_status()
    upload = resp.json()
    handle_id = upload["handle_id"]
    assert upload["status"] == "uploading"
    assert upload["mime_type"] == "application/pdf"

    progress = api_client.post(f"/uploads/{handle_id}:progress", json={"percent": 40})
    assert progress.json()["accepted"] is True
    assert api_client.get(f"/uploads/{handle_id}").json()["progress"] == 40

    assert api_client.post(f"/uploads/{handle_id}:complete").json()["accepted"] is True
    assert api_client.post(f"/uploads/{handle_id}:complete").json()["accepted"] is False
    api_server.runtime.upload_service.wait(UploadHandle(handle_id), timeout=5)

    status = api_client.get(f"/uploads/{handle_id}").json()
    assert status["status"] == "completed"
    assert status["progress"] == 100

    file_resp = api_client.get(f"/files/{status['file_id']}")
    assert file_resp.status_code == 200
    assert file_resp.json()["owner_id"] == "alice"
    assert file_resp.json()["tags"] == ["q1"]
    assert len(api_client.get("/files").json()) == 1


def test_invalid_upload_is_rejected(api_client: TestClient):
    resp = api_client.post("/uploads", json={"name": "empty.bin", "size_bytes": 0})
    assert resp.status_code == 422
    assert resp.json()["error"] == "validation"


def test_cancelled_upload_is_gone(api_client: TestClient):
    handle_id = api_client.post("/uploads", json={"name": "big.iso", "size_bytes": 4096}).json()["handle_id"]
    api_client.post(f"/uploads/{handle_id}:progress", json={"percent": 40}).raise_for_status()

    assert api_client.post(f"/uploads/{handle_id}:cancel").status_code == 200

    assert api_client.post(f"/uploads/{handle_id}:cancel").status_code == 404
    assert api_client.get(f"/uploads/{handle_id}").json()["error"] == "not_found"
    assert api_client.post(f"/uploads/{handle_id}:complete").json()["accepted"] is False
    assert api_client.get("/files").json() == []


def test_transfer_failure_is_reported(api_client: TestClient):
    handle_id = api_client.post("/uploads", json={"name": "flaky.bin", "size_bytes": 10}).json()["handle_id"]

    resp = api_client.post(f"/uploads/{handle_id}:fail", json={"reason": "connection reset"})

    assert resp.json()["accepted"] is True
    status = api_client.get(f"/uploads/{handle_id}").json()
    assert status["status"] == "failed"
    assert status["error_kind"] == "transfer"


def test_password_share_flow(api_client: TestClient, clock: FakeClock):
    file_id = _uploaded_file(api_client)

    share_resp = api_client.post(
        f"/files/{file_id}:share",
        json={"is_public": False, "has_password": True, "password": "abc123", "expires_in": "1"},
        headers={"X-User-Id": "alice"},
    )
    share_resp.raise_for_status()
    share = share_resp.json()
    assert share["link"].endswith(share["token"])
    assert share["has_password"] is True
    assert "abc123" not in share_resp.text

    assert api_client.post(f"/s/{share['token']}", json={"password": "abc123"}).json()["id"] == file_id
    wrong = api_client.post(f"/s/{share['token']}", json={"password": "guess"})
    assert wrong.status_code == 401
    assert wrong.json()["error"] == "auth"
    assert api_client.post(f"/s/{share['token']}").status_code == 401

    clock.now += timedelta(hours=25)
    expired = api_client.post(f"/s/{share['token']}", json={"password": "guess"})
    assert expired.status_code == 410
    assert expired.json()["error"] == "expired"


def test_share_validation_and_missing_file(api_client: TestClient):
    file_id = _uploaded_file(api_client)

    assert api_client.post(f"/files/{file_id}:share", json={"expires_in": "soon"}).status_code == 422
    assert api_client.post(f"/files/{file_id}:share", json={"has_password": True}).status_code == 422
    assert api_client.post(f"/files/{file_id}:share", json={"max_downloads": 1}).status_code == 422
    too_far = api_client.post(f"/files/{file_id}:share", json={"expires_in": 5_000_000})
    assert too_far.status_code == 422
    assert too_far.json()["error"] == "validation"
    assert api_client.post("/files/missing:share", json={"is_public": True}).status_code == 404


def test_revoke_and_delete_invalidate_links(api_client: TestClient):
    file_id = _uploaded_file(api_client)
    public = api_client.post(f"/files/{file_id}:share", json={"visibility": "public"}).json()
    private = api_client.post(f"/files/{file_id}:share", json={"password": "pw", "expires_in": "7"}).json()

    assert public["token"] != private["token"]
    assert [share["share_id"] for share in api_client.get(f"/files/{file_id}/shares?public=true").json()] == [
        public["share_id"]
    ]

    assert api_client.delete(f"/shares/{public['share_id']}").status_code == 200
    assert api_client.delete(f"/shares/{public['share_id']}").status_code == 404
    assert api_client.post(f"/s/{public['token']}").status_code == 404
    assert api_client.post(f"/s/{private['token']}", json={"password": "pw"}).status_code == 200

    assert api_client.delete(f"/files/{file_id}").status_code == 200
    missing = api_client.post(f"/s/{private['token']}", json={"password": "pw"})
    assert missing.status_code == 404
    assert missing.json()["error"] == "not_found"


def test_file_updates_show_in_activity(api_client: TestClient):
    file_id = _uploaded_file(api_client, name="draft.txt", user="bob")
    _uploaded_file(api_client, name="other.txt", user="carol")

    patched = api_client.patch(f"/files/{file_id}", json={"name": "final.txt", "tags": ["done"]})
    assert patched.json()["name"] == "final.txt"
    assert patched.json()["tags"] == ["done"]

    mine = api_client.get("/files?mine=true", headers={"X-User-Id": "bob"}).json()
    assert [record["id"] for record in mine] == [file_id]
    assert [record["id"] for record in api_client.get("/files?tag=done").json()] == [file_id]
    assert api_client.get("/files?status=bogus").status_code == 422

    activity = api_client.get("/activity?limit=5").json()
    assert activity[0]["topic"] == "files.updated"
    assert activity[0]["payload"] == {"file_id": file_id, "action": "tagged"}


def test_share_lookup_and_paging(api_client: TestClient):
    file_id = _uploaded_file(api_client)
    issued = [api_client.post(f"/files/{file_id}:share", json={"visibility": "public"}).json() for _ in range(3)]

    fetched = api_client.get(f"/shares/{issued[1]['share_id']}").json()
    assert fetched["token"] == issued[1]["token"]
    assert "password_hash" not in fetched
    assert api_client.get("/shares/unknown").status_code == 404

    second_page = api_client.get(f"/files/{file_id}/shares?limit=2&page=1").json()
    assert [share["share_id"] for share in second_page] == [issued[2]["share_id"]]
    assert api_client.get(f"/files/{file_id}/shares?limit=0").status_code == 422


def test_file_listing_pages(api_client: TestClient):
    for index in range(5):
        _uploaded_file(api_client, name=f"page-{index}.txt")
    everything = [record["id"] for record in api_client.get("/files").json()]

    first = api_client.get("/files?limit=2").json()
    third = api_client.get("/files?limit=2&page=2").json()

    assert [record["id"] for record in first] == everything[:2]
    assert [record["id"] for record in third] == everything[4:]


def test_released_uploads_disappear(api_client: TestClient):
    handle_id = api_client.post("/uploads", json={"name": "short.txt", "size_bytes": 10}).json()["handle_id"]
    assert api_client.delete(f"/uploads/{handle_id}").status_code == 409

    api_client.post(f"/uploads/{handle_id}:complete").raise_for_status()
    api_server.runtime.upload_service.wait(UploadHandle(handle_id), timeout=5)

    assert api_client.delete(f"/uploads/{handle_id}").status_code == 200
    assert api_client.get(f"/uploads/{handle_id}").status_code == 404
    assert api_client.get("/uploads").json() == []


def test_runtime_shutdown_detaches_activity_feed():
    cfg = DropVaultConfig.default()
    cfg.uploads.transfer_mode = "external"
    runtime = DropVaultRuntime.bootstrap(cfg)
    runtime.api_gateway.start_upload("alice", "before.txt", 10)

    runtime.shutdown()
    recorded = len(runtime.activity_service.recent())
    runtime.bus.publish(
        MessageEnvelope(topic="files.updated", payload={"file_id": "f-1", "action": "renamed"})
    )

    assert [event.payload["status"] for event in runtime.activity_service.recent()] == ["pending", "uploading", "cancelled"]
    assert len(runtime.activity_service.recent()) == recorded
