from locust import HttpUser, between, task
import os

USER_ID = os.environ.get("DROPVAULT_LOAD_USER", "load-user")
SHARE_PASSWORD = "load-pass"


def _headers(extra=None):
    headers = {"Content-Type": "application/json", "X-User-Id": USER_ID}
    if extra:
        headers.update(extra)
    return headers


class ResiliencyUser(HttpUser):
    wait_time = between(0.5, 2.0)

    def on_start(self):
        self.tokens = []

    @task(3)
    def list_files(self):
        self.client.get("/files", headers=_headers())

    @task(2)
    def poll_uploads(self):
        self.client.get("/uploads", headers=_headers())

    @task(2)
    def upload_and_share(self):
        resp = self.client.post("/uploads", json={"name": "load.bin", "size_bytes": 512_000}, headers=_headers())
        if resp.status_code >= 400:
            return
        handle_id = resp.json()["handle_id"]
        # Duplicate completion signals must still persist a single record.
        self.client.post(f"/uploads/{handle_id}:complete", headers=_headers(), name="/uploads/[id]:complete")
        self.client.post(f"/uploads/{handle_id}:complete", headers=_headers(), name="/uploads/[id]:complete")
        status = self.client.get(f"/uploads/{handle_id}", headers=_headers(), name="/uploads/[id]").json()
        file_id = status.get("file_id")
        if not file_id:
            return
        share = self.client.post(
            f"/files/{file_id}:share",
            json={"visibility": "private", "password": SHARE_PASSWORD, "expires_in": "1"},
            headers=_headers(),
            name="/files/[id]:share",
        )
        if share.status_code < 400:
            self.tokens.append(share.json()["token"])

    @task(4)
    def access_share(self):
        if not self.tokens:
            return
        token = self.tokens[-1]
        self.client.post(f"/s/{token}", json={"password": SHARE_PASSWORD}, headers=_headers(), name="/s/[token]")
