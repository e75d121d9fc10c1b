"""FastAPI gateway exposing the upload and sharing entry points."""

from __future__ import annotations

import argparse
import logging
import os
from contextlib import asynccontextmanager
from typing import Iterable, List, Literal, Optional, Union

import uvicorn
from fastapi import Depends, FastAPI, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field

from ..config import DropVaultConfig
from ..errors import DropVaultError
from ..runtime import DropVaultRuntime
from ..telemetry import configure_logging

runtime = DropVaultRuntime.bootstrap(DropVaultConfig.from_env())
logger = logging.getLogger(__name__)

_STATUS_BY_KIND = {
    "validation": 422,
    "not_found": 404,
    "auth": 401,
    "expired": 410,
    "conflict": 409,
    "invalid_state": 409,
    "persistence": 503,
    "transfer": 502,
}


@asynccontextmanager
async def _lifespan(app: FastAPI):
    logger.info("DropVault API starting (transfer mode: %s)", runtime.config.uploads.transfer_mode)
    try:
        yield
    finally:
        runtime.shutdown()
        logger.info("DropVault API stopped")


app = FastAPI(title="DropVault API", version="0.1.0", lifespan=_lifespan)

_cors_origins = [origin.strip() for origin in os.environ.get("DROPVAULT_CORS_ORIGINS", "*").split(",") if origin.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors_origins or ["*"],
    allow_credentials=False,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(DropVaultError)
async def dropvault_error_handler(request: Request, exc: DropVaultError):
    status_code = _STATUS_BY_KIND.get(exc.kind, 500)
    logger.warning("%s error on %s %s: %s", exc.kind, request.method, request.url.path, exc)
    return JSONResponse(status_code=status_code, content=exc.to_dict())


class AuthContext(BaseModel):
    user_id: str


async def get_auth_context(request: Request) -> AuthContext:
    """Development auth: the owner comes from the ``x-user-id`` header."""
    return AuthContext(user_id=request.headers.get("x-user-id", "user-123"))


class UploadRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str
    size_bytes: int
    mime_type: Optional[str] = None
    tags: List[str] = Field(default_factory=list)


class ProgressRequest(BaseModel):
    percent: float = Field(ge=0, le=100)


class FailureRequest(BaseModel):
    reason: str = Field(default="transfer failed")


class FileUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: Optional[str] = None
    tags: Optional[List[str]] = None


class ShareRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    visibility: Optional[Literal["public", "private"]] = None
    is_public: Optional[bool] = None
    password: Optional[str] = None
    has_password: Optional[bool] = None
    expires_in: Optional[Union[str, float]] = None


class ShareAccessRequest(BaseModel):
    password: Optional[str] = None


# Uploads ------------------------------------------------------------------


@app.post("/uploads")
async def enqueue_upload(payload: UploadRequest, ctx: AuthContext = Depends(get_auth_context)):
    handle = runtime.api_gateway.start_upload(
        ctx.user_id,
        payload.name,
        payload.size_bytes,
        mime_type=payload.mime_type,
        tags=payload.tags,
    )
    return runtime.api_gateway.describe_upload(handle.handle_id)


@app.get("/uploads")
async def list_uploads():
    return runtime.api_gateway.list_uploads()


@app.get("/uploads/{handle_id}")
async def get_upload(handle_id: str):
    return runtime.api_gateway.describe_upload(handle_id)


@app.delete("/uploads/{handle_id}")
async def release_upload(handle_id: str):
    runtime.api_gateway.release_upload(handle_id)
    return {"status": "released", "handle_id": handle_id}


@app.post("/uploads/{handle_id}:cancel")
async def cancel_upload(handle_id: str):
    runtime.api_gateway.cancel_upload(handle_id)
    return {"status": "cancelled", "handle_id": handle_id}


@app.post("/uploads/{handle_id}:progress")
async def report_progress(handle_id: str, payload: ProgressRequest):
    accepted = runtime.api_gateway.report_progress(handle_id, payload.percent)
    return {"accepted": accepted, "handle_id": handle_id}


@app.post("/uploads/{handle_id}:complete")
async def report_complete(handle_id: str):
    accepted = runtime.api_gateway.report_complete(handle_id)
    return {"accepted": accepted, "handle_id": handle_id}


@app.post("/uploads/{handle_id}:fail")
async def report_failure(handle_id: str, payload: FailureRequest):
    accepted = runtime.api_gateway.report_failure(handle_id, payload.reason)
    return {"accepted": accepted, "handle_id": handle_id}


# Files --------------------------------------------------------------------


@app.get("/files")
async def list_files(
    status: Optional[str] = None,
    tag: Optional[List[str]] = Query(default=None),
    mine: bool = False,
    page: int = Query(default=0, ge=0),
    limit: Optional[int] = Query(default=None, ge=1),
    ctx: AuthContext = Depends(get_auth_context),
):
    records = runtime.api_gateway.list_files(
        status=status,
        tags=tag,
        owner_id=ctx.user_id if mine else None,
        limit=limit,
        offset=_offset(page, limit),
    )
    return [_serialize_file(record) for record in records]


@app.get("/files/{file_id}")
async def get_file(file_id: str):
    return _serialize_file(runtime.api_gateway.get_file(file_id))


@app.patch("/files/{file_id}")
async def update_file(file_id: str, payload: FileUpdateRequest):
    record = runtime.api_gateway.get_file(file_id)
    if payload.name is not None:
        record = runtime.api_gateway.rename_file(file_id, payload.name)
    if payload.tags is not None:
        record = runtime.api_gateway.tag_file(file_id, payload.tags)
    return _serialize_file(record)


@app.delete("/files/{file_id}")
async def delete_file(file_id: str):
    runtime.api_gateway.delete_file(file_id)
    return {"status": "deleted", "file_id": file_id}


# Shares -------------------------------------------------------------------


@app.post("/files/{file_id}:share")
async def share_file(file_id: str, payload: ShareRequest, ctx: AuthContext = Depends(get_auth_context)):
    settings = payload.model_dump(exclude_none=True)
    share = runtime.api_gateway.issue_share(file_id, settings, created_by=ctx.user_id)
    return runtime.api_gateway.describe_share(share)


@app.get("/files/{file_id}/shares")
async def list_shares(
    file_id: str,
    public: Optional[bool] = None,
    page: int = Query(default=0, ge=0),
    limit: Optional[int] = Query(default=None, ge=1),
):
    shares = runtime.api_gateway.list_shares(file_id, public_only=public, limit=limit, offset=_offset(page, limit))
    return [runtime.api_gateway.describe_share(share) for share in shares]


@app.get("/shares/{share_id}")
async def get_share(share_id: str):
    return runtime.api_gateway.describe_share(runtime.api_gateway.get_share(share_id))


@app.delete("/shares/{share_id}")
async def revoke_share(share_id: str):
    runtime.api_gateway.revoke_share(share_id)
    return {"status": "revoked", "share_id": share_id}


@app.post("/s/{token}")
async def access_share(token: str, payload: Optional[ShareAccessRequest] = None):
    password = payload.password if payload else None
    record = runtime.api_gateway.access_share(token, password)
    return _serialize_file(record)


@app.get("/activity")
async def list_activity(limit: int = 50):
    events = runtime.api_gateway.list_activity(max(0, limit))
    return [{"topic": event.topic, "payload": event.payload} for event in reversed(events)]


def _offset(page: int, limit: Optional[int]) -> int:
    return page * limit if limit else 0


def _serialize_file(record) -> dict:
    return {
        "id": record.id,
        "name": record.name,
        "mime_type": record.mime_type,
        "size_bytes": record.size_bytes,
        "status": record.status.value,
        "owner_id": record.owner_id,
        "created_at": record.created_at.isoformat(),
        "tags": list(record.tags),
    }


def main(argv: Optional[Iterable[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Run the DropVault HTTP API")
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=8000)
    args = parser.parse_args(list(argv) if argv is not None else None)

    configure_logging(runtime.config.observability)
    uvicorn.run(app, host=args.host, port=args.port)


if __name__ == "__main__":
    main()
