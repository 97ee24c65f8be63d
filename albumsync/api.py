"""FastAPI application for the AlbumSync local server.

Exposes:
- GET  /albums.json, /manifest.json   exported artifacts
- GET  /thumbs/{name}                 cached thumbnail by file name
- GET  /image?path=<relative path>    original image under the photo root
- GET  /metadata/{id}                 client metadata blob
- PUT  /metadata/{id}                 store client metadata blob (<= 2 MB)
- POST /upload?album=<relative dir>   multipart upload into the photo root
- POST /sync/changes                  change list intake (acknowledged only)
- GET  /events                        server-sent events
- GET  /health                        liveness probe
"""

from __future__ import annotations

import hmac
import json
import os
import tempfile
from pathlib import Path, PurePosixPath
from typing import Any, List, Optional

from fastapi import FastAPI, File, Query, Request, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import FileResponse, JSONResponse, PlainTextResponse, StreamingResponse
from starlette.concurrency import run_in_threadpool
from starlette.middleware.base import BaseHTTPMiddleware

from .albums import ALBUMS_FILENAME
from .config import UploadConfig
from .errors import AuthError, ConflictError, NotFoundError, PayloadTooLargeError, SyncError, ValidationError
from .events import RETRY_HINT, EventHub
from .logging_config import get_logger
from .manifest import MANIFEST_FILENAME
from .path_utils import has_parent_escape, is_inside, resolve_inside, to_relative, validate_name
from .thumbnails import thumbnails_dir
from .utils import write_json_atomic

logger = get_logger(__name__)

TOKEN_HEADER = "X-Sync-Token"
TOKEN_QUERY = "token"
METADATA_DIRNAME = "metadata"
MAX_JSON_BODY = 2 * 1024 * 1024
THUMB_CACHE_CONTROL = "public, max-age=86400"
_COPY_CHUNK = 1024 * 1024


class TokenAuthMiddleware(BaseHTTPMiddleware):
    """Reject requests that do not carry the shared sync token."""

    def __init__(self, app, token: str):
        super().__init__(app)
        self.token = token

    async def dispatch(self, request, call_next):
        supplied = request.headers.get(TOKEN_HEADER) or request.query_params.get(TOKEN_QUERY) or ""
        if not hmac.compare_digest(supplied.encode("utf-8"), self.token.encode("utf-8")):
            error = AuthError("unauthorized")
            return PlainTextResponse(error.message, status_code=error.status_code)
        return await call_next(request)


async def _sync_error_handler(request: Request, exc: SyncError):
    return PlainTextResponse(exc.message or exc.__class__.__name__, status_code=exc.status_code)


async def _unexpected_error_handler(request: Request, exc: Exception):
    logger.error(f"Unhandled error on {request.method} {request.url.path}: {exc}")
    return JSONResponse({"error": str(exc)}, status_code=500)


def _artifact(out_folder: Path, filename: str) -> FileResponse:
    path = out_folder / filename
    if not path.is_file():
        raise NotFoundError(f"{filename} not found")
    return FileResponse(path, media_type="application/json")


async def _read_json_body(request: Request) -> Any:
    declared = request.headers.get("content-length")
    if declared and declared.isdigit() and int(declared) > MAX_JSON_BODY:
        raise PayloadTooLargeError("request body too large")
    body = await request.body()
    if len(body) > MAX_JSON_BODY:
        raise PayloadTooLargeError("request body too large")
    try:
        return json.loads(body or b"null")
    except ValueError:
        raise ValidationError("invalid JSON body")


def _upload_filename(original: Optional[str]) -> str:
    name = PurePosixPath((original or "").replace("\\", "/")).name
    if name in ("", ".", ".."):
        raise ValidationError("invalid filename")
    return name


def _free_name(dest_dir: Path, filename: str) -> Path:
    candidate = dest_dir / filename
    stem, suffix = os.path.splitext(filename)
    n = 1
    while candidate.exists():
        candidate = dest_dir / f"{stem} ({n}){suffix}"
        n += 1
    return candidate


def _check_collisions(files: List[UploadFile], dest_dir: Path) -> None:
    """Raise ConflictError if any file in the batch would land on an existing name."""
    seen = set()
    for item in files:
        filename = _upload_filename(item.filename)
        if filename in seen or (dest_dir / filename).exists():
            raise ConflictError(f"file exists: {filename}")
        seen.add(filename)


def _store_upload(upload: UploadFile, dest_dir: Path, policy: UploadConfig) -> Path:
    """Copy one uploaded file into dest_dir according to the collision policy."""
    filename = _upload_filename(upload.filename)
    target = dest_dir / filename
    if target.exists():
        if policy.on_collision == "reject":
            raise ConflictError(f"file exists: {filename}")
        if policy.on_collision == "rename":
            target = _free_name(dest_dir, filename)

    fd, tmp_name = tempfile.mkstemp(dir=dest_dir, prefix=".upload-", suffix=".tmp")
    try:
        written = 0
        with os.fdopen(fd, "wb") as handle:
            for chunk in iter(lambda: upload.file.read(_COPY_CHUNK), b""):
                written += len(chunk)
                if written > policy.max_file_size:
                    raise PayloadTooLargeError(f"file too large: {filename}")
                handle.write(chunk)
        os.replace(tmp_name, target)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise
    return target


def create_app(
    photos_root: Path,
    out_folder: Path,
    hub: Optional[EventHub] = None,
    token: Optional[str] = None,
    uploads: Optional[UploadConfig] = None,
) -> FastAPI:
    """Build the sync API bound to one photo root and output folder."""
    photos_root = Path(photos_root)
    out_folder = Path(out_folder)
    hub = hub or EventHub()
    uploads = uploads or UploadConfig()

    app = FastAPI(title="AlbumSync")
    app.state.photos_root = photos_root
    app.state.out_folder = out_folder
    app.state.hub = hub

    if token:
        app.add_middleware(TokenAuthMiddleware, token=token)
    # Added last so it wraps auth and answers CORS preflights.
    app.add_middleware(CORSMiddleware, allow_origins=["*"], allow_methods=["*"], allow_headers=["*"])
    app.add_exception_handler(SyncError, _sync_error_handler)
    app.add_exception_handler(Exception, _unexpected_error_handler)

    thumbs_dir = thumbnails_dir(out_folder)
    metadata_dir = out_folder / METADATA_DIRNAME

    @app.get("/albums.json")
    def get_albums():
        return _artifact(out_folder, ALBUMS_FILENAME)

    @app.get("/manifest.json")
    def get_manifest():
        return _artifact(out_folder, MANIFEST_FILENAME)

    @app.get("/thumbs/{name}")
    def get_thumbnail(name: str):
        validate_name(name)
        path = thumbs_dir / name
        if not is_inside(thumbs_dir, path):
            raise ValidationError("invalid name")
        if not path.is_file():
            raise NotFoundError("thumb not found")
        return FileResponse(path, headers={"Cache-Control": THUMB_CACHE_CONTROL})

    @app.get("/image")
    def get_image(path: Optional[str] = Query(None)):
        if not path:
            raise ValidationError("path required")
        target = resolve_inside(photos_root, path)
        if not target.is_file():
            raise NotFoundError("file not found")
        return FileResponse(target)

    @app.get("/metadata/{item_id}")
    def get_metadata(item_id: str):
        validate_name(item_id, "id")
        meta_path = metadata_dir / f"{item_id}.json"
        if not is_inside(metadata_dir, meta_path):
            raise ValidationError("invalid path")
        if not meta_path.is_file():
            raise NotFoundError("metadata not found")
        return FileResponse(meta_path, media_type="application/json")

    @app.put("/metadata/{item_id}")
    async def put_metadata(item_id: str, request: Request):
        validate_name(item_id, "id")
        meta_path = metadata_dir / f"{item_id}.json"
        if not is_inside(metadata_dir, meta_path):
            raise ValidationError("invalid path")
        payload = await _read_json_body(request)
        await run_in_threadpool(write_json_atomic, meta_path, payload)
        rel = to_relative(meta_path, out_folder)
        hub.broadcast("metadata", {"id": item_id, "path": rel})
        return {"ok": True, "path": rel}

    @app.post("/upload")
    def upload(
        album: str = Query(""),
        files: List[UploadFile] = File(default=[]),
    ):
        if album and has_parent_escape(album):
            raise ValidationError("invalid album")
        dest_dir = resolve_inside(photos_root, album) if album else photos_root
        if len(files) > uploads.max_files:
            raise ValidationError(f"too many files (max {uploads.max_files})")
        if dest_dir.exists() and not dest_dir.is_dir():
            raise ValidationError("invalid album")
        if uploads.on_collision == "reject":
            _check_collisions(files, dest_dir)
        dest_dir.mkdir(parents=True, exist_ok=True)

        saved = []
        for item in files:
            target = _store_upload(item, dest_dir, uploads)
            saved.append(
                {
                    "originalname": item.filename,
                    "path": to_relative(target, photos_root),
                    "size": target.stat().st_size,
                }
            )
            logger.info(f"[UPLOAD] {saved[-1]['path']}")

        hub.broadcast("upload", {"files": [entry["path"] for entry in saved]})
        return {"uploaded": len(saved), "files": saved}

    @app.post("/sync/changes")
    async def sync_changes(request: Request):
        changes = await _read_json_body(request)
        received = len(changes) if isinstance(changes, list) else 1
        logger.info(f"[sync/changes] received: {received}")
        return {"ok": True, "received": received}

    @app.get("/events")
    async def events():
        client = hub.register()

        async def stream():
            try:
                yield RETRY_HINT
                while True:
                    message = await client.get()
                    if message is None:
                        break
                    yield message
            finally:
                hub.unregister(client)

        headers = {
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        }
        return StreamingResponse(stream(), media_type="text/event-stream", headers=headers)

    @app.get("/health")
    def health():
        return {"ok": True}

    return app
