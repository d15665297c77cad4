from __future__ import annotations

import logging
import uuid

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

from app.wellness.errors import ApiError, bad_request, not_found
from app.wellness.storage import UPLOAD_PREFIX, ObjectNotFound, Storage, StorageError

logger = logging.getLogger(__name__)

MAX_UPLOAD_BYTES = 25 * 1024 * 1024


def new_object_key(filename: str | None = None) -> str:
    key = f"{UPLOAD_PREFIX}/{uuid.uuid4()}"
    safe_name = secure_filename(filename or "")
    return f"{key}/{safe_name}" if safe_name else key


def check_object_key(key: str) -> str:
    """Keys handed to clients always live under uploads/."""
    key = (key or "").strip().lstrip("/")
    if not key.startswith(f"{UPLOAD_PREFIX}/") or ".." in key.split("/"):
        raise bad_request("Invalid object key")
    return key


def upload_url(storage: Storage, local_endpoint: str) -> dict:
    key = new_object_key()
    try:
        presigned = storage.presigned_put_url(key)
    except StorageError as e:
        logger.error("Presigned upload URL failed key=%s: %s", key, e)
        raise ApiError(500, "Failed to get upload URL") from e
    if presigned:
        return {"uploadUrl": presigned, "objectKey": key}
    return {"uploadUrl": f"{local_endpoint}?key={key}", "objectKey": key}


def save_upload(storage: Storage, file: FileStorage | None, *, key: str | None = None) -> dict:
    if file is None or not file.filename:
        raise bad_request("No file uploaded")
    data = file.read()
    if not data:
        raise bad_request("Uploaded file is empty")
    if len(data) > MAX_UPLOAD_BYTES:
        raise ApiError(413, "File too large. Maximum size is 25MB.")

    if key:
        key = check_object_key(key)
        safe_name = secure_filename(file.filename)
        # An upload-url key names a directory slot; keep the original file name under it.
        if safe_name and not key.endswith(f"/{safe_name}"):
            key = f"{key}/{safe_name}"
    else:
        key = new_object_key(file.filename)

    try:
        storage.put_bytes(key, data, content_type=file.mimetype or None)
    except StorageError as e:
        logger.error("Upload failed key=%s: %s", key, e)
        raise ApiError(500, "Failed to upload file") from e
    logger.info("Stored upload key=%s size=%s", key, len(data))
    return {"objectKey": key, "url": storage.public_url(key), "size": len(data)}


def delete_upload(storage: Storage, key: str) -> None:
    key = check_object_key(key)
    try:
        storage.delete(key)
    except ObjectNotFound as e:
        raise not_found("Object") from e
    except StorageError as e:
        logger.error("Delete failed key=%s: %s", key, e)
        raise ApiError(500, "Failed to delete file") from e
