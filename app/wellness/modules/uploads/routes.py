from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, request, send_file, url_for

from app.wellness.audit import record_event
from app.wellness.db import db_session
from app.wellness.errors import not_found
from app.wellness.modules.uploads.service import delete_upload, save_upload, upload_url
from app.wellness.rbac import require_login
from app.wellness.storage import InvalidObjectKey, ObjectNotFound, StorageError, storage_from_config

bp = Blueprint("uploads", __name__)


@bp.post("/api/upload-url")
@require_login
def get_upload_url():
    storage = storage_from_config(current_app.config)
    return jsonify(upload_url(storage, url_for("uploads.upload_file")))


@bp.post("/api/objects/upload")
@require_login
def get_upload_url_legacy():
    storage = storage_from_config(current_app.config)
    body = upload_url(storage, url_for("uploads.upload_file"))
    return jsonify({"uploadURL": body["uploadUrl"], "objectKey": body["objectKey"]})


@bp.post("/api/uploads")
@require_login
def upload_file():
    storage = storage_from_config(current_app.config)
    result = save_upload(storage, request.files.get("file"), key=request.args.get("key"))
    return jsonify(result), 201


@bp.delete("/api/upload/<path:object_key>")
@require_login
def delete_file(object_key: str):
    storage = storage_from_config(current_app.config)
    delete_upload(storage, object_key)
    s = db_session()
    record_event(s, actor=g.current_user, action="upload.delete", entity_type="Object", entity_id=object_key)
    s.commit()
    return jsonify({"success": True, "message": "File deleted successfully"})


@bp.get("/objects/<path:object_path>")
@require_login
def serve_object(object_path: str):
    storage = storage_from_config(current_app.config)
    try:
        obj = storage.open(object_path)
    except (ObjectNotFound, InvalidObjectKey):
        raise not_found("Object")
    except StorageError:
        current_app.logger.exception("Error accessing object %s", object_path)
        raise
    response = send_file(obj.body, mimetype=obj.content_type, max_age=3600, conditional=False)
    response.headers["Cache-Control"] = "private, max-age=3600"
    return response
