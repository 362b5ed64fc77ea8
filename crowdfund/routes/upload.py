from __future__ import annotations

import base64
import os
import uuid

from flask import Blueprint, current_app, request, send_from_directory, url_for
from werkzeug.utils import secure_filename

from crowdfund.errors import ApiError
from crowdfund.models.mixins import utcnow
from crowdfund.routes.api_utils import json_ok
from crowdfund.security import require_account

bp = Blueprint("upload", __name__)

# content type -> stored extension
ALLOWED_TYPES = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/png": "png",
    "image/webp": "webp",
    "image/gif": "gif",
}


def _upload_dir() -> str:
    folder = str(current_app.config.get("UPLOAD_FOLDER") or os.path.join(current_app.instance_path, "uploads"))
    os.makedirs(folder, exist_ok=True)
    return folder


@bp.post("")
def upload_image():
    user = require_account()
    file = request.files.get("image")
    if file is None or not file.filename:
        raise ApiError("No image provided", 400)

    content_type = (file.mimetype or "").lower()
    ext = ALLOWED_TYPES.get(content_type)
    if ext is None:
        raise ApiError("Invalid file type. Only JPEG, PNG, WebP and GIF images are allowed.", 400)

    max_bytes = int(current_app.config.get("MAX_UPLOAD_BYTES") or 5 * 1024 * 1024)
    data = file.stream.read(max_bytes + 1)
    if not data:
        raise ApiError("Uploaded file is empty", 400)
    if len(data) > max_bytes:
        raise ApiError(f"File too large. Maximum size is {max_bytes // (1024 * 1024)}MB.", 400)

    stamp = int(utcnow().timestamp() * 1000)
    name = secure_filename(f"{user.id}-{stamp}-{uuid.uuid4().hex[:12]}.{ext}")
    with open(os.path.join(_upload_dir(), name), "wb") as fh:
        fh.write(data)
    current_app.logger.info("user %s uploaded %s (%d bytes)", user.id, name, len(data))

    return json_ok(
        {
            "url": url_for("upload.serve_upload", name=name),
            "data_url": f"data:{content_type};base64,{base64.b64encode(data).decode('ascii')}",
            "filename": name,
            "size": len(data),
            "content_type": content_type,
        },
        201,
    )


@bp.get("/<name>")
def serve_upload(name: str):
    safe = secure_filename(name)
    if not safe or safe != name:
        raise ApiError("Upload not found", 404)
    return send_from_directory(_upload_dir(), safe, max_age=3600)
