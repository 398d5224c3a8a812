"""
Importer-specific utilities for uploaded CSV files and request payloads.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, Mapping

from werkzeug.datastructures import FileStorage
from werkzeug.utils import secure_filename

DEFAULT_UPLOAD_SUBDIR = "import_uploads"
CSV_EXTENSIONS: tuple[str, ...] = ("csv", "txt")


def resolve_upload_directory(app) -> Path:
    """
    Determine and create (if necessary) the directory the CLI reads relative paths from.
    """

    configured = app.config.get("IMPORTER_UPLOAD_DIR")
    if not configured:
        upload_dir = Path(app.instance_path) / DEFAULT_UPLOAD_SUBDIR
    else:
        upload_dir = Path(configured)
        if not upload_dir.is_absolute():
            upload_dir = Path(app.instance_path) / upload_dir
    upload_dir.mkdir(parents=True, exist_ok=True)
    return upload_dir


def allowed_file(filename: str, allowed_extensions: Iterable[str] = CSV_EXTENSIONS) -> bool:
    """
    Validate the uploaded filename extension against the allowed set.
    """

    if not filename or "." not in filename:
        return False
    extension = filename.rsplit(".", 1)[1].lower()
    return extension in {ext.lower() for ext in allowed_extensions}


def read_upload(file_storage: FileStorage, *, max_bytes: int) -> tuple[str, bytes]:
    """
    Return ``(safe_filename, content)`` for a multipart CSV upload.

    Reads at most ``max_bytes + 1`` bytes so oversize uploads are detected
    without buffering the whole stream.
    """

    filename = secure_filename(file_storage.filename or "")
    if not allowed_file(filename):
        raise ValueError("Only .csv uploads are supported.")
    content = file_storage.stream.read(max_bytes + 1)
    return filename, content


def build_source_payload(form: Mapping[str, Any] | None, json_body: Mapping[str, Any] | None) -> dict[str, Any]:
    """Merge form fields and a JSON body into one request payload dict."""

    payload: dict[str, Any] = {}
    if form:
        payload.update({key: form.get(key) for key in form.keys()})
    if json_body:
        payload.update(json_body)
    return payload


def is_truthy(value: Any) -> bool:
    """Interpret JSON booleans and form strings such as ``"false"`` or ``"on"``."""
    if isinstance(value, bool):
        return value
    if value is None:
        return False
    return str(value).strip().lower() in {"1", "true", "yes", "y", "on"}
