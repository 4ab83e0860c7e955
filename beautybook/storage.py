"""S3 storage for provider gallery media and avatars."""
from __future__ import annotations

import uuid

import boto3
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app

IMAGE_TYPES = {"jpg": "image/jpeg", "jpeg": "image/jpeg", "png": "image/png", "webp": "image/webp", "gif": "image/gif"}
VIDEO_TYPES = {"mp4": "video/mp4", "mov": "video/quicktime", "webm": "video/webm"}

StorageError = (BotoCoreError, ClientError)


def media_kind(filename: str) -> str | None:
    """``image``/``video`` for a supported extension, else ``None``."""
    extension = filename.rsplit(".", 1)[-1].lower() if "." in filename else ""
    if extension in IMAGE_TYPES:
        return "image"
    if extension in VIDEO_TYPES:
        return "video"
    return None


def file_size(file) -> int:
    """Byte length of an uploaded ``FileStorage``; the stream is rewound."""
    file.stream.seek(0, 2)
    size = file.stream.tell()
    file.stream.seek(0)
    return size


def _bucket() -> str:
    return current_app.config["AWS_S3_BUCKET"]


def public_url(key: str) -> str:
    return f"https://{_bucket()}.s3.amazonaws.com/{key}"


def upload(file, prefix: str) -> tuple[str, str]:
    """Upload a werkzeug ``FileStorage`` under ``prefix``; returns ``(key, url)``."""
    extension = file.filename.rsplit(".", 1)[-1].lower()
    key = f"{prefix}/{uuid.uuid4()}.{extension}"
    content_type = file.content_type or IMAGE_TYPES.get(extension) or VIDEO_TYPES.get(extension)

    s3_client = boto3.client("s3")
    s3_client.upload_fileobj(
        file,
        _bucket(),
        key,
        ExtraArgs={"ContentType": content_type or "application/octet-stream"},
    )
    return key, public_url(key)


def delete(key: str) -> None:
    try:
        boto3.client("s3").delete_object(Bucket=_bucket(), Key=key)
    except StorageError as exc:
        # row already deleted by the caller
        current_app.logger.warning("Failed to delete S3 object %s: %s", key, exc)
