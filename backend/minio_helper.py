"""Utilities for writing compiled previews to MinIO."""

from __future__ import annotations

import io
import os
import re
import threading
from functools import lru_cache
from typing import Final

from minio import Minio
from minio.error import S3Error

_client_lock = threading.Lock()
_DEFAULT_ENDPOINT: Final[str] = "localhost:9000"
_DEFAULT_BUCKET: Final[str] = "component-previews"


def get_env_bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "t", "yes", "y", "on"}


def _get_required_env(name: str) -> str:
    value = os.getenv(name)
    if not value:
        raise RuntimeError(f"Missing required environment variable: {name}")
    return value


def get_preview_bucket() -> str:
    """Return the bucket compiled previews are written to."""

    return os.getenv("MINIO_PREVIEW_BUCKET", _DEFAULT_BUCKET)


@lru_cache(maxsize=1)
def _build_client() -> Minio:
    endpoint = os.getenv("MINIO_ENDPOINT", _DEFAULT_ENDPOINT)
    access_key = _get_required_env("MINIO_ACCESS_KEY")
    secret_key = _get_required_env("MINIO_SECRET_KEY")
    secure = get_env_bool("MINIO_SECURE", False)
    region = os.getenv("MINIO_REGION")

    return Minio(
        endpoint,
        access_key=access_key,
        secret_key=secret_key,
        secure=secure,
        region=region,
    )


def get_minio_client() -> Minio:
    """Return a cached MinIO client instance."""

    if _build_client.cache_info().currsize:
        return _build_client()

    with _client_lock:
        return _build_client()


def ensure_bucket(client: Minio, bucket_name: str | None = None) -> None:
    """Ensure the target bucket exists, creating it if necessary."""

    target = bucket_name or get_preview_bucket()
    try:
        exists = client.bucket_exists(target)
        if not exists:
            client.make_bucket(target)
    except S3Error as exc:
        raise RuntimeError(f"Failed to ensure bucket '{target}': {exc}") from exc


def upload_bytes(
    client: Minio,
    bucket_name: str,
    object_name: str,
    data: bytes,
    *,
    content_type: str = "application/octet-stream",
) -> None:
    ensure_bucket(client, bucket_name)
    client.put_object(
        bucket_name,
        object_name,
        io.BytesIO(data),
        length=len(data),
        content_type=content_type,
    )


def sanitize_path_segment(value: str, fallback: str) -> str:
    """Sanitize identifiers for inclusion in object keys."""

    candidate = re.sub(r"[^0-9A-Za-z._-]", "-", value.strip())
    candidate = re.sub(r"-+", "-", candidate).strip("-._")
    return candidate or fallback


def build_preview_key(component_id: str, version_id: str) -> str:
    component_part = sanitize_path_segment(component_id, "component")
    version_part = sanitize_path_segment(version_id, "version")
    return f"previews/{component_part}-{version_part}-preview.html"
