"""Assemble self-contained HTML previews for component versions.

Compilation is pure: :func:`compile_preview` only builds a string. Writing the
document somewhere is delegated to a :class:`StorageWriter`, by default
:class:`PreviewPublisher`, which uploads to MinIO.
"""

from __future__ import annotations

import html
import logging
import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Protocol

import yaml
from minio.error import S3Error  # type: ignore[import-not-found]

from minio_helper import build_preview_key, get_minio_client, get_preview_bucket, upload_bytes

logger = logging.getLogger(__name__)

_DEFAULT_INCLUDES_PATH = Path(__file__).resolve().parent / "preview_includes.yaml"
_EMPTY_PREVIEW = "<!-- No preview code available -->"

_DOCUMENT = """<!DOCTYPE html>
<html lang="en">
<head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>{title} - Preview</title>
    {css_include}
    <style>
        body {{ margin: 0; padding: 20px; font-family: system-ui, -apple-system, sans-serif; }}
        .preview-container {{ max-width: 1200px; margin: 0 auto; }}
    </style>
</head>
<body>
    <div class="preview-container">
        {body}
    </div>
    {framework_include}
</body>
</html>"""


class StorageWriter(Protocol):
    def write(self, key: str, data: bytes, content_type: str) -> str: ...


class PreviewStorageError(RuntimeError):
    """Raised when a compiled preview cannot be written."""


def _includes_path() -> Path:
    raw = os.getenv("PREVIEW_INCLUDES_PATH")
    return Path(raw) if raw else _DEFAULT_INCLUDES_PATH


@lru_cache(maxsize=4)
def _load_includes(path: Path) -> Dict[str, Dict[str, str]]:
    if not path.exists():
        raise FileNotFoundError(f"Preview includes file not found at {path}")
    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    return {
        "css_frameworks": dict(raw.get("css_frameworks") or {}),
        "frameworks": dict(raw.get("frameworks") or {}),
    }


def load_includes() -> Dict[str, Dict[str, str]]:
    return _load_includes(_includes_path())


def css_framework_include(css_framework: str) -> str:
    css = load_includes()["css_frameworks"]
    if css_framework in css:
        return css[css_framework] or ""
    return css.get("fallback") or ""


def framework_include(framework: str) -> str:
    return load_includes()["frameworks"].get(framework) or ""


def compile_preview(version: Any, component: Any) -> str:
    """Return the preview document for ``version`` of ``component``."""

    return _DOCUMENT.format(
        title=html.escape(component.name or "Component"),
        css_include=css_framework_include(version.css_framework),
        body=version.code_preview or _EMPTY_PREVIEW,
        framework_include=framework_include(version.framework),
    )


def preview_url(component_id: str, version_id: str) -> str:
    return "/" + build_preview_key(component_id, version_id)


class PreviewPublisher:
    """Storage writer that uploads preview documents to MinIO."""

    def __init__(self, bucket: str | None = None) -> None:
        self.bucket = bucket or get_preview_bucket()

    def write(self, key: str, data: bytes, content_type: str) -> str:
        try:
            client = get_minio_client()
            upload_bytes(client, self.bucket, key, data, content_type=content_type)
        except (S3Error, RuntimeError) as exc:
            logger.error("Failed to upload preview %s/%s: %s", self.bucket, key, exc)
            raise PreviewStorageError(f"Failed to store preview {key}: {exc}") from exc
        return "/" + key
