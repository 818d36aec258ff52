from types import SimpleNamespace

import pytest

import preview_compiler
from minio_helper import build_preview_key, sanitize_path_segment
from preview_compiler import PreviewPublisher, PreviewStorageError, compile_preview

TAILWIND_CDN = '<script src="https://cdn.tailwindcss.com"></script>'


def _version(framework="html", css_framework="tailwind_v4", code_preview="<div>hello</div>"):
    return SimpleNamespace(framework=framework, css_framework=css_framework, code_preview=code_preview)


def _component(name="Hero"):
    return SimpleNamespace(id="c1", name=name)


def test_document_wraps_preview_code():
    html = compile_preview(_version(), _component())

    assert html.startswith("<!DOCTYPE html>")
    assert "<title>Hero - Preview</title>" in html
    assert '<div class="preview-container">\n        <div>hello</div>' in html
    assert TAILWIND_CDN in html


def test_vanilla_css_has_no_css_include():
    html = compile_preview(_version(css_framework="vanilla_css"), _component())

    assert "cdn.tailwindcss.com" not in html


def test_unknown_css_framework_falls_back_to_tailwind():
    html = compile_preview(_version(css_framework="bootstrap"), _component())

    assert TAILWIND_CDN in html


@pytest.mark.parametrize(
    "framework, expected",
    [
        ("react", "react-dom@18/umd/react-dom.production.min.js"),
        ("vue", "vue@3/dist/vue.global.js"),
        ("alpine", "<script defer src="),
        ("svelte", "<!-- Svelte components need to be compiled -->"),
        ("angular", "<!-- Angular components need to be compiled -->"),
    ],
)
def test_framework_runtime_includes(framework, expected):
    assert expected in compile_preview(_version(framework=framework), _component())


def test_html_framework_has_no_runtime_include():
    html = compile_preview(_version(framework="html", css_framework="vanilla_css"), _component())

    assert "<script" not in html


def test_empty_preview_gets_placeholder():
    html = compile_preview(_version(code_preview=None), _component())

    assert "<!-- No preview code available -->" in html


def test_title_is_escaped():
    html = compile_preview(_version(), _component(name='<script>alert("x")</script>'))

    assert "<title>&lt;script&gt;" in html


def test_includes_path_can_be_overridden(monkeypatch, tmp_path):
    includes = tmp_path / "includes.yaml"
    includes.write_text(
        "css_frameworks:\n  tailwind_v4: '<link rel=\"stylesheet\" href=\"/tw.css\">'\n"
        "frameworks:\n  html: '<!-- html runtime -->'\n",
        encoding="utf-8",
    )
    monkeypatch.setenv("PREVIEW_INCLUDES_PATH", str(includes))

    html = compile_preview(_version(), _component())

    assert '<link rel="stylesheet" href="/tw.css">' in html
    assert "<!-- html runtime -->" in html


def test_missing_includes_file_raises(monkeypatch, tmp_path):
    monkeypatch.setenv("PREVIEW_INCLUDES_PATH", str(tmp_path / "absent.yaml"))

    with pytest.raises(FileNotFoundError):
        compile_preview(_version(), _component())


def test_preview_key_is_sanitised():
    assert build_preview_key("comp 1", "v/2") == "previews/comp-1-v-2-preview.html"
    assert sanitize_path_segment("  ", "fallback") == "fallback"


def test_publisher_uploads_to_bucket(monkeypatch):
    uploads = []
    client = object()
    monkeypatch.setattr(preview_compiler, "get_minio_client", lambda: client)
    monkeypatch.setattr(
        preview_compiler,
        "upload_bytes",
        lambda c, bucket, key, data, content_type: uploads.append((c, bucket, key, data, content_type)),
    )

    url = PreviewPublisher("previews-bucket").write("previews/a.html", b"<html>", "text/html")

    assert url == "/previews/a.html"
    assert uploads == [(client, "previews-bucket", "previews/a.html", b"<html>", "text/html")]


def test_publisher_wraps_storage_errors(monkeypatch):
    def failing_upload(*args, **kwargs):
        raise RuntimeError("Failed to ensure bucket 'previews-bucket': AccessDenied")

    monkeypatch.setattr(preview_compiler, "get_minio_client", lambda: object())
    monkeypatch.setattr(preview_compiler, "upload_bytes", failing_upload)

    with pytest.raises(PreviewStorageError):
        PreviewPublisher("previews-bucket").write("previews/a.html", b"<html>", "text/html")


def test_publisher_uses_configured_bucket(monkeypatch):
    monkeypatch.setenv("MINIO_PREVIEW_BUCKET", "custom-previews")

    assert PreviewPublisher().bucket == "custom-previews"
