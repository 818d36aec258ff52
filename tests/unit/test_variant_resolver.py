from types import SimpleNamespace

from conftest import ADMIN, PAID_COMPONENT
from variant_resolver import build_variant_payload, convert_markup, group_by_framework, list_variants
from version_spec import CSS_FRAMEWORKS, FRAMEWORKS


def test_matrix_covers_every_pair_in_order(manager):
    variants = list_variants(manager.versions, PAID_COMPONENT)

    assert [(v.framework, v.css_framework) for v in variants] == [
        (framework, css) for framework in FRAMEWORKS for css in CSS_FRAMEWORKS
    ]
    assert not any(v.is_available for v in variants)


def test_available_cells_carry_latest_version(manager, make_payload):
    manager.create_version(make_payload(), ADMIN)
    latest = manager.create_version(make_payload(codePreview="<b>v2</b>"), ADMIN)

    variants = list_variants(manager.versions, PAID_COMPONENT)

    available = [v for v in variants if v.is_available]
    assert len(available) == 1
    assert available[0].framework == "react"
    assert available[0].css_framework == "tailwind_v4"
    assert available[0].version.id == latest.id


def test_group_by_framework(manager, make_payload):
    manager.create_version(make_payload(framework="vue", cssFramework="vanilla_css"), ADMIN)

    grouped = group_by_framework(list_variants(manager.versions, PAID_COMPONENT))

    assert [entry["framework"] for entry in grouped] == list(FRAMEWORKS)
    vue = next(entry for entry in grouped if entry["framework"] == "vue")
    assert vue["isAvailable"] is True
    assert set(vue["cssFrameworks"]) == set(CSS_FRAMEWORKS)
    assert vue["cssFrameworks"]["vanilla_css"]["version"]["versionNumber"] == "1.0.0"
    assert vue["cssFrameworks"]["tailwind_v3"]["version"] is None
    react = next(entry for entry in grouped if entry["framework"] == "react")
    assert react["isAvailable"] is False


def test_convert_markup():
    assert convert_markup('<a class="x">', "react") == '<a className="x">'
    assert convert_markup('<a className="x">', "vue") == '<a class="x">'
    assert convert_markup('<a class="x">', "svelte") == '<a class="x">'
    assert convert_markup(None, "react") == ""


def test_variant_payload_without_base():
    payload = build_variant_payload("c1", "svelte")

    assert payload.css_framework == "tailwind_v4"
    assert payload.code_preview == "<!-- svelte variant -->"
    assert payload.code_full is None
    assert [dep.name for dep in payload.dependencies] == ["svelte"]
    assert payload.is_default is False


def test_variant_payload_from_base():
    base = SimpleNamespace(
        code_preview='<div class="a">x</div>',
        code_full='<div class="a">full</div>',
        supports_dark_mode=True,
    )

    payload = build_variant_payload("c1", "react", "vanilla_css", base)

    assert payload.css_framework == "vanilla_css"
    assert payload.code_preview == '<div className="a">x</div>'
    assert payload.code_full == '<div className="a">full</div>'
    assert payload.supports_dark_mode is True


def test_html_variant_has_no_default_dependencies():
    assert build_variant_payload("c1", "html").dependencies is None
