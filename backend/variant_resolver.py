"""Framework x CSS-framework variant matrix for a component."""

from __future__ import annotations

import re
from typing import Any, Dict, List, Optional

from version_spec import (
    CSS_FRAMEWORKS,
    FRAMEWORKS,
    FrameworkVariant,
    VersionOut,
    VersionPayload,
)

DEFAULT_CSS_FRAMEWORK = "tailwind_v4"

FRAMEWORK_DEPENDENCIES: Dict[str, List[str]] = {
    "react": ["react", "react-dom"],
    "vue": ["vue"],
    "svelte": ["svelte"],
    "alpine": ["alpinejs"],
    "angular": ["@angular/core", "@angular/common"],
}


def list_variants(repository, component_id: str) -> List[FrameworkVariant]:
    """Every (framework, css framework) cell with its latest version, if any."""

    variants: List[FrameworkVariant] = []
    for framework in FRAMEWORKS:
        for css_framework in CSS_FRAMEWORKS:
            versions = repository.find_by_framework(component_id, framework, css_framework)
            latest = versions[0] if versions else None
            variants.append(
                FrameworkVariant(
                    framework=framework,
                    cssFramework=css_framework,
                    version=VersionOut.model_validate(latest) if latest is not None else None,
                    isAvailable=latest is not None,
                )
            )
    return variants


def group_by_framework(variants: List[FrameworkVariant]) -> List[Dict[str, Any]]:
    grouped: Dict[str, Dict[str, Any]] = {}
    for variant in variants:
        entry = grouped.setdefault(
            variant.framework,
            {"framework": variant.framework, "cssFrameworks": {}, "isAvailable": False},
        )
        entry["cssFrameworks"][variant.css_framework] = {
            "cssFramework": variant.css_framework,
            "version": variant.version.model_dump(by_alias=True, mode="json") if variant.version else None,
            "isAvailable": variant.is_available,
        }
        if variant.is_available:
            entry["isAvailable"] = True
    return list(grouped.values())


def convert_markup(code: Optional[str], framework: str) -> str:
    """Best-effort attribute rename between plain markup and JSX."""

    if not code:
        return ""
    if framework == "react":
        return re.sub(r"\bclass=", "className=", code)
    if framework == "vue":
        return code.replace("className=", "class=")
    return code


def build_variant_payload(
    component_id: str,
    framework: str,
    css_framework: Optional[str] = None,
    base_version: Any = None,
) -> VersionPayload:
    deps = FRAMEWORK_DEPENDENCIES.get(framework)
    preview = convert_markup(base_version.code_preview, framework) if base_version else ""
    return VersionPayload(
        componentId=component_id,
        framework=framework,
        cssFramework=css_framework or DEFAULT_CSS_FRAMEWORK,
        codePreview=preview or f"<!-- {framework} variant -->",
        codeFull=(convert_markup(base_version.code_full, framework) or None) if base_version else None,
        dependencies=list(deps) if deps else None,
        supportsDarkMode=bool(base_version.supports_dark_mode) if base_version else False,
        isDefault=False,
    )
