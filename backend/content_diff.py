"""Coarse field-level change detection between component versions.

This is not a code diff. The lifecycle manager only needs to know *which*
tracked fields differ so it can choose between returning the existing
version, updating it in place, or cutting a new version number.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from enum import Enum
from typing import Any, List, Optional

from pydantic import ValidationError

from version_spec import (
    CodeValidationReport,
    FieldChange,
    VersionComparison,
    VersionDiff,
    VersionPayload,
    VersionRef,
)

logger = logging.getLogger(__name__)

TRACKED_FIELDS = (
    "code_preview",
    "code_full",
    "dependencies",
    "supports_dark_mode",
    "dark_mode_code",
)

# In-place updates are allowed for at most this many changed fields, and never
# when the preview code changed.
MAX_IN_PLACE_CHANGES = 2

_EXCERPT_LEN = 100
_BASE36 = "0123456789abcdefghijklmnopqrstuvwxyz"


class ChangeDecision(str, Enum):
    NOOP = "noop"
    UPDATE_IN_PLACE = "update_in_place"
    CREATE_NEW = "create_new"


def _to_base36(value: int) -> str:
    if value == 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36[rem])
    return "".join(reversed(digits))


def content_hash(content: str) -> str:
    """Cheap 32-bit rolling hash of ``content`` rendered in base 36.

    Used as an idempotence hint in logs only; it is not collision resistant.
    """

    value = 0
    for char in content:
        value = (value * 31 + ord(char)) & 0xFFFFFFFF
    if value >= 0x80000000:
        value -= 0x100000000
    return _to_base36(abs(value))


def version_content_hash(code_preview: Optional[str], code_full: Optional[str], code_encrypted: Optional[str]) -> str:
    return content_hash((code_preview or "") + (code_full or "") + (code_encrypted or ""))


def canonical_dependencies(value: Any) -> Any:
    """Normalise stored or submitted dependencies to the schema's JSON form."""

    if not value:
        return None
    try:
        payload = VersionPayload.model_validate({"dependencies": value})
    except ValidationError:
        return value
    return payload.column_values()["dependencies"] or None


def compare_version_content(existing: Any, candidate: VersionPayload) -> VersionComparison:
    """Compare an existing version row against a candidate payload."""

    changed: List[str] = []

    if existing.code_preview != candidate.code_preview:
        changed.append("code_preview")
    if existing.code_full != (candidate.code_full or None):
        changed.append("code_full")
    if canonical_dependencies(existing.dependencies) != canonical_dependencies(
        candidate.column_values()["dependencies"]
    ):
        changed.append("dependencies")
    if bool(existing.supports_dark_mode) != bool(candidate.supports_dark_mode or False):
        changed.append("supports_dark_mode")
    if existing.dark_mode_code != (candidate.dark_mode_code or None):
        changed.append("dark_mode_code")

    return VersionComparison(
        hasChanges=bool(changed),
        changedFields=changed,
        contentHash=version_content_hash(
            candidate.code_preview, candidate.code_full, candidate.code_encrypted
        ),
    )


def decide_change(comparison: VersionComparison, force_new: bool = False) -> ChangeDecision:
    if force_new:
        return ChangeDecision.CREATE_NEW
    if not comparison.has_changes:
        return ChangeDecision.NOOP
    if (
        len(comparison.changed_fields) <= MAX_IN_PLACE_CHANGES
        and "code_preview" not in comparison.changed_fields
    ):
        return ChangeDecision.UPDATE_IN_PLACE
    return ChangeDecision.CREATE_NEW


def _excerpt(code: Optional[str]) -> Optional[str]:
    if code is None:
        return None
    if len(code) > _EXCERPT_LEN:
        return code[:_EXCERPT_LEN] + "..."
    return code


def _ref(version: Any) -> VersionRef:
    return VersionRef(id=version.id, versionNumber=version.version_number, createdAt=version.created_at)


def diff_versions(newer: Any, older: Any) -> VersionDiff:
    """Describe the tracked differences between two stored versions."""

    changes: List[FieldChange] = []

    if newer.code_preview != older.code_preview:
        changes.append(
            FieldChange(
                field="code_preview",
                oldValue=_excerpt(older.code_preview),
                newValue=_excerpt(newer.code_preview),
            )
        )

    if newer.code_full != older.code_full:
        changes.append(
            FieldChange(
                field="code_full",
                oldValue="full code modified" if older.code_full else None,
                newValue="full code modified" if newer.code_full else None,
            )
        )

    if canonical_dependencies(newer.dependencies) != canonical_dependencies(older.dependencies):
        changes.append(
            FieldChange(field="dependencies", oldValue=older.dependencies, newValue=newer.dependencies)
        )

    return VersionDiff(
        version1=_ref(newer),
        version2=_ref(older),
        changes=changes,
        hasChanges=bool(changes),
        changeCount=len(changes),
    )


def validate_version_code(version: Any, validate_dependencies: bool = False) -> CodeValidationReport:
    errors: List[str] = []
    warnings: List[str] = []

    if version.code_preview:
        if "<" not in version.code_preview:
            errors.append("Preview code does not look like markup")
    else:
        warnings.append("Version has no preview code")

    if validate_dependencies and version.dependencies is not None:
        if not isinstance(version.dependencies, list):
            errors.append("Dependencies must be a list")

    if version.supports_dark_mode and not version.dark_mode_code:
        warnings.append("Dark mode is enabled but no dark mode code is set")

    return CodeValidationReport(
        isValid=not errors,
        errors=errors,
        warnings=warnings,
        validatedAt=datetime.now(timezone.utc).isoformat(),
        framework=version.framework,
        cssFramework=version.css_framework,
    )
