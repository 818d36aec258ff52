"""Create, update, delete and promote component versions.

Version state per row: absent -> created -> (updated)* -> deleted, with an
orthogonal ``is_default`` flag. All mutating operations require an admin
requester. Creation consults the content diff so that resubmitting the same
content does not produce a new version number.
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Union

from access_gate import resolve_access, with_access
from content_diff import (
    ChangeDecision,
    compare_version_content,
    decide_change,
    diff_versions,
    validate_version_code,
)
from errors import ConflictError, NotFoundError, UnauthorizedError, VersionValidationError
from minio_helper import build_preview_key
from preview_compiler import StorageWriter, compile_preview, preview_url
from variant_resolver import build_variant_payload, list_variants
from version_numbers import INITIAL_VERSION, generate_version_number
from version_spec import (
    FRAMEWORKS,
    CompiledPreview,
    FrameworkCount,
    FrameworkVariant,
    PageInfo,
    Principal,
    VersionDiff,
    VersionPage,
    VersionPayload,
    VersionStats,
    VersionWithAccess,
)

logger = logging.getLogger(__name__)

REQUIRED_CREATE_FIELDS = ("component_id", "framework", "css_framework", "code_preview")

UPDATABLE_FIELDS = frozenset(
    {
        "code_preview",
        "code_full",
        "code_encrypted",
        "dependencies",
        "config_required",
        "supports_dark_mode",
        "dark_mode_code",
        "integrations",
        "integration_code",
        "files",
        "is_default",
    }
)

DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

Requester = Union[Principal, str, None]


def _missing(values: Dict[str, Any], fields: Iterable[str]) -> List[str]:
    return [field for field in fields if values.get(field) in (None, "")]


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class VersionLifecycleManager:
    def __init__(self, versions, components, identities=None, subscriptions=None):
        self.versions = versions
        self.components = components
        self.identities = identities
        self.subscriptions = subscriptions

    # -- guards -------------------------------------------------------------

    def authorize_admin(self, requester: Requester) -> Principal:
        if not requester:
            raise UnauthorizedError("Authentication required")

        principal: Optional[Principal]
        if isinstance(requester, Principal):
            principal = requester
        else:
            principal = self.identities.get_principal(requester) if self.identities else None

        if principal is None or not principal.is_admin:
            raise UnauthorizedError("Administrator permissions required")
        return principal

    def require_component(self, component_id: str):
        component = self.components.find_by_id(component_id)
        if component is None:
            raise NotFoundError(f"Component {component_id} not found")
        return component

    def require_version(self, version_id: str):
        version = self.versions.find_by_id(version_id)
        if version is None:
            raise NotFoundError(f"Component version {version_id} not found")
        return version

    def decorate(self, version, user_id: Optional[str] = None) -> VersionWithAccess:
        component = self.components.find_by_id(version.component_id)
        if component is None:
            raise NotFoundError(f"Component {version.component_id} for version {version.id} not found")
        return with_access(version, resolve_access(component, version, user_id, self.subscriptions))

    # -- reads --------------------------------------------------------------

    def get_version(self, version_id: str, user_id: Optional[str] = None) -> VersionWithAccess:
        logger.info("getVersion id=%s user=%s", version_id, user_id)
        return self.decorate(self.require_version(version_id), user_id)

    def get_default_version(self, component_id: str, user_id: Optional[str] = None) -> VersionWithAccess:
        """Default version, else the most recently created one."""

        logger.info("getDefaultVersion component=%s user=%s", component_id, user_id)
        version = self.versions.find_default(component_id)
        if version is None:
            version = self.versions.find_latest(component_id)
        if version is None:
            raise NotFoundError(f"Component {component_id} has no versions")
        return self.decorate(version, user_id)

    def get_version_by_framework(
        self,
        component_id: str,
        framework: str,
        css_framework: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> VersionWithAccess:
        logger.info(
            "getVersionByFramework component=%s framework=%s css=%s", component_id, framework, css_framework
        )
        versions = self.versions.find_by_framework(component_id, framework, css_framework)
        if not versions:
            suffix = f" with {css_framework}" if css_framework else ""
            raise NotFoundError(f"No version available for {framework}{suffix}")
        return self.decorate(versions[0], user_id)

    def list_versions(
        self,
        component_id: str,
        page: Optional[int] = 1,
        limit: Optional[int] = DEFAULT_PAGE_SIZE,
        user_id: Optional[str] = None,
    ) -> VersionPage:
        self.require_component(component_id)
        page = max(1, page or 1)
        limit = min(MAX_PAGE_SIZE, max(1, limit or DEFAULT_PAGE_SIZE))

        rows, total = self.versions.paginate(page, limit, component_id)
        total_pages = (total + limit - 1) // limit
        return VersionPage(
            items=[self.decorate(row, user_id) for row in rows],
            pagination=PageInfo(
                page=page,
                limit=limit,
                total=total,
                totalPages=total_pages,
                hasNext=page < total_pages,
                hasPrev=page > 1,
            ),
        )

    def list_variants(self, component_id: str) -> List[FrameworkVariant]:
        self.require_component(component_id)
        return list_variants(self.versions, component_id)

    def get_version_stats(self, component_id: str) -> VersionStats:
        stats = self.versions.get_version_stats(component_id)
        latest = self.versions.find_latest(component_id)
        default = self.versions.find_default(component_id)
        return VersionStats(
            totalVersions=stats["total_versions"],
            frameworkBreakdown=[
                FrameworkCount(framework=item["framework"], cssFramework=item["css_framework"], count=item["count"])
                for item in stats["by_framework"]
            ],
            latestVersion=latest.version_number if latest else INITIAL_VERSION,
            defaultFramework=default.framework if default else "react",
        )

    def compare_versions(self, version_id: str, other_id: str) -> VersionDiff:
        return diff_versions(self.require_version(version_id), self.require_version(other_id))

    def validate_code(self, version_id: str, validate_dependencies: bool = False):
        return validate_version_code(self.require_version(version_id), validate_dependencies)

    # -- mutations ----------------------------------------------------------

    def create_version(self, payload: VersionPayload, requester: Requester, force_new: bool = False):
        logger.info(
            "createVersion component=%s framework=%s css=%s force=%s",
            payload.component_id,
            payload.framework,
            payload.css_framework,
            force_new,
        )
        self.authorize_admin(requester)

        values = payload.column_values()
        missing = _missing(values, REQUIRED_CREATE_FIELDS)
        if missing:
            raise VersionValidationError(
                f"Missing required fields: {', '.join(missing)}", {"missingFields": missing}
            )

        self.require_component(payload.component_id)

        lineage = self.versions.find_by_framework(
            payload.component_id, payload.framework, payload.css_framework
        )
        if lineage:
            latest = lineage[0]
            comparison = compare_version_content(latest, payload)
            decision = decide_change(comparison, force_new)
            if decision is ChangeDecision.NOOP:
                logger.info("createVersion no changes detected, returning %s (hash=%s)", latest.id, comparison.content_hash)
                return latest
            if decision is ChangeDecision.UPDATE_IN_PLACE:
                logger.info(
                    "createVersion minor change %s on %s, updating in place",
                    comparison.changed_fields,
                    latest.id,
                )
                changes = self._whitelist(payload.column_values(only_set=True))
                for field in comparison.changed_fields:
                    changes[field] = bool(values[field]) if field == "supports_dark_mode" else (values[field] or None)
                return self._apply_update(latest.id, changes)

        version_number = generate_version_number(self.versions, payload.component_id, payload.framework)
        if self.versions.find_by_version(
            payload.component_id, version_number, payload.framework, payload.css_framework
        ):
            raise ConflictError(
                f"Version {version_number} already exists for {payload.framework}/{payload.css_framework}"
            )

        values.update(
            version_number=version_number,
            code_full=values.get("code_full") or None,
            code_encrypted=values.get("code_encrypted") or None,
            dark_mode_code=values.get("dark_mode_code") or None,
            supports_dark_mode=bool(values.get("supports_dark_mode")),
            is_default=bool(values.get("is_default")),
        )
        created = self.versions.create(values)
        logger.info("createVersion created %s as %s", created.id, created.version_number)
        return created

    @staticmethod
    def _whitelist(values: Dict[str, Any]) -> Dict[str, Any]:
        return {key: value for key, value in values.items() if key in UPDATABLE_FIELDS}

    def _apply_update(self, version_id: str, changes: Dict[str, Any]):
        updated = self.versions.update(version_id, changes)
        if updated is None:
            raise NotFoundError(f"Component version {version_id} not found")
        logger.info("updateVersion %s fields=%s", version_id, sorted(changes))
        return updated

    def update_version(self, version_id: str, payload: VersionPayload, requester: Requester):
        logger.info("updateVersion id=%s", version_id)
        self.authorize_admin(requester)
        self.require_version(version_id)
        return self._apply_update(version_id, self._whitelist(payload.column_values(only_set=True)))

    def delete_version(self, version_id: str, requester: Requester) -> None:
        logger.info("deleteVersion id=%s", version_id)
        self.authorize_admin(requester)
        version = self.require_version(version_id)
        if version.is_default:
            raise ConflictError(
                "Cannot delete the default version; set another version as default first",
                {"versionId": version_id},
            )
        if not self.versions.delete(version_id):
            raise NotFoundError(f"Component version {version_id} not found")
        logger.info("deleteVersion removed %s", version_id)

    def set_as_default(self, version_id: str, requester: Requester):
        logger.info("setAsDefault id=%s", version_id)
        self.authorize_admin(requester)
        if not self.versions.set_as_default(version_id):
            raise NotFoundError(f"Component version {version_id} not found")
        return self.require_version(version_id)

    def create_variant(
        self,
        component_id: str,
        framework: str,
        requester: Requester,
        css_framework: Optional[str] = None,
        base_version_id: Optional[str] = None,
    ):
        self.authorize_admin(requester)
        if framework not in FRAMEWORKS:
            raise VersionValidationError(f"Unsupported framework: {framework}")
        self.require_component(component_id)
        base = self.require_version(base_version_id) if base_version_id else None
        payload = build_variant_payload(component_id, framework, css_framework, base)
        return self.create_version(payload, requester, force_new=True)

    # -- previews -----------------------------------------------------------

    def compile_preview(self, version_id: str, writer: Optional[StorageWriter] = None) -> CompiledPreview:
        logger.info("compilePreview id=%s", version_id)
        version = self.require_version(version_id)
        component = self.require_component(version.component_id)

        document = compile_preview(version, component)
        if writer is not None:
            url = writer.write(
                build_preview_key(component.id, version.id),
                document.encode("utf-8"),
                "text/html; charset=utf-8",
            )
        else:
            url = preview_url(component.id, version.id)

        return CompiledPreview(
            versionId=version.id,
            previewUrl=url,
            compiledAt=_utcnow_iso(),
            html=document,
        )
