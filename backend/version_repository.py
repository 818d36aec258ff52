"""Repository for component versions backed by SQLAlchemy.

The lifecycle manager only talks to the protocols defined here. Lookups return
``None``/``False``/``[]`` for absence and never raise for it.

Default exclusivity is kept by a single UPDATE that sets ``is_default`` to
``id = :target`` for every version of the component, so the old default is
cleared and the new one set in the same statement.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol, Tuple

from sqlalchemy import case, delete, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from errors import ConflictError
from version_models import Component, ComponentVersion, User
from version_spec import Principal

logger = logging.getLogger(__name__)

_VERSION_COLUMNS = frozenset(
    {
        "id",
        "component_id",
        "version_number",
        "framework",
        "css_framework",
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
        "created_at",
        "updated_at",
    }
)


class VersionRepository(Protocol):
    def find_by_id(self, version_id: str) -> Optional[ComponentVersion]: ...

    def find_by_component(self, component_id: str) -> List[ComponentVersion]: ...

    def find_default(self, component_id: str) -> Optional[ComponentVersion]: ...

    def find_latest(self, component_id: str) -> Optional[ComponentVersion]: ...

    def find_by_framework(
        self, component_id: str, framework: str, css_framework: Optional[str] = None
    ) -> List[ComponentVersion]: ...

    def find_by_version(
        self, component_id: str, version_number: str, framework: str, css_framework: str
    ) -> Optional[ComponentVersion]: ...

    def create(self, values: Dict[str, Any]) -> ComponentVersion: ...

    def update(self, version_id: str, values: Dict[str, Any]) -> Optional[ComponentVersion]: ...

    def delete(self, version_id: str) -> bool: ...

    def set_as_default(self, version_id: str) -> bool: ...

    def paginate(
        self, page: int, limit: int, component_id: Optional[str] = None
    ) -> Tuple[List[ComponentVersion], int]: ...

    def get_version_stats(self, component_id: str) -> Dict[str, Any]: ...


class ComponentLookup(Protocol):
    def find_by_id(self, component_id: str) -> Optional[Component]: ...


class IdentityProvider(Protocol):
    def get_principal(self, user_id: str) -> Optional[Principal]: ...


class SqlVersionRepository:
    def __init__(self, session: Session):
        self.session = session

    def _newest_first(self, *criteria):
        return (
            select(ComponentVersion)
            .where(*criteria)
            .order_by(ComponentVersion.created_at.desc())
        )

    def find_by_id(self, version_id: str) -> Optional[ComponentVersion]:
        return self.session.get(ComponentVersion, version_id)

    def find_by_component(self, component_id: str) -> List[ComponentVersion]:
        stmt = self._newest_first(ComponentVersion.component_id == component_id)
        return list(self.session.scalars(stmt).all())

    def find_default(self, component_id: str) -> Optional[ComponentVersion]:
        stmt = select(ComponentVersion).where(
            ComponentVersion.component_id == component_id,
            ComponentVersion.is_default.is_(True),
        )
        return self.session.scalars(stmt).first()

    def find_latest(self, component_id: str) -> Optional[ComponentVersion]:
        stmt = self._newest_first(ComponentVersion.component_id == component_id).limit(1)
        return self.session.scalars(stmt).first()

    def find_by_framework(
        self, component_id: str, framework: str, css_framework: Optional[str] = None
    ) -> List[ComponentVersion]:
        criteria = [
            ComponentVersion.component_id == component_id,
            ComponentVersion.framework == framework,
        ]
        if css_framework:
            criteria.append(ComponentVersion.css_framework == css_framework)
        return list(self.session.scalars(self._newest_first(*criteria)).all())

    def find_by_version(
        self, component_id: str, version_number: str, framework: str, css_framework: str
    ) -> Optional[ComponentVersion]:
        stmt = select(ComponentVersion).where(
            ComponentVersion.component_id == component_id,
            ComponentVersion.version_number == version_number,
            ComponentVersion.framework == framework,
            ComponentVersion.css_framework == css_framework,
        )
        return self.session.scalars(stmt).first()

    def _assign_default(self, component_id: str, version_id: Optional[str]) -> int:
        stmt = (
            update(ComponentVersion)
            .where(ComponentVersion.component_id == component_id)
            .values(is_default=case((ComponentVersion.id == version_id, True), else_=False))
            .execution_options(synchronize_session=False)
        )
        result = self.session.execute(stmt)
        self.session.expire_all()
        return result.rowcount or 0

    def create(self, values: Dict[str, Any]) -> ComponentVersion:
        row = ComponentVersion(**{k: v for k, v in values.items() if k in _VERSION_COLUMNS})
        make_default = bool(row.is_default)
        row.is_default = False
        label = f"{row.version_number} for {row.framework}/{row.css_framework}"
        component_id = row.component_id
        try:
            # Savepoint so a duplicate only undoes this insert
            with self.session.begin_nested():
                self.session.add(row)
        except IntegrityError as exc:
            raise ConflictError(
                f"Version {label} already exists", {"componentId": component_id}
            ) from exc

        if make_default:
            self._assign_default(row.component_id, row.id)
            self.session.refresh(row)
        return row

    def update(self, version_id: str, values: Dict[str, Any]) -> Optional[ComponentVersion]:
        row = self.find_by_id(version_id)
        if row is None:
            return None

        make_default = values.get("is_default") is True
        for key, value in values.items():
            if key in _VERSION_COLUMNS and key not in {"id", "is_default"}:
                setattr(row, key, value)
        if values.get("is_default") is False:
            row.is_default = False
        self.session.flush()

        if make_default:
            self._assign_default(row.component_id, row.id)
            self.session.refresh(row)
        return row

    def delete(self, version_id: str) -> bool:
        result = self.session.execute(
            delete(ComponentVersion)
            .where(ComponentVersion.id == version_id)
            .execution_options(synchronize_session="fetch")
        )
        return (result.rowcount or 0) > 0

    def set_as_default(self, version_id: str) -> bool:
        row = self.find_by_id(version_id)
        if row is None:
            return False
        self._assign_default(row.component_id, version_id)
        return True

    def paginate(
        self, page: int, limit: int, component_id: Optional[str] = None
    ) -> Tuple[List[ComponentVersion], int]:
        criteria = []
        if component_id:
            criteria.append(ComponentVersion.component_id == component_id)

        total = self.session.scalar(
            select(func.count()).select_from(ComponentVersion).where(*criteria)
        ) or 0
        stmt = self._newest_first(*criteria).limit(limit).offset((page - 1) * limit)
        return list(self.session.scalars(stmt).all()), int(total)

    def get_version_stats(self, component_id: str) -> Dict[str, Any]:
        stmt = (
            select(
                ComponentVersion.framework,
                ComponentVersion.css_framework,
                func.count().label("count"),
            )
            .where(ComponentVersion.component_id == component_id)
            .group_by(ComponentVersion.framework, ComponentVersion.css_framework)
            .order_by(ComponentVersion.framework, ComponentVersion.css_framework)
        )
        rows = self.session.execute(stmt).all()
        by_framework = [
            {"framework": fw, "css_framework": css, "count": int(count)} for fw, css, count in rows
        ]
        return {
            "total_versions": sum(item["count"] for item in by_framework),
            "by_framework": by_framework,
        }


class SqlComponentLookup:
    def __init__(self, session: Session):
        self.session = session

    def find_by_id(self, component_id: str) -> Optional[Component]:
        return self.session.get(Component, component_id)


class SqlIdentityProvider:
    def __init__(self, session: Session):
        self.session = session

    def get_principal(self, user_id: str) -> Optional[Principal]:
        user = self.session.get(User, user_id)
        if user is None or user.deleted_at is not None:
            return None
        return Principal(userId=user.id, role=user.role)
