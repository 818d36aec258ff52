"""SQLAlchemy models for components and their framework versions.

A component owns many versions. Versions are partitioned into lineages by the
(framework, css_framework) pair, and at steady state one version per component
carries ``is_default``.

Structured metadata (dependencies, files, integrations...) is stored as JSON
(JSONB on PostgreSQL) so the schema can evolve without migrations.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Optional
from uuid import uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship

JsonColumn = JSON().with_variant(JSONB(), "postgresql")


def _new_id() -> str:
    return str(uuid4())


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    pass


class Component(Base):
    __tablename__ = "components"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    name: Mapped[str] = mapped_column(String(255))
    slug: Mapped[str] = mapped_column(String(255), index=True)

    is_free: Mapped[bool] = mapped_column(Boolean, default=False)
    required_tier: Mapped[str] = mapped_column(String(32), default="pro")
    access_type: Mapped[str] = mapped_column(String(32), default="preview_only")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    versions: Mapped[list["ComponentVersion"]] = relationship(
        back_populates="component", cascade="all, delete-orphan"
    )


class ComponentVersion(Base):
    __tablename__ = "component_versions"
    __table_args__ = (
        UniqueConstraint(
            "component_id",
            "framework",
            "css_framework",
            "version_number",
            name="uq_component_versions_variant_number",
        ),
        Index("idx_component_versions_framework", "framework", "css_framework"),
        Index("idx_component_versions_default", "component_id", "is_default"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    component_id: Mapped[str] = mapped_column(
        ForeignKey("components.id", ondelete="CASCADE"), index=True
    )

    version_number: Mapped[str] = mapped_column(String(20))
    framework: Mapped[str] = mapped_column(String(16))
    css_framework: Mapped[str] = mapped_column(String(16))

    code_preview: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    code_full: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    code_encrypted: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    dependencies: Mapped[Optional[Any]] = mapped_column(JsonColumn, nullable=True)
    config_required: Mapped[Optional[Any]] = mapped_column(JsonColumn, nullable=True)

    supports_dark_mode: Mapped[bool] = mapped_column(Boolean, default=False)
    dark_mode_code: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    integrations: Mapped[Optional[Any]] = mapped_column(JsonColumn, nullable=True)
    integration_code: Mapped[Optional[Any]] = mapped_column(JsonColumn, nullable=True)
    files: Mapped[Optional[Any]] = mapped_column(JsonColumn, nullable=True)

    is_default: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    component: Mapped[Component] = relationship(back_populates="versions")


class User(Base):
    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True)
    role: Mapped[str] = mapped_column(String(16), default="user")
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class License(Base):
    __tablename__ = "licenses"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id", ondelete="CASCADE"), index=True)
    tier: Mapped[str] = mapped_column(String(16), default="pro")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    payment_status: Mapped[str] = mapped_column(String(16), default="pending")
    valid_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


def ensure_tables(engine) -> None:
    Base.metadata.create_all(bind=engine)
