import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Dict, List, Tuple

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Backend modules import each other by bare name
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "backend"))

from license_lookup import SqlSubscriptionLookup  # noqa: E402
from lifecycle import VersionLifecycleManager  # noqa: E402
from version_models import Component, License, User, ensure_tables  # noqa: E402
from version_repository import (  # noqa: E402
    SqlComponentLookup,
    SqlIdentityProvider,
    SqlVersionRepository,
)

FREE_COMPONENT = "comp-free"
PAID_COMPONENT = "comp-paid"
TEAM_COMPONENT = "comp-team"

ADMIN = "admin-1"
SUPER_ADMIN = "super-1"
PRO_MEMBER = "member-pro"
FREE_MEMBER = "member-free"
EXPIRED_MEMBER = "member-expired"
DELETED_ADMIN = "admin-deleted"


class FakeStorageWriter:
    """Storage writer that keeps written documents in memory."""

    def __init__(self) -> None:
        self.objects: Dict[str, Tuple[bytes, str]] = {}
        self.calls: List[str] = []

    def write(self, key: str, data: bytes, content_type: str) -> str:
        self.calls.append(key)
        self.objects[key] = (data, content_type)
        return f"https://previews.test/{key}"


@pytest.fixture
def engine():
    """In-memory SQLite shared across threads through a single connection."""
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    # pysqlite defers BEGIN on its own, which breaks SAVEPOINT
    @event.listens_for(engine, "connect")
    def _no_implicit_begin(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    ensure_tables(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session(engine):
    """Session with components, users and licenses already committed."""
    factory = sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)
    session = factory()

    now = datetime.now(timezone.utc)
    session.add_all(
        [
            Component(id=FREE_COMPONENT, name="Free Button", slug="free-button", is_free=True),
            Component(id=PAID_COMPONENT, name="Pricing <Table>", slug="pricing-table", is_free=False),
            Component(
                id=TEAM_COMPONENT, name="Team Dashboard", slug="team-dashboard", is_free=False, required_tier="team"
            ),
            User(id=ADMIN, email="admin@example.com", role="admin"),
            User(id=SUPER_ADMIN, email="root@example.com", role="super_admin"),
            User(id=PRO_MEMBER, email="pro@example.com", role="user"),
            User(id=FREE_MEMBER, email="free@example.com", role="user"),
            User(id=EXPIRED_MEMBER, email="expired@example.com", role="user"),
            User(id=DELETED_ADMIN, email="gone@example.com", role="admin", deleted_at=now),
        ]
    )
    session.flush()
    session.add_all(
        [
            License(
                user_id=PRO_MEMBER,
                tier="pro",
                is_active=True,
                payment_status="completed",
                valid_until=now + timedelta(days=30),
            ),
            License(
                user_id=EXPIRED_MEMBER,
                tier="enterprise",
                is_active=True,
                payment_status="completed",
                valid_until=now - timedelta(days=1),
            ),
        ]
    )
    session.commit()

    yield session
    session.close()


@pytest.fixture
def manager(session):
    return VersionLifecycleManager(
        versions=SqlVersionRepository(session),
        components=SqlComponentLookup(session),
        identities=SqlIdentityProvider(session),
        subscriptions=SqlSubscriptionLookup(session),
    )


@pytest.fixture
def storage_writer():
    return FakeStorageWriter()


@pytest.fixture
def make_payload():
    """Build a version payload with sensible defaults, camelCase like the wire format."""
    from version_spec import VersionPayload

    def _make(**overrides):
        body = {
            "componentId": PAID_COMPONENT,
            "framework": "react",
            "cssFramework": "tailwind_v4",
            "codePreview": '<button class="btn">Buy</button>',
            "codeFull": "export const Buy = () => <button className=\"btn\">Buy</button>;",
            "dependencies": ["react"],
        }
        body.update(overrides)
        return VersionPayload.model_validate(body)

    return _make
