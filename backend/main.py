import logging
import os
from contextlib import asynccontextmanager, contextmanager
from typing import Any, Dict, Iterator, List, Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import HTMLResponse, JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy.orm import Session

from batch import BatchCoordinator, ManagerScope
from db import db_session, get_engine, should_run_migrations
from errors import NotFoundError, VersionEngineError
from license_lookup import build_subscription_lookup
from lifecycle import VersionLifecycleManager
from preview_compiler import PreviewPublisher, PreviewStorageError, StorageWriter
from variant_resolver import group_by_framework
from version_models import ensure_tables
from version_repository import SqlComponentLookup, SqlIdentityProvider, SqlVersionRepository
from version_spec import (
    BatchReport,
    BatchRequest,
    CodeValidationReport,
    CompiledPreview,
    CssFramework,
    Principal,
    VersionDiff,
    VersionOut,
    VersionPage,
    VersionPayload,
    VersionStats,
    VersionWithAccess,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)


class VariantRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    css_framework: Optional[CssFramework] = Field(None, alias="cssFramework")
    base_version_id: Optional[str] = Field(None, alias="baseVersionId")


class DeleteResponse(BaseModel):
    id: str
    deleted: bool = True


@asynccontextmanager
async def lifespan(_app: FastAPI):
    if should_run_migrations():
        logger.info("RUN_MIGRATIONS enabled, creating tables")
        ensure_tables(get_engine())
    yield


app = FastAPI(title="Component Versions", version="0.1.0", lifespan=lifespan)

# Allow CORS in dev so the admin frontend can call the API easily
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(VersionEngineError)
def handle_engine_error(_request: Request, exc: VersionEngineError) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={"error": exc.kind, "message": exc.message, "details": exc.details},
    )


@app.exception_handler(RequestValidationError)
def handle_request_validation(_request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=422,
        content={
            "error": "validation_error",
            "message": "Request validation failed",
            "details": {"errors": jsonable_errors(exc)},
        },
    )


@app.exception_handler(PreviewStorageError)
def handle_storage_error(_request: Request, exc: PreviewStorageError) -> JSONResponse:
    return JSONResponse(
        status_code=502,
        content={"error": "storage_error", "message": str(exc), "details": {}},
    )


def jsonable_errors(exc: RequestValidationError) -> List[Dict[str, Any]]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", ""), "type": error.get("type", "")}
        for error in exc.errors()
    ]


# -- dependencies -----------------------------------------------------------


def get_session() -> Iterator[Session]:
    with db_session() as session:
        yield session


def build_manager(session: Session) -> VersionLifecycleManager:
    return VersionLifecycleManager(
        versions=SqlVersionRepository(session),
        components=SqlComponentLookup(session),
        identities=SqlIdentityProvider(session),
        subscriptions=build_subscription_lookup(session),
    )


def get_manager(session: Session = Depends(get_session)) -> VersionLifecycleManager:
    return build_manager(session)


@contextmanager
def manager_scope() -> Iterator[VersionLifecycleManager]:
    with db_session() as session:
        yield build_manager(session)


def get_manager_scope() -> ManagerScope:
    return manager_scope


def get_storage_writer() -> StorageWriter:
    return PreviewPublisher()


def get_principal(
    x_user_id: Optional[str] = Header(None, alias="X-User-Id"),
    manager: VersionLifecycleManager = Depends(get_manager),
) -> Optional[Principal]:
    if not x_user_id:
        return None
    principal = manager.identities.get_principal(x_user_id) if manager.identities else None
    return principal or Principal(userId=x_user_id, role="user")


def _user_id(principal: Optional[Principal]) -> Optional[str]:
    return principal.user_id if principal else None


def _version_of_component(manager: VersionLifecycleManager, component_id: str, version_id: str):
    version = manager.require_version(version_id)
    if version.component_id != component_id:
        raise NotFoundError(f"Component version {version_id} not found for component {component_id}")
    return version


def _out(version) -> VersionOut:
    return VersionOut.model_validate(version)


# -- public routes ----------------------------------------------------------


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/components/{component_id}/versions/default", response_model=VersionWithAccess)
def get_default_version(
    component_id: str,
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> VersionWithAccess:
    return manager.get_default_version(component_id, _user_id(principal))


@app.get("/components/{component_id}/versions/{framework}", response_model=VersionWithAccess)
def get_version_by_framework(
    component_id: str,
    framework: str,
    css_framework: Optional[str] = Query(None, alias="cssFramework"),
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> VersionWithAccess:
    return manager.get_version_by_framework(component_id, framework, css_framework, _user_id(principal))


@app.get("/components/{component_id}/preview", response_class=HTMLResponse)
def render_default_preview(
    component_id: str,
    manager: VersionLifecycleManager = Depends(get_manager),
) -> HTMLResponse:
    default = manager.get_default_version(component_id)
    return HTMLResponse(manager.compile_preview(default.id).html)


# -- admin routes -----------------------------------------------------------

ADMIN_PREFIX = "/admin/components/{component_id}"


@app.get(ADMIN_PREFIX + "/versions", response_model=VersionPage)
def list_versions(
    component_id: str,
    page: int = Query(1),
    limit: int = Query(20),
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> VersionPage:
    manager.authorize_admin(principal)
    return manager.list_versions(component_id, page, limit, _user_id(principal))


@app.post(ADMIN_PREFIX + "/versions", response_model=VersionOut, status_code=201)
def create_version(
    component_id: str,
    payload: VersionPayload,
    force_new: bool = Query(False, alias="forceNew"),
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> VersionOut:
    if payload.component_id and payload.component_id != component_id:
        logger.warning(
            "createVersion body componentId=%s overridden by path %s", payload.component_id, component_id
        )
    payload.component_id = component_id
    return _out(manager.create_version(payload, principal, force_new=force_new))


@app.get(ADMIN_PREFIX + "/versions/stats", response_model=VersionStats)
def get_version_stats(
    component_id: str,
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> VersionStats:
    manager.authorize_admin(principal)
    manager.require_component(component_id)
    return manager.get_version_stats(component_id)


@app.post(ADMIN_PREFIX + "/versions/batch", response_model=BatchReport)
def run_batch_operation(
    component_id: str,
    request: BatchRequest,
    scope: ManagerScope = Depends(get_manager_scope),
    writer: StorageWriter = Depends(get_storage_writer),
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> BatchReport:
    manager.authorize_admin(principal)
    manager.require_component(component_id)
    coordinator = BatchCoordinator(scope, writer, component_id=component_id)
    return coordinator.run(request.operation, request.version_ids, principal, request.data)


@app.get(ADMIN_PREFIX + "/versions/{version_id}", response_model=VersionWithAccess)
def get_version(
    component_id: str,
    version_id: str,
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> VersionWithAccess:
    manager.authorize_admin(principal)
    _version_of_component(manager, component_id, version_id)
    return manager.get_version(version_id, _user_id(principal))


@app.put(ADMIN_PREFIX + "/versions/{version_id}", response_model=VersionOut)
def update_version(
    component_id: str,
    version_id: str,
    payload: VersionPayload,
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> VersionOut:
    manager.authorize_admin(principal)
    _version_of_component(manager, component_id, version_id)
    return _out(manager.update_version(version_id, payload, principal))


@app.delete(ADMIN_PREFIX + "/versions/{version_id}", response_model=DeleteResponse)
def delete_version(
    component_id: str,
    version_id: str,
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> DeleteResponse:
    manager.authorize_admin(principal)
    _version_of_component(manager, component_id, version_id)
    manager.delete_version(version_id, principal)
    return DeleteResponse(id=version_id)


@app.post(ADMIN_PREFIX + "/versions/{version_id}/set-default", response_model=VersionOut)
def set_default_version(
    component_id: str,
    version_id: str,
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> VersionOut:
    manager.authorize_admin(principal)
    _version_of_component(manager, component_id, version_id)
    return _out(manager.set_as_default(version_id, principal))


@app.post(ADMIN_PREFIX + "/versions/{version_id}/compile", response_model=CompiledPreview)
def compile_version_preview(
    component_id: str,
    version_id: str,
    writer: StorageWriter = Depends(get_storage_writer),
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> CompiledPreview:
    manager.authorize_admin(principal)
    _version_of_component(manager, component_id, version_id)
    return manager.compile_preview(version_id, writer)


@app.get(ADMIN_PREFIX + "/versions/{version_id}/compare/{other_id}", response_model=VersionDiff)
def compare_versions(
    component_id: str,
    version_id: str,
    other_id: str,
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> VersionDiff:
    manager.authorize_admin(principal)
    _version_of_component(manager, component_id, version_id)
    _version_of_component(manager, component_id, other_id)
    return manager.compare_versions(version_id, other_id)


@app.post(ADMIN_PREFIX + "/versions/{version_id}/validate", response_model=CodeValidationReport)
def validate_version(
    component_id: str,
    version_id: str,
    validate_dependencies: bool = Query(False, alias="validateDependencies"),
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> CodeValidationReport:
    manager.authorize_admin(principal)
    _version_of_component(manager, component_id, version_id)
    return manager.validate_code(version_id, validate_dependencies)


@app.get(ADMIN_PREFIX + "/frameworks")
def list_framework_variants(
    component_id: str,
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> Dict[str, Any]:
    manager.authorize_admin(principal)
    variants = manager.list_variants(component_id)
    return {"componentId": component_id, "frameworks": group_by_framework(variants)}


@app.post(ADMIN_PREFIX + "/frameworks/{framework}/variants", response_model=VersionOut, status_code=201)
def create_framework_variant(
    component_id: str,
    framework: str,
    request: Optional[VariantRequest] = None,
    manager: VersionLifecycleManager = Depends(get_manager),
    principal: Optional[Principal] = Depends(get_principal),
) -> VersionOut:
    manager.authorize_admin(principal)
    request = request or VariantRequest()
    if request.base_version_id:
        _version_of_component(manager, component_id, request.base_version_id)
    created = manager.create_variant(
        component_id,
        framework,
        principal,
        css_framework=request.css_framework,
        base_version_id=request.base_version_id,
    )
    return _out(created)
