"""Tenant schema drift routes: plan, preflight, apply and history."""

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from sqlalchemy.orm import Session

from schemagate.config import get_settings
from schemagate.db.dependencies import get_db
from schemagate.drift.bootstrap_sql import build_bootstrap_sql
from schemagate.drift.errors import ConfigurationError, SchemaMigrationError, ValidationError
from schemagate.schemas.common import ERROR_RESPONSES, ApiResponse
from schemagate.schemas.schema_plan import (
    ApplyDestructiveRequest,
    ApplyResultRead,
    ApplySafeRequest,
    AuditRecordRead,
    BootstrapSqlRead,
    PlanIdRequest,
    PreflightRunRead,
    SchemaPlanRead,
    SchemaPlanRequest,
)
from schemagate.services.schema_migrations import (
    apply_destructive,
    apply_safe,
    create_plan,
    list_plan_history,
    run_plan_preflight,
)
from schemagate.services.tenant_connections import TenantConnectionResolver, TenantRpcResolver

router = APIRouter(prefix="/tenants/{tenant_id}/schema", responses=ERROR_RESPONSES)

_VALIDATION_STATUS = {
    "plan_not_found": 404,
    "plan_tenant_mismatch": 403,
    "plan_not_planned": 409,
}
_CONFIGURATION_STATUS = {
    "missing_connection_settings": 412,
}


def get_tenant_resolver() -> TenantRpcResolver:
    """Resolver for tenant database connections; overridable in tests."""

    return TenantConnectionResolver.from_settings()


def _http_error(exc: SchemaMigrationError) -> HTTPException:
    status_code = exc.status_hint
    if isinstance(exc, ValidationError):
        status_code = _VALIDATION_STATUS.get(exc.code, 400)
    elif isinstance(exc, ConfigurationError):
        status_code = _CONFIGURATION_STATUS.get(exc.code, 500)
    return HTTPException(status_code=status_code, detail=exc.to_detail())


@router.post("/plan", response_model=ApiResponse[SchemaPlanRead])
def plan_schema(
    payload: SchemaPlanRequest,
    tenant_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
    resolver: TenantRpcResolver = Depends(get_tenant_resolver),
) -> ApiResponse[SchemaPlanRead]:
    """Diff the SSOT against the tenant database and store a new plan."""

    try:
        plan = create_plan(db, tenant_id, ssot_text=payload.ssot_text, resolver=resolver)
    except SchemaMigrationError as exc:
        raise _http_error(exc) from exc
    return ApiResponse(data=plan)


@router.post("/preflight", response_model=ApiResponse[PreflightRunRead])
def preflight_schema_plan(
    payload: PlanIdRequest,
    tenant_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
    resolver: TenantRpcResolver = Depends(get_tenant_resolver),
) -> ApiResponse[PreflightRunRead]:
    """Run the stored plan's preflight queries again."""

    try:
        result = run_plan_preflight(db, tenant_id, payload.plan_id, resolver=resolver)
    except SchemaMigrationError as exc:
        raise _http_error(exc) from exc
    return ApiResponse(data=result)


@router.post("/apply-safe", response_model=ApiResponse[ApplyResultRead])
def apply_safe_schema_plan(
    payload: ApplySafeRequest,
    tenant_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
    resolver: TenantRpcResolver = Depends(get_tenant_resolver),
) -> ApiResponse[ApplyResultRead]:
    """Execute the SAFE statements of a planned migration."""

    try:
        result = apply_safe(db, tenant_id, payload.plan_id, approver_id=payload.approver_id, resolver=resolver)
    except SchemaMigrationError as exc:
        raise _http_error(exc) from exc
    return ApiResponse(data=result)


@router.post("/apply-destructive", response_model=ApiResponse[ApplyResultRead])
def apply_destructive_schema_plan(
    payload: ApplyDestructiveRequest,
    tenant_id: str = Path(..., min_length=1),
    db: Session = Depends(get_db),
    resolver: TenantRpcResolver = Depends(get_tenant_resolver),
) -> ApiResponse[ApplyResultRead]:
    """Execute the manual statements of a planned migration after confirmation."""

    try:
        result = apply_destructive(
            db,
            tenant_id,
            payload.plan_id,
            confirmation_phrase=payload.confirmation_phrase,
            approver_id=payload.approver_id,
            resolver=resolver,
        )
    except SchemaMigrationError as exc:
        raise _http_error(exc) from exc
    return ApiResponse(data=result)


@router.get("/history", response_model=ApiResponse[list[AuditRecordRead]])
def schema_plan_history(
    tenant_id: str = Path(..., min_length=1),
    limit: int | None = Query(default=None, ge=1, le=100),
    db: Session = Depends(get_db),
) -> ApiResponse[list[AuditRecordRead]]:
    """List stored plans for a tenant, newest first."""

    try:
        records = list_plan_history(db, tenant_id, limit=limit)
    except SchemaMigrationError as exc:
        raise _http_error(exc) from exc
    return ApiResponse(data=[AuditRecordRead.model_validate(record) for record in records])


@router.get("/bootstrap-sql", response_model=ApiResponse[BootstrapSqlRead])
def schema_bootstrap_sql(tenant_id: str = Path(..., min_length=1)) -> ApiResponse[BootstrapSqlRead]:
    """Return the SQL that installs the schema procedures on a tenant database."""

    grantee = get_settings().schema_bootstrap_grantee
    return ApiResponse(data=BootstrapSqlRead(grantee=grantee, bootstrap_sql=build_bootstrap_sql(grantee)))
