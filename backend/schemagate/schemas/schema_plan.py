"""Schema plan request/response schemas."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field


class SchemaPlanRequest(BaseModel):
    """Create-plan payload; ``ssot_text`` replaces the configured SSOT when non-blank."""

    ssot_text: str | None = None


class PlanIdRequest(BaseModel):
    """Payload identifying one stored plan."""

    plan_id: str = Field(..., min_length=1, max_length=64)


class ApplySafeRequest(PlanIdRequest):
    """Apply the SAFE artifact of a plan."""

    approver_id: str | None = Field(default=None, max_length=255)


class ApplyDestructiveRequest(PlanIdRequest):
    """Apply the manual artifact of a plan; requires the confirmation phrase."""

    confirmation_phrase: str = ""
    approver_id: str | None = Field(default=None, max_length=255)


class ChangeObjectRead(BaseModel):
    """Database object targeted by a change."""

    name: str
    table: str | None = None


class ChangeRead(BaseModel):
    """Risk-classified change."""

    change_id: str
    category: str
    action: str
    object: ChangeObjectRead
    sql_preview: str
    risk_level: str
    reason: str
    title: str


class PreflightQueryRead(BaseModel):
    """Diagnostic query attached to a plan."""

    id: str
    risk_level: str
    description: str
    sql: str


class PreflightResultRead(BaseModel):
    """Outcome of one preflight query."""

    id: str | None = None
    query: str
    ok: bool
    result: Any = None
    error: str | None = None


class SchemaPlanRead(BaseModel):
    """Plan payload returned by create-plan."""

    plan_id: str
    tenant_id: str
    status: str
    ssot_version_hash: str
    db_snapshot_hash_before: str
    summary_counts: dict[str, int]
    changes: list[ChangeRead]
    preflight_queries: list[PreflightQueryRead]
    patch_sql_safe: str
    manual_sql: str
    manual_steps: str
    preflight_results: list[PreflightResultRead] | None = None
    preflight_error: dict[str, Any] | None = None
    bootstrap_sql: str | None = None


class PreflightRunRead(BaseModel):
    """Preflight results attached to a stored plan."""

    plan_id: str
    status: str
    preflight_results: list[PreflightResultRead]


class StatementResultRead(BaseModel):
    """Outcome of one executed statement."""

    statement: str
    ok: bool
    error: str | None = None


class ExecutionRead(BaseModel):
    """Per-statement execution report."""

    statements: list[StatementResultRead] = Field(default_factory=list)
    message: str | None = None


class ApplyResultRead(BaseModel):
    """Outcome of an apply operation."""

    plan_id: str
    status: str
    execution: ExecutionRead
    db_snapshot_hash_after: str | None = None


class AuditRecordRead(BaseModel):
    """History row for one plan."""

    model_config = ConfigDict(from_attributes=True)

    id: int
    plan_id: str
    tenant_id: str
    status: str
    created_at: datetime
    updated_at: datetime
    ssot_version_hash: str
    db_snapshot_hash_before: str
    db_snapshot_hash_after: str | None = None
    summary_counts_json: dict[str, int]
    approved_by_user_id: str | None = None
    approval_method: str | None = None
    approval_phrase: str | None = None


class BootstrapSqlRead(BaseModel):
    """Remediation SQL for tenants missing the schema procedures."""

    grantee: str
    bootstrap_sql: str
