"""Repository functions for schema migration audit records."""

from __future__ import annotations

from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session

from schemagate.drift.types import ExecutionReport, PreflightResult, SchemaPlan
from schemagate.models.schema_migration_audit import SchemaMigrationAudit

STATUS_PLANNED = "planned"
STATUS_APPLIED = "applied"
STATUS_FAILED = "failed"

MAX_HISTORY_LIMIT = 100


def insert_planned_record(
    db: Session,
    *,
    tenant_id: str,
    plan: SchemaPlan,
    preflight_results: list[PreflightResult] | None = None,
) -> SchemaMigrationAudit:
    """Persist a freshly built plan in ``planned`` state."""

    record = SchemaMigrationAudit(
        plan_id=plan.plan_id,
        tenant_id=tenant_id,
        status=STATUS_PLANNED,
        ssot_version_hash=plan.ssot_version_hash,
        db_snapshot_hash_before=plan.db_snapshot_hash_before,
        summary_counts_json=dict(plan.summary_counts),
        patch_plan_json=plan.to_plan_json(),
        db_snapshot_before_json=plan.snapshot_json(),
        preflight_results_json=preflight_payload(preflight_results) if preflight_results is not None else None,
    )
    db.add(record)
    db.flush()
    return record


def get_record(db: Session, plan_id: str, *, for_update: bool = False) -> SchemaMigrationAudit | None:
    stmt = select(SchemaMigrationAudit).where(SchemaMigrationAudit.plan_id == plan_id)
    if for_update:
        stmt = stmt.with_for_update()
    return db.scalar(stmt)


def attach_preflight_results(
    db: Session,
    record: SchemaMigrationAudit,
    results: list[PreflightResult],
) -> SchemaMigrationAudit:
    record.preflight_results_json = preflight_payload(results)
    db.flush()
    return record


def mark_applied(
    db: Session,
    record: SchemaMigrationAudit,
    *,
    report: ExecutionReport,
    snapshot_after: dict[str, Any] | None,
    snapshot_hash_after: str | None,
    approver_id: str | None,
    approval_method: str,
    approval_phrase: str | None = None,
    executed_sql_safe: str | None = None,
    executed_sql_manual: str | None = None,
) -> SchemaMigrationAudit:
    """Record a completed execution; any failed statement marks the plan ``failed``."""

    record.status = STATUS_APPLIED if report.ok else STATUS_FAILED
    record.executed_result_json = report.to_dict()
    record.db_snapshot_after_json = snapshot_after
    record.db_snapshot_hash_after = snapshot_hash_after
    _record_approval(
        record,
        approver_id=approver_id,
        approval_method=approval_method,
        approval_phrase=approval_phrase,
        executed_sql_safe=executed_sql_safe,
        executed_sql_manual=executed_sql_manual,
    )
    db.flush()
    return record


def mark_failed(
    db: Session,
    record: SchemaMigrationAudit,
    *,
    error: dict[str, Any],
    approver_id: str | None,
    approval_method: str,
    approval_phrase: str | None = None,
    executed_sql_safe: str | None = None,
    executed_sql_manual: str | None = None,
) -> SchemaMigrationAudit:
    """Record an execution call that failed as a whole."""

    record.status = STATUS_FAILED
    record.executed_result_json = {"statements": [], "error": error}
    _record_approval(
        record,
        approver_id=approver_id,
        approval_method=approval_method,
        approval_phrase=approval_phrase,
        executed_sql_safe=executed_sql_safe,
        executed_sql_manual=executed_sql_manual,
    )
    db.flush()
    return record


def list_history(db: Session, tenant_id: str, *, limit: int = 25) -> list[SchemaMigrationAudit]:
    """Return the tenant's audit records, newest first."""

    bounded = max(1, min(int(limit), MAX_HISTORY_LIMIT))
    stmt = (
        select(SchemaMigrationAudit)
        .where(SchemaMigrationAudit.tenant_id == tenant_id)
        .order_by(SchemaMigrationAudit.created_at.desc(), SchemaMigrationAudit.id.desc())
        .limit(bounded)
    )
    return list(db.scalars(stmt).all())


def preflight_payload(results: list[PreflightResult]) -> list[dict[str, Any]]:
    payload: list[dict[str, Any]] = []
    for result in results:
        entry: dict[str, Any] = {"query": result.query, "ok": result.ok}
        if result.query_id:
            entry["id"] = result.query_id
        if result.ok:
            entry["result"] = result.result
        else:
            entry["error"] = result.error
        payload.append(entry)
    return payload


def _record_approval(
    record: SchemaMigrationAudit,
    *,
    approver_id: str | None,
    approval_method: str,
    approval_phrase: str | None,
    executed_sql_safe: str | None,
    executed_sql_manual: str | None,
) -> None:
    record.approved_by_user_id = approver_id
    record.approval_method = approval_method
    record.approval_phrase = approval_phrase
    if executed_sql_safe is not None:
        record.executed_sql_safe = executed_sql_safe
    if executed_sql_manual is not None:
        record.executed_sql_manual = executed_sql_manual
