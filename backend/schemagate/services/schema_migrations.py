"""Plan lifecycle: create, preflight, apply and history for tenant schemas."""

from __future__ import annotations

import hashlib
import logging
import threading
import weakref
from collections.abc import Iterator
from contextlib import contextmanager
from time import perf_counter

from sqlalchemy import text
from sqlalchemy.orm import Session

from schemagate.config import get_settings
from schemagate.drift.errors import (
    NotBootstrappedError,
    SchemaMigrationError,
    StatementExecutionError,
    ValidationError,
)
from schemagate.drift.executor import ApplyOutcome, SchemaExecutor
from schemagate.drift.hashing import hash_snapshot
from schemagate.drift.planner import build_schema_plan
from schemagate.drift.risk import RiskPolicy
from schemagate.drift.statement_guard import check_destructive_confirmation
from schemagate.drift.types import PreflightResult
from schemagate.models.schema_migration_audit import SchemaMigrationAudit
from schemagate.schemas.schema_plan import (
    ApplyResultRead,
    ExecutionRead,
    PreflightResultRead,
    PreflightRunRead,
    SchemaPlanRead,
)
from schemagate.services import audit_store
from schemagate.services.tenant_connections import (
    TenantConnectionResolver,
    TenantRpcResolver,
    validate_tenant_id,
)

logger = logging.getLogger(__name__)

APPROVAL_APPLY_SAFE = "apply_safe"
APPROVAL_APPLY_DESTRUCTIVE = "apply_destructive"

# Entries drop out once no caller holds or waits on the tenant lock.
_process_locks: weakref.WeakValueDictionary[str, threading.Lock] = weakref.WeakValueDictionary()
_process_locks_guard = threading.Lock()


def advisory_lock_key(tenant_id: str) -> int:
    """Stable signed 64-bit key for ``pg_advisory_xact_lock``."""

    digest = hashlib.sha256(f"schema_apply:{tenant_id}".encode("utf-8")).digest()
    return int.from_bytes(digest[:8], "big", signed=True)


@contextmanager
def tenant_apply_lock(db: Session, tenant_id: str) -> Iterator[None]:
    """Serialize apply operations per tenant.

    A process-local lock covers one worker; on PostgreSQL a transaction-scoped
    advisory lock on the control database covers the rest and is released by
    the caller's commit or rollback.
    """

    with _process_locks_guard:
        lock = _process_locks.get(tenant_id)
        if lock is None:
            lock = _process_locks[tenant_id] = threading.Lock()
    with lock:
        dialect_name = getattr(getattr(db.get_bind(), "dialect", None), "name", "")
        if "postgresql" in str(dialect_name):
            db.execute(text("SELECT pg_advisory_xact_lock(:lock_id)"), {"lock_id": advisory_lock_key(tenant_id)})
        yield


def _resolver_or_default(resolver: TenantRpcResolver | None) -> TenantRpcResolver:
    return resolver or TenantConnectionResolver.from_settings()


def _owned_record(db: Session, tenant_id: str, plan_id: str, *, for_update: bool = False) -> SchemaMigrationAudit:
    record = audit_store.get_record(db, plan_id.strip(), for_update=for_update)
    if record is None:
        raise ValidationError("plan_not_found")
    if record.tenant_id != tenant_id:
        raise ValidationError("plan_tenant_mismatch")
    if record.status != audit_store.STATUS_PLANNED:
        raise ValidationError("plan_not_planned")
    return record


def _artifact(record: SchemaMigrationAudit, key: str) -> str:
    artifacts = (record.patch_plan_json or {}).get("artifacts") or {}
    value = artifacts.get(key) if isinstance(artifacts, dict) else None
    return value if isinstance(value, str) else ""


def _preflight_reads(results: list[PreflightResult]) -> list[PreflightResultRead]:
    return [PreflightResultRead.model_validate(entry) for entry in audit_store.preflight_payload(results)]


def create_plan(
    db: Session,
    tenant_id: str,
    *,
    ssot_text: str | None = None,
    resolver: TenantRpcResolver | None = None,
    risk_policy: RiskPolicy | None = None,
) -> SchemaPlanRead:
    """Build, preflight and persist a plan for one tenant."""

    tenant = validate_tenant_id(tenant_id)
    total_started = perf_counter()
    rpc = _resolver_or_default(resolver).resolve(tenant)
    try:
        executor = SchemaExecutor(rpc)
        plan = build_schema_plan(executor, ssot_text=ssot_text, risk_policy=risk_policy)

        preflight_results: list[PreflightResult] | None = None
        preflight_error: dict[str, object] | None = None
        bootstrap_sql: str | None = None
        try:
            preflight_results = executor.plan_preflight(plan.preflight_queries)
        except NotBootstrappedError as exc:
            preflight_error = {"message": exc.code}
            bootstrap_sql = exc.bootstrap_sql
        except StatementExecutionError as exc:
            preflight_error = {"message": exc.db_message or exc.code}
    finally:
        rpc.close()

    try:
        audit_store.insert_planned_record(db, tenant_id=tenant, plan=plan, preflight_results=preflight_results)
        db.commit()
    except Exception:
        db.rollback()
        logger.exception("schema.plan_store_failed tenant_id=%s plan_id=%s", tenant, plan.plan_id)
        raise

    logger.info(
        "schema.plan_created tenant_id=%s plan_id=%s changes=%d preflight=%s total_ms=%.2f",
        tenant,
        plan.plan_id,
        len(plan.changes),
        "error" if preflight_error else len(preflight_results or []),
        (perf_counter() - total_started) * 1000.0,
    )
    plan_json = plan.to_plan_json()
    return SchemaPlanRead(
        plan_id=plan.plan_id,
        tenant_id=tenant,
        status=audit_store.STATUS_PLANNED,
        ssot_version_hash=plan.ssot_version_hash,
        db_snapshot_hash_before=plan.db_snapshot_hash_before,
        summary_counts=dict(plan.summary_counts),
        changes=plan_json["changes"],
        preflight_queries=plan_json["preflightQueries"],
        patch_sql_safe=plan.artifacts.patch_sql_safe,
        manual_sql=plan.artifacts.manual_sql,
        manual_steps=plan.artifacts.manual_steps,
        preflight_results=_preflight_reads(preflight_results) if preflight_results is not None else None,
        preflight_error=preflight_error,
        bootstrap_sql=bootstrap_sql,
    )


def run_plan_preflight(
    db: Session,
    tenant_id: str,
    plan_id: str,
    *,
    resolver: TenantRpcResolver | None = None,
) -> PreflightRunRead:
    """Re-run a stored plan's diagnostics and attach the results to its record."""

    tenant = validate_tenant_id(tenant_id)
    record = _owned_record(db, tenant, plan_id)
    queries = (record.patch_plan_json or {}).get("preflightQueries") or []
    selectable = [
        (str(entry.get("id") or ""), str(entry.get("sql") or ""))
        for entry in queries
        if isinstance(entry, dict) and str(entry.get("sql") or "").strip().upper().startswith("SELECT")
    ]

    results: list[PreflightResult] = []
    if selectable:
        rpc = _resolver_or_default(resolver).resolve(tenant)
        try:
            raw = SchemaExecutor(rpc).run_preflight(sql for _, sql in selectable)
        finally:
            rpc.close()
        results = [
            PreflightResult(query=r.query, ok=r.ok, result=r.result, error=r.error, query_id=query_id)
            for (query_id, _), r in zip(selectable, raw)
        ]

    audit_store.attach_preflight_results(db, record, results)
    db.commit()
    logger.info(
        "schema.preflight_attached tenant_id=%s plan_id=%s queries=%d failed=%d",
        tenant,
        record.plan_id,
        len(results),
        sum(1 for result in results if not result.ok),
    )
    return PreflightRunRead(plan_id=record.plan_id, status=record.status, preflight_results=_preflight_reads(results))


def apply_safe(
    db: Session,
    tenant_id: str,
    plan_id: str,
    *,
    approver_id: str | None = None,
    resolver: TenantRpcResolver | None = None,
) -> ApplyResultRead:
    """Execute the plan's SAFE artifact."""

    tenant = validate_tenant_id(tenant_id)
    return _apply(
        db,
        tenant,
        plan_id,
        approver_id=approver_id,
        approval_method=APPROVAL_APPLY_SAFE,
        confirmation_phrase=None,
        resolver=resolver,
    )


def apply_destructive(
    db: Session,
    tenant_id: str,
    plan_id: str,
    *,
    confirmation_phrase: str | None,
    approver_id: str | None = None,
    resolver: TenantRpcResolver | None = None,
) -> ApplyResultRead:
    """Execute the plan's manual artifact after the exact confirmation phrase."""

    check_destructive_confirmation(confirmation_phrase)
    tenant = validate_tenant_id(tenant_id)
    return _apply(
        db,
        tenant,
        plan_id,
        approver_id=approver_id,
        approval_method=APPROVAL_APPLY_DESTRUCTIVE,
        confirmation_phrase=confirmation_phrase,
        resolver=resolver,
    )


def _apply(
    db: Session,
    tenant: str,
    plan_id: str,
    *,
    approver_id: str | None,
    approval_method: str,
    confirmation_phrase: str | None,
    resolver: TenantRpcResolver | None,
) -> ApplyResultRead:
    destructive = approval_method == APPROVAL_APPLY_DESTRUCTIVE
    started = perf_counter()
    try:
        with tenant_apply_lock(db, tenant):
            record = _owned_record(db, tenant, plan_id, for_update=True)
            sql = _artifact(record, "manual_sql" if destructive else "patch_sql_safe")
            sql_field = "executed_sql_manual" if destructive else "executed_sql_safe"

            rpc = _resolver_or_default(resolver).resolve(tenant)
            try:
                executor = SchemaExecutor(rpc)
                if destructive:
                    outcome = executor.apply_manual(sql, confirmation_phrase)
                else:
                    outcome = executor.apply_safe(sql)
            except StatementExecutionError as exc:
                audit_store.mark_failed(
                    db,
                    record,
                    error=exc.to_detail(),
                    approver_id=approver_id,
                    approval_method=approval_method,
                    approval_phrase=confirmation_phrase,
                    **{sql_field: sql},
                )
                db.commit()
                raise
            finally:
                rpc.close()

            _store_outcome(db, record, outcome, approver_id, approval_method, confirmation_phrase, sql_field, sql)
            db.commit()
    except SchemaMigrationError:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        logger.exception(
            "schema.apply_failed plan_id=%s method=%s elapsed_ms=%.2f",
            plan_id,
            approval_method,
            (perf_counter() - started) * 1000.0,
        )
        raise

    logger.info(
        "schema.apply_done tenant_id=%s plan_id=%s method=%s status=%s statements=%d failed=%d total_ms=%.2f",
        tenant,
        record.plan_id,
        approval_method,
        record.status,
        len(outcome.report.statements),
        outcome.report.failed_count,
        (perf_counter() - started) * 1000.0,
    )
    return ApplyResultRead(
        plan_id=record.plan_id,
        status=record.status,
        execution=ExecutionRead.model_validate(outcome.report.to_dict()),
        db_snapshot_hash_after=record.db_snapshot_hash_after,
    )


def _store_outcome(
    db: Session,
    record: SchemaMigrationAudit,
    outcome: ApplyOutcome,
    approver_id: str | None,
    approval_method: str,
    confirmation_phrase: str | None,
    sql_field: str,
    sql: str,
) -> None:
    snapshot_payload = outcome.snapshot_after.payload if outcome.snapshot_after is not None else None
    audit_store.mark_applied(
        db,
        record,
        report=outcome.report,
        snapshot_after=snapshot_payload,
        snapshot_hash_after=hash_snapshot(snapshot_payload) if snapshot_payload is not None else None,
        approver_id=approver_id,
        approval_method=approval_method,
        approval_phrase=confirmation_phrase,
        **{sql_field: sql},
    )


def list_plan_history(db: Session, tenant_id: str, *, limit: int | None = None) -> list[SchemaMigrationAudit]:
    """Return the tenant's plans, newest first."""

    tenant = validate_tenant_id(tenant_id)
    return audit_store.list_history(db, tenant, limit=limit or get_settings().schema_history_default_limit)
