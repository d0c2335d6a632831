"""Gated execution of plan artifacts against one tenant database."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from time import perf_counter
from typing import Any

from schemagate.drift.errors import NotBootstrappedError, StatementExecutionError, ValidationError
from schemagate.drift.scanner import split_statements
from schemagate.drift.statement_guard import (
    check_destructive_confirmation,
    check_safe_statement,
    check_select_query,
)
from schemagate.drift.tenant_rpc import TenantSchemaRpc
from schemagate.drift.types import DbSnapshot, ExecutionReport, PreflightQuery, PreflightResult, StatementResult

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class ApplyOutcome:
    """Execution report plus the snapshot taken right after the batch ran."""

    report: ExecutionReport
    statements: tuple[str, ...] = ()
    snapshot_after: DbSnapshot | None = None


def split_artifact(sql: str | None) -> list[str]:
    """Split an artifact into executable statements, each terminated by ``;``."""

    return [f"{statement};" for statement in split_statements(sql or "")]


def _strip_terminator(query: str) -> str:
    return query.strip().rstrip(";").rstrip()


class SchemaExecutor:
    """Drives introspection, preflight and statement execution through a tenant RPC client.

    Statement batches are not atomic: each statement is executed on its own on
    the tenant side and reported individually, so a failure midway leaves the
    earlier statements applied.
    """

    def __init__(self, rpc: TenantSchemaRpc) -> None:
        self.rpc = rpc

    def introspect(self) -> DbSnapshot:
        started = perf_counter()
        snapshot = DbSnapshot.from_payload(self.rpc.introspect())
        logger.info(
            "schema.introspect tables=%d elapsed_ms=%.2f",
            len(snapshot.columns_by_table),
            (perf_counter() - started) * 1000.0,
        )
        return snapshot

    def run_preflight(self, queries: Iterable[str]) -> list[PreflightResult]:
        """Run SELECT queries; failures are reported per entry and never raised.

        Queries rejected by the guard are not sent to the tenant. Results keep
        the input order.
        """

        prepared = [_strip_terminator(query or "") for query in queries]
        results: list[PreflightResult | None] = []
        to_send: list[str] = []
        for query in prepared:
            rejection = check_select_query(query)
            if rejection is None:
                results.append(None)
                to_send.append(query)
            elif rejection == "skipped":
                continue
            else:
                results.append(PreflightResult(query=query, ok=False, error=rejection))

        remote = iter(self.rpc.run_selects(to_send) if to_send else [])
        merged: list[PreflightResult] = []
        pending = iter(to_send)
        for entry in results:
            if entry is not None:
                merged.append(entry)
                continue
            query = next(pending)
            raw = next(remote, None)
            if not isinstance(raw, dict):
                merged.append(PreflightResult(query=query, ok=False, error="no_result_returned"))
                continue
            merged.append(
                PreflightResult(
                    query=str(raw.get("query") or query),
                    ok=bool(raw.get("ok")),
                    result=raw.get("result"),
                    error=raw.get("error"),
                )
            )
        return merged

    def plan_preflight(self, preflight_queries: Sequence[PreflightQuery]) -> list[PreflightResult]:
        """Run the SELECT-shaped plan diagnostics; comment-only advisories are skipped."""

        selectable = [
            query for query in preflight_queries if query.sql and query.sql.strip().upper().startswith("SELECT")
        ]
        if not selectable:
            return []
        results = self.run_preflight(query.sql for query in selectable)
        return [
            PreflightResult(
                query=result.query,
                ok=result.ok,
                result=result.result,
                error=result.error,
                query_id=source.id,
            )
            for source, result in zip(selectable, results)
        ]

    def execute(
        self,
        statements: Sequence[str],
        *,
        allow_destructive: bool = False,
        confirmation_phrase: str | None = None,
    ) -> ExecutionReport:
        """Execute a batch through the gated procedure.

        Destructive mode requires the exact confirmation phrase. Safe mode
        rejects the whole batch when any statement is outside the allow-list.
        Either rejection raises :class:`ValidationError` before anything runs.
        """

        batch = [statement.strip() for statement in statements if statement and statement.strip()]
        if allow_destructive:
            check_destructive_confirmation(confirmation_phrase)
        else:
            for statement in batch:
                rejection = check_safe_statement(statement)
                if rejection is not None:
                    raise ValidationError(rejection)
        if not batch:
            return ExecutionReport()

        started = perf_counter()
        payload = self.rpc.execute_statements(
            batch,
            allow_destructive=allow_destructive,
            confirmation_phrase=confirmation_phrase if allow_destructive else None,
        )
        report = ExecutionReport(statements=tuple(_statement_results(payload)))
        logger.info(
            "schema.execute mode=%s statements=%d failed=%d elapsed_ms=%.2f",
            "destructive" if allow_destructive else "safe",
            len(report.statements),
            report.failed_count,
            (perf_counter() - started) * 1000.0,
        )
        return report

    def apply_safe(self, patch_sql_safe: str | None) -> ApplyOutcome:
        statements = split_artifact(patch_sql_safe)
        if not statements:
            return ApplyOutcome(report=ExecutionReport(message="no_safe_changes"))
        report = self.execute(statements)
        return ApplyOutcome(report=report, statements=tuple(statements), snapshot_after=self._snapshot_after())

    def apply_manual(self, manual_sql: str | None, confirmation_phrase: str | None) -> ApplyOutcome:
        check_destructive_confirmation(confirmation_phrase)
        statements = split_artifact(manual_sql)
        if not statements:
            return ApplyOutcome(report=ExecutionReport(message="no_manual_changes"))
        report = self.execute(statements, allow_destructive=True, confirmation_phrase=confirmation_phrase)
        return ApplyOutcome(report=report, statements=tuple(statements), snapshot_after=self._snapshot_after())

    def _snapshot_after(self) -> DbSnapshot | None:
        """Snapshot after a batch ran; a failure here leaves the execution report intact."""

        try:
            return self.introspect()
        except (NotBootstrappedError, StatementExecutionError) as exc:
            logger.warning("schema.snapshot_after_failed code=%s error=%s", exc.code, exc)
            return None


def _statement_results(payload: Any) -> list[StatementResult]:
    entries = payload.get("statements") if isinstance(payload, dict) else None
    if not isinstance(entries, list):
        return []
    return [
        StatementResult(
            statement=str(entry.get("statement") or ""),
            ok=bool(entry.get("ok")),
            error=entry.get("error"),
        )
        for entry in entries
        if isinstance(entry, dict)
    ]
