"""Structural diff between SSOT expectations and an introspected tenant snapshot."""

from __future__ import annotations

import re
from dataclasses import replace

from schemagate.drift.risk import RiskPolicy
from schemagate.drift.types import (
    RISK_LEVELS,
    ChangeObject,
    Column,
    DbSnapshot,
    DiffResult,
    PreflightQuery,
    RiskLevel,
    SchemaChange,
    SchemaExpectation,
    Table,
)

_BARE_IDENT = re.compile(r"^[a-z_][a-z0-9_]*$")
_FOREIGN_KEY = re.compile(r"FOREIGN\s+KEY", re.IGNORECASE)
_TYPE_SHAPE = re.compile(
    r"^(?P<base>[a-z][a-z0-9_ ]*?)\s*(?P<mod>\([^)]*\))?\s*(?P<zone>with(?:out)? time zone)?$"
)

_TYPE_ALIASES = {
    "int": "integer",
    "int4": "integer",
    "serial": "integer",
    "serial4": "integer",
    "int8": "bigint",
    "bigserial": "bigint",
    "serial8": "bigint",
    "int2": "smallint",
    "smallserial": "smallint",
    "serial2": "smallint",
    "bool": "boolean",
    "varchar": "character varying",
    "char": "character",
    "bpchar": "character",
    "float8": "double precision",
    "float": "double precision",
    "float4": "real",
    "decimal": "numeric",
    "timestamptz": "timestamp with time zone",
    "timetz": "time with time zone",
}

REASON_TABLE_MISSING = "The table exists in SSOT but is missing from the tenant database."
REASON_COLUMN_ADD = "Missing column can be added idempotently."
REASON_COLUMN_ADD_NOT_NULL = "Adding a NOT NULL column without a default can fail when existing rows exist."
REASON_TYPE_MISMATCH = "Column type differs between SSOT and the tenant database."
REASON_NOT_NULL = "SSOT expects the column to be NOT NULL but it is nullable in the tenant database."
REASON_RLS_DISABLED = "RLS is enabled in SSOT but disabled on this table in the tenant database."
REASON_POLICY_MISSING = "Expected RLS policy is missing in the tenant database."
REASON_INDEX_MISSING = "Index exists in SSOT but is missing in the tenant database."
REASON_CONSTRAINT_MISSING = (
    "Constraint exists in SSOT but is missing in the tenant database. "
    "Adding it can fail if existing data violates it."
)


def quote_ident(name: str | None) -> str:
    """Quote an identifier unless it is a plain lower-case name."""

    value = name or ""
    if not value:
        return '""'
    if _BARE_IDENT.match(value):
        return value
    return '"' + value.replace('"', '""') + '"'


def canonical_type(raw: str | None) -> str:
    """Normalize PostgreSQL type spellings so aliases compare equal.

    ``int`` and ``int4`` become ``integer``, ``timestamptz`` becomes
    ``timestamp with time zone``, bare ``timestamp`` gains ``without time
    zone`` and array suffixes are preserved.
    """

    value = " ".join((raw or "").lower().replace('"', "").split())
    if value.startswith("pg_catalog."):
        value = value[len("pg_catalog.") :]
    suffix = ""
    while value.endswith("[]"):
        suffix += "[]"
        value = value[:-2].rstrip()

    match = _TYPE_SHAPE.match(value)
    if match is None:
        return value + suffix

    base = _TYPE_ALIASES.get(match.group("base"), match.group("base"))
    modifier = (match.group("mod") or "").replace(" ", "")
    zone = match.group("zone")
    if base in ("timestamp", "time"):
        base = f"{base}{modifier} {zone or 'without time zone'}"
        modifier = ""
    elif base.endswith(" time zone") and modifier:
        head, _, tail = base.partition(" with")
        base = f"{head}{modifier} with{tail}"
        modifier = ""
    elif zone:
        base = f"{base} {zone}"
    return f"{base}{modifier}{suffix}"


def column_add_risk(column: Column) -> tuple[RiskLevel, str]:
    """NOT NULL without a default can fail on populated tables; everything else is SAFE."""

    if not column.nullable and not column.default:
        return "CAUTION", REASON_COLUMN_ADD_NOT_NULL
    return "SAFE", REASON_COLUMN_ADD


def build_add_column_sql(table: str, column: Column) -> str:
    column_type = column.type or "text"
    default_clause = f" DEFAULT {column.default}" if column.default else ""
    not_null = "" if column.nullable else " NOT NULL"
    return (
        f"ALTER TABLE public.{quote_ident(table)} ADD COLUMN IF NOT EXISTS "
        f"{quote_ident(column.name)} {column_type}{default_clause}{not_null};"
    )


def build_title(change: SchemaChange) -> str:
    obj = change.object
    target = f"{obj.table}.{obj.name}" if obj.table else obj.name
    titles = {
        ("TABLE", "CREATE"): f"Create table {obj.name}",
        ("COLUMN", "ADD"): f"Add column {target}",
        ("INDEX", "CREATE"): f"Create index {obj.name}",
        ("CONSTRAINT", "ADD"): f"Add constraint {obj.name}",
        ("RLS", "ALTER"): f"Enable RLS on {obj.name}",
        ("POLICY", "CREATE"): f"Create policy {obj.name}",
    }
    return titles.get((change.category, change.action), f"{change.action} {change.category} {target}".strip())


def diff_schema(
    expectation: SchemaExpectation,
    snapshot: DbSnapshot,
    *,
    risk_policy: RiskPolicy | None = None,
) -> DiffResult:
    """Compare expectations against a snapshot and classify every difference.

    Changes are emitted per table (table, columns, RLS, policies), then for
    indexes and finally for constraints. No dependency reordering is done.
    """

    policy = risk_policy or RiskPolicy()
    changes: list[SchemaChange] = []
    preflight: list[PreflightQuery] = []

    for table in expectation.tables:
        if not table.name:
            continue
        _diff_table(table, snapshot, policy, changes, preflight)

    for index in expectation.indexes:
        if not index.name or not index.table:
            continue
        if index.name in snapshot.indexes_by_table.get(index.table, set()):
            continue
        changes.append(
            SchemaChange(
                change_id=f"index:create:{index.table}:{index.name}",
                category="INDEX",
                action="CREATE",
                object=ChangeObject(name=index.name, table=index.table),
                sql_preview=index.sql,
                risk_level=policy.floor(index.table, "SAFE"),
                reason=REASON_INDEX_MISSING,
            )
        )

    for constraint in expectation.constraints:
        if not constraint.name or not constraint.table:
            continue
        if constraint.name in snapshot.constraints_by_table.get(constraint.table, set()):
            continue
        changes.append(
            SchemaChange(
                change_id=f"constraint:add:{constraint.table}:{constraint.name}",
                category="CONSTRAINT",
                action="ADD",
                object=ChangeObject(name=constraint.name, table=constraint.table),
                sql_preview=constraint.sql,
                risk_level="CAUTION",
                reason=REASON_CONSTRAINT_MISSING,
            )
        )
        if _FOREIGN_KEY.search(constraint.definition):
            preflight.append(
                PreflightQuery(
                    id=f"preflight:fk:{constraint.table}:{constraint.name}",
                    risk_level="CAUTION",
                    description=(
                        f"Foreign key {constraint.name} may fail if orphaned rows exist in {constraint.table}."
                    ),
                    sql=(
                        f"-- Review {constraint.table} rows before adding {constraint.name}.\n"
                        "-- Consider validating orphaned rows manually (depends on FK definition)."
                    ),
                )
            )

    titled = tuple(replace(change, title=build_title(change)) for change in changes)
    summary = {level: 0 for level in RISK_LEVELS}
    for change in titled:
        summary[change.risk_level] += 1

    return DiffResult(summary_counts=summary, changes=titled, preflight_queries=tuple(preflight))


def _diff_table(
    table: Table,
    snapshot: DbSnapshot,
    policy: RiskPolicy,
    changes: list[SchemaChange],
    preflight: list[PreflightQuery],
) -> None:
    name = table.name
    quoted_table = quote_ident(name)

    if not snapshot.has_table(name):
        changes.append(
            SchemaChange(
                change_id=f"table:create:{name}",
                category="TABLE",
                action="CREATE",
                object=ChangeObject(name=name),
                sql_preview=table.create_sql or f"-- Missing CREATE TABLE statement for {name} in SSOT parser output",
                risk_level=policy.floor(name, "SAFE"),
                reason=REASON_TABLE_MISSING,
            )
        )
        return

    for column in table.columns:
        if not column.name:
            continue
        db_column = snapshot.column(name, column.name)

        if db_column is None:
            risk, reason = column_add_risk(column)
            changes.append(
                SchemaChange(
                    change_id=f"column:add:{name}:{column.name}",
                    category="COLUMN",
                    action="ADD",
                    object=ChangeObject(name=column.name, table=name),
                    sql_preview=build_add_column_sql(name, column),
                    risk_level=policy.floor(name, risk),
                    reason=reason,
                )
            )
            continue

        db_type = str(db_column.get("type") or "")
        if column.type and db_type and canonical_type(column.type) != canonical_type(db_type):
            changes.append(
                SchemaChange(
                    change_id=f"column:type:{name}:{column.name}",
                    category="COLUMN",
                    action="ALTER",
                    object=ChangeObject(name=column.name, table=name),
                    sql_preview=(
                        f"-- Type mismatch: SSOT expects {column.type}, DB has {db_type}\n"
                        "-- Manual migration required."
                    ),
                    risk_level="DESTRUCTIVE",
                    reason=REASON_TYPE_MISMATCH,
                )
            )

        if not column.nullable and db_column.get("nullable") is True:
            quoted_column = quote_ident(column.name)
            preflight.append(
                PreflightQuery(
                    id=f"preflight:nulls:{name}:{column.name}",
                    risk_level="CAUTION",
                    description=f"Check for NULL values before setting NOT NULL on {name}.{column.name}.",
                    sql=(
                        f"SELECT COUNT(*)::integer AS null_count FROM public.{quoted_table} "
                        f"WHERE {quoted_column} IS NULL;"
                    ),
                )
            )
            changes.append(
                SchemaChange(
                    change_id=f"column:not_null:{name}:{column.name}",
                    category="COLUMN",
                    action="ALTER",
                    object=ChangeObject(name=column.name, table=name),
                    sql_preview=f"ALTER TABLE public.{quoted_table} ALTER COLUMN {quoted_column} SET NOT NULL;",
                    risk_level="CAUTION",
                    reason=REASON_NOT_NULL,
                )
            )

    # Absent RLS information is not treated as disabled.
    if table.expects_rls_enabled and snapshot.rls_by_table.get(name) is False:
        changes.append(
            SchemaChange(
                change_id=f"rls:enable:{name}",
                category="RLS",
                action="ALTER",
                object=ChangeObject(name=name),
                sql_preview=f"ALTER TABLE public.{quoted_table} ENABLE ROW LEVEL SECURITY;",
                risk_level=policy.floor(name, "SAFE"),
                reason=REASON_RLS_DISABLED,
            )
        )

    existing_policies = snapshot.policies_by_table.get(name, set())
    for policy_name in table.expected_policies:
        if not policy_name or policy_name in existing_policies:
            continue
        changes.append(
            SchemaChange(
                change_id=f"policy:create:{name}:{policy_name}",
                category="POLICY",
                action="CREATE",
                object=ChangeObject(name=policy_name, table=name),
                sql_preview=(
                    f"CREATE POLICY {quote_ident(policy_name)} ON public.{quoted_table} "
                    "FOR ALL TO authenticated, app_user USING (true) WITH CHECK (true);"
                ),
                risk_level=policy.floor(name, "SAFE"),
                reason=REASON_POLICY_MISSING,
            )
        )
