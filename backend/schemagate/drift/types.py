"""Typed schema expectations, snapshots, changes and plans independent of persistence."""

from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import asdict, dataclass, field
from types import MappingProxyType
from typing import Any, Literal

RiskLevel = Literal["SAFE", "CAUTION", "DESTRUCTIVE"]
ChangeCategory = Literal["TABLE", "COLUMN", "INDEX", "CONSTRAINT", "RLS", "POLICY"]
ChangeAction = Literal["CREATE", "ADD", "ALTER"]

RISK_LEVELS: tuple[RiskLevel, ...] = ("SAFE", "CAUTION", "DESTRUCTIVE")


@dataclass(frozen=True, slots=True)
class Column:
    """Column expected by the SSOT."""

    name: str
    type: str = ""
    nullable: bool = True
    default: str | None = None
    raw: str = ""


@dataclass(frozen=True, slots=True)
class Table:
    """Table expected by the SSOT, with its RLS/policy expectations."""

    name: str
    create_sql: str | None = None
    columns: tuple[Column, ...] = ()
    expected_policies: tuple[str, ...] = ()
    expects_rls_enabled: bool = True


@dataclass(frozen=True, slots=True)
class Index:
    """Index expected by the SSOT."""

    name: str
    table: str
    unique: bool
    sql: str


@dataclass(frozen=True, slots=True)
class Constraint:
    """Table constraint expected by the SSOT."""

    table: str
    name: str
    definition: str
    sql: str


@dataclass(frozen=True, slots=True)
class SchemaExpectation:
    """Structured view of the canonical setup script."""

    tables: tuple[Table, ...] = ()
    indexes: tuple[Index, ...] = ()
    constraints: tuple[Constraint, ...] = ()
    rls_enabled_tables: tuple[str, ...] = ()

    def table(self, name: str) -> Table | None:
        return next((table for table in self.tables if table.name == name), None)


@dataclass(slots=True)
class DbSnapshot:
    """Introspected tenant schema keyed for O(1) lookups.

    ``payload`` keeps the raw structure returned by the introspection procedure;
    it is what gets hashed and persisted.
    """

    payload: dict[str, Any]
    columns_by_table: dict[str, dict[str, dict[str, Any]]] = field(default_factory=dict)
    indexes_by_table: dict[str, set[str]] = field(default_factory=dict)
    constraints_by_table: dict[str, set[str]] = field(default_factory=dict)
    policies_by_table: dict[str, set[str]] = field(default_factory=dict)
    rls_by_table: dict[str, bool] = field(default_factory=dict)
    views: dict[str, dict[str, Any]] = field(default_factory=dict)
    extensions: dict[str, dict[str, Any]] = field(default_factory=dict)

    @classmethod
    def from_payload(cls, payload: Any) -> DbSnapshot:
        """Normalize a raw introspection payload; malformed sections become empty."""

        raw = payload if isinstance(payload, dict) else {}
        snapshot = cls(payload=raw)

        for table in _entries(raw, "tables"):
            name = table.get("name")
            if not name:
                continue
            columns = {
                column["name"]: column
                for column in table.get("columns") or []
                if isinstance(column, dict) and column.get("name")
            }
            snapshot.columns_by_table[name] = columns

        for key, target in (
            ("indexes", snapshot.indexes_by_table),
            ("constraints", snapshot.constraints_by_table),
            ("policies", snapshot.policies_by_table),
        ):
            for entry in _entries(raw, key):
                if entry.get("table") and entry.get("name"):
                    target.setdefault(entry["table"], set()).add(entry["name"])

        for entry in _entries(raw, "rls"):
            if entry.get("table"):
                snapshot.rls_by_table[entry["table"]] = bool(entry.get("enabled"))

        snapshot.views = {entry["name"]: entry for entry in _entries(raw, "views") if entry.get("name")}
        snapshot.extensions = {
            entry["name"]: entry for entry in _entries(raw, "extensions") if entry.get("name")
        }
        return snapshot

    def has_table(self, name: str) -> bool:
        return name in self.columns_by_table

    def column(self, table: str, name: str) -> dict[str, Any] | None:
        return self.columns_by_table.get(table, {}).get(name)


def _entries(raw: dict[str, Any], key: str) -> list[dict[str, Any]]:
    value = raw.get(key)
    if not isinstance(value, list):
        return []
    return [entry for entry in value if isinstance(entry, dict)]


@dataclass(frozen=True, slots=True)
class ChangeObject:
    """Database object a change targets."""

    name: str
    table: str | None = None


@dataclass(frozen=True, slots=True)
class SchemaChange:
    """One risk-classified structural difference."""

    change_id: str
    category: ChangeCategory
    action: ChangeAction
    object: ChangeObject
    sql_preview: str
    risk_level: RiskLevel
    reason: str
    title: str = ""

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        if payload["object"]["table"] is None:
            payload["object"].pop("table")
        return payload


@dataclass(frozen=True, slots=True)
class PreflightQuery:
    """Read-only diagnostic that quantifies risk before a change is applied."""

    id: str
    risk_level: RiskLevel
    description: str
    sql: str

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class DiffResult:
    """Diff engine output."""

    summary_counts: dict[str, int]
    changes: tuple[SchemaChange, ...] = ()
    preflight_queries: tuple[PreflightQuery, ...] = ()


@dataclass(frozen=True, slots=True)
class PatchArtifacts:
    """Risk-partitioned SQL scripts plus a Markdown review guide."""

    patch_sql_safe: str
    manual_sql: str
    manual_steps: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


@dataclass(frozen=True, slots=True)
class SchemaPlan:
    """Immutable diff + artifact bundle produced for one tenant at one point in time."""

    plan_id: str
    ssot_version_hash: str
    db_snapshot_hash_before: str
    summary_counts: Mapping[str, int]
    changes: tuple[SchemaChange, ...]
    preflight_queries: tuple[PreflightQuery, ...]
    artifacts: PatchArtifacts
    db_snapshot: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "summary_counts", MappingProxyType(dict(self.summary_counts)))
        object.__setattr__(self, "db_snapshot", MappingProxyType(copy.deepcopy(dict(self.db_snapshot))))

    def snapshot_json(self) -> dict[str, Any]:
        """Detached copy of the snapshot the plan was diffed against."""

        return copy.deepcopy(dict(self.db_snapshot))

    def to_plan_json(self) -> dict[str, Any]:
        """Serialize the plan in the shape persisted with the audit record."""

        return {
            "plan_id": self.plan_id,
            "summary": dict(self.summary_counts),
            "changes": [change.to_dict() for change in self.changes],
            "preflightQueries": [query.to_dict() for query in self.preflight_queries],
            "artifacts": self.artifacts.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class StatementResult:
    """Outcome of one statement inside a non-atomic batch."""

    statement: str
    ok: bool
    error: str | None = None


@dataclass(frozen=True, slots=True)
class PreflightResult:
    """Outcome of one preflight SELECT."""

    query: str
    ok: bool
    result: Any = None
    error: str | None = None
    query_id: str | None = None


@dataclass(frozen=True, slots=True)
class ExecutionReport:
    """Per-statement outcomes of one gated execution call."""

    statements: tuple[StatementResult, ...] = ()
    message: str | None = None

    @property
    def failed_count(self) -> int:
        return sum(1 for result in self.statements if not result.ok)

    @property
    def ok(self) -> bool:
        return self.failed_count == 0

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"statements": [asdict(result) for result in self.statements]}
        if self.message:
            payload["message"] = self.message
        return payload
