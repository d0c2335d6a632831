"""Turn a diff into reviewable SQL scripts and a Markdown guide."""

from __future__ import annotations

from schemagate.drift.types import DiffResult, PatchArtifacts, RiskLevel, SchemaChange

RISK_DESCRIPTIONS: dict[RiskLevel, str] = {
    "SAFE": "Safe changes (no data is removed).",
    "CAUTION": "Changes that can fail when existing data is invalid.",
    "DESTRUCTIVE": "Changes that may break data or require a migration.",
}

_MANUAL_SECTIONS: tuple[tuple[str, RiskLevel], ...] = (
    ("Caution changes (CAUTION)", "CAUTION"),
    ("Destructive changes (DESTRUCTIVE)", "DESTRUCTIVE"),
)


def _normalize_sql(sql: str | None) -> str:
    return (sql or "").strip()


def is_executable_sql(sql: str) -> bool:
    """Comment-only previews and fragments without a terminator are not executable."""

    return bool(sql) and not sql.startswith("--") and ";" in sql


def build_manual_steps(changes: tuple[SchemaChange, ...] | list[SchemaChange]) -> str:
    lines: list[str] = []
    for title, risk in _MANUAL_SECTIONS:
        bucket = [change for change in changes if change.risk_level == risk]
        if not bucket:
            continue
        lines.append(f"## {title}")
        lines.append("")
        for change in bucket:
            lines.append(f"### {change.title}")
            lines.append(f"- Risk: {risk} ({RISK_DESCRIPTIONS[risk]})")
            lines.append(f"- Why: {change.reason}")
            lines.append("")
            sql = _normalize_sql(change.sql_preview)
            if sql:
                lines.extend(["```sql", sql, "```", ""])
    return "\n".join(lines)


def generate_patch_artifacts(diff: DiffResult) -> PatchArtifacts:
    """Partition change SQL by risk.

    ``patch_sql_safe`` holds every SAFE preview, ``manual_sql`` only the
    executable CAUTION/DESTRUCTIVE previews, and ``manual_steps`` documents
    all non-SAFE changes for a human reviewer.
    """

    safe = [
        sql
        for sql in (_normalize_sql(change.sql_preview) for change in diff.changes if change.risk_level == "SAFE")
        if sql
    ]
    manual = [
        sql
        for sql in (
            _normalize_sql(change.sql_preview)
            for change in diff.changes
            if change.risk_level in ("CAUTION", "DESTRUCTIVE")
        )
        if is_executable_sql(sql)
    ]
    return PatchArtifacts(
        patch_sql_safe="\n\n".join(safe),
        manual_sql="\n\n".join(manual),
        manual_steps=build_manual_steps(diff.changes),
    )
