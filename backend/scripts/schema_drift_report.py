"""Diff the SSOT against a saved introspection snapshot without touching any database.

Usage (from repository root):
    python backend/scripts/schema_drift_report.py --snapshot snapshot.json

Usage (from backend directory):
    python scripts/schema_drift_report.py --snapshot snapshot.json --ssot custom.sql
    # or
    python -m scripts.schema_drift_report --snapshot snapshot.json --format json
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

# Make `schemagate` imports work whether the script is run from repo root or backend/.
BACKEND_DIR = Path(__file__).resolve().parents[1]
if str(BACKEND_DIR) not in sys.path:
    sys.path.insert(0, str(BACKEND_DIR))

from schemagate.drift.diff_engine import diff_schema
from schemagate.drift.errors import SchemaMigrationError
from schemagate.drift.hashing import hash_snapshot, hash_ssot
from schemagate.drift.patch_generator import generate_patch_artifacts
from schemagate.drift.risk import RiskPolicy
from schemagate.drift.ssot_parser import parse_ssot_expectations
from schemagate.drift.ssot_reader import read_ssot_sql_text
from schemagate.drift.types import DbSnapshot


def build_report(ssot_text: str, snapshot_payload: object, *, locked_tables: list[str] | None = None) -> dict:
    """Return the plan-shaped report for one SSOT/snapshot pair."""

    policy = RiskPolicy.of(locked_tables) if locked_tables is not None else RiskPolicy.from_settings()
    snapshot = DbSnapshot.from_payload(snapshot_payload)
    diff = diff_schema(parse_ssot_expectations(ssot_text), snapshot, risk_policy=policy)
    artifacts = generate_patch_artifacts(diff)
    return {
        "ssot_version_hash": hash_ssot(ssot_text),
        "db_snapshot_hash": hash_snapshot(snapshot.payload),
        "summary_counts": diff.summary_counts,
        "changes": [change.to_dict() for change in diff.changes],
        "preflight_queries": [query.to_dict() for query in diff.preflight_queries],
        "artifacts": artifacts.to_dict(),
    }


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    """Parse script CLI arguments."""

    parser = argparse.ArgumentParser(description="Report schema drift between the SSOT and a snapshot JSON file.")
    parser.add_argument("--snapshot", required=True, help="Path to a schema_introspection_v1() JSON payload.")
    parser.add_argument("--ssot", default=None, help="SSOT SQL file (default: configured or packaged script).")
    parser.add_argument(
        "--locked-table",
        action="append",
        dest="locked_tables",
        default=None,
        help="Table whose SAFE changes are raised to CAUTION (repeatable; default: SCHEMA_LOCKED_TABLES).",
    )
    parser.add_argument("--format", choices=("text", "json"), default="text", help="Output format.")
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    """Print the drift report; exit code 1 when anything is not SAFE."""

    args = parse_args(argv)
    try:
        ssot_text = read_ssot_sql_text(args.ssot)
        snapshot_payload = json.loads(Path(args.snapshot).read_text(encoding="utf-8"))
        report = build_report(ssot_text, snapshot_payload, locked_tables=args.locked_tables)
    except (OSError, json.JSONDecodeError) as exc:
        print(f"error: cannot read snapshot: {exc}", file=sys.stderr)
        return 2
    except SchemaMigrationError as exc:
        print(f"error: {exc.code}", file=sys.stderr)
        return 2

    if args.format == "json":
        print(json.dumps(report, indent=2, sort_keys=True))
    else:
        counts = report["summary_counts"]
        print(f"ssot_version_hash={report['ssot_version_hash']}")
        print(f"db_snapshot_hash={report['db_snapshot_hash']}")
        print(f"safe={counts['SAFE']} caution={counts['CAUTION']} destructive={counts['DESTRUCTIVE']}")
        print()
        for change in report["changes"]:
            print(f"[{change['risk_level']:<11}] {change['title']}")
        if report["artifacts"]["manual_steps"]:
            print()
            print(report["artifacts"]["manual_steps"])

    counts = report["summary_counts"]
    return 1 if counts["CAUTION"] or counts["DESTRUCTIVE"] else 0


if __name__ == "__main__":
    sys.exit(main())
