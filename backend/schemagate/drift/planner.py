"""Assemble an immutable schema plan for one tenant."""

from __future__ import annotations

import logging
import uuid
from time import perf_counter

from schemagate.drift.diff_engine import diff_schema
from schemagate.drift.errors import NotBootstrappedError
from schemagate.drift.executor import SchemaExecutor
from schemagate.drift.hashing import hash_snapshot, hash_ssot
from schemagate.drift.patch_generator import generate_patch_artifacts
from schemagate.drift.risk import RiskPolicy
from schemagate.drift.ssot_parser import parse_ssot_expectations
from schemagate.drift.ssot_reader import read_ssot_sql_text
from schemagate.drift.types import SchemaPlan

logger = logging.getLogger(__name__)


def build_schema_plan(
    executor: SchemaExecutor,
    *,
    ssot_text: str | None = None,
    risk_policy: RiskPolicy | None = None,
) -> SchemaPlan:
    """Read, parse and diff the SSOT against a fresh snapshot; nothing is persisted.

    A non-blank ``ssot_text`` replaces the configured SSOT file. When the
    tenant lacks the introspection procedure the raised
    :class:`NotBootstrappedError` carries the SSOT hash.
    """

    started = perf_counter()
    text = ssot_text if isinstance(ssot_text, str) and ssot_text.strip() else read_ssot_sql_text()
    ssot_hash = hash_ssot(text)
    expectation = parse_ssot_expectations(text)

    try:
        snapshot = executor.introspect()
    except NotBootstrappedError as exc:
        exc.ssot_version_hash = ssot_hash
        raise

    diff = diff_schema(expectation, snapshot, risk_policy=risk_policy or RiskPolicy.from_settings())
    artifacts = generate_patch_artifacts(diff)
    plan = SchemaPlan(
        plan_id=str(uuid.uuid4()),
        ssot_version_hash=ssot_hash,
        db_snapshot_hash_before=hash_snapshot(snapshot.payload),
        summary_counts=dict(diff.summary_counts),
        changes=diff.changes,
        preflight_queries=diff.preflight_queries,
        artifacts=artifacts,
        db_snapshot=snapshot.payload,
    )
    logger.info(
        "schema.plan_built plan_id=%s tables=%d safe=%d caution=%d destructive=%d total_ms=%.2f",
        plan.plan_id,
        len(expectation.tables),
        plan.summary_counts["SAFE"],
        plan.summary_counts["CAUTION"],
        plan.summary_counts["DESTRUCTIVE"],
        (perf_counter() - started) * 1000.0,
    )
    return plan
