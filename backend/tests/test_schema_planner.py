from __future__ import annotations

import copy
import unittest
import uuid

from schemagate.drift.errors import NotBootstrappedError, ParseError
from schemagate.drift.executor import SchemaExecutor
from schemagate.drift.hashing import hash_snapshot, hash_ssot, sha256_hex, stable_json
from schemagate.drift.planner import build_schema_plan
from schemagate.drift.risk import RiskPolicy
from schemagate.drift.ssot_reader import read_ssot_sql_text

SSOT = """
CREATE TABLE IF NOT EXISTS public.rooms (id uuid NOT NULL, label text, capacity int NOT NULL);
ALTER TABLE public.rooms ADD CONSTRAINT rooms_capacity_check CHECK (capacity > 0);
"""

SNAPSHOT = {
    "tables": [
        {
            "name": "rooms",
            "columns": [
                {"name": "id", "type": "uuid", "nullable": False},
                {"name": "capacity", "type": "integer", "nullable": True},
            ],
        }
    ],
    "policies": [{"table": "rooms", "name": "Allow full access to authenticated users on rooms"}],
}


class _StubRpc:
    def __init__(self, snapshot: dict | None = None, *, missing: bool = False) -> None:
        self.snapshot = snapshot
        self.missing = missing

    def introspect(self) -> dict | None:
        if self.missing:
            raise NotBootstrappedError(code="schema_introspection_not_available", bootstrap_sql="-- bootstrap")
        return self.snapshot

    def run_selects(self, queries: list[str]) -> list[dict]:
        return []

    def execute_statements(self, statements: list[str], **_: object) -> dict:
        return {"statements": []}

    def close(self) -> None:
        return None


class SchemaPlannerTests(unittest.TestCase):
    def test_plan_bundles_diff_artifacts_and_hashes(self) -> None:
        plan = build_schema_plan(SchemaExecutor(_StubRpc(SNAPSHOT)), ssot_text=SSOT, risk_policy=RiskPolicy())

        self.assertEqual(str(uuid.UUID(plan.plan_id)), plan.plan_id)
        self.assertEqual(plan.ssot_version_hash, hash_ssot(SSOT))
        self.assertEqual(plan.db_snapshot_hash_before, hash_snapshot(SNAPSHOT))
        self.assertEqual(plan.summary_counts, {"SAFE": 1, "CAUTION": 2, "DESTRUCTIVE": 0})
        self.assertEqual(
            [change.change_id for change in plan.changes],
            [
                "column:add:rooms:label",
                "column:not_null:rooms:capacity",
                "constraint:add:rooms:rooms_capacity_check",
            ],
        )
        self.assertEqual(plan.artifacts.patch_sql_safe, "ALTER TABLE public.rooms ADD COLUMN IF NOT EXISTS label text;")
        self.assertEqual(
            plan.artifacts.manual_sql,
            "ALTER TABLE public.rooms ALTER COLUMN capacity SET NOT NULL;\n\n"
            "ALTER TABLE public.rooms ADD CONSTRAINT rooms_capacity_check CHECK (capacity > 0);",
        )

        plan_json = plan.to_plan_json()
        self.assertEqual(set(plan_json), {"plan_id", "summary", "changes", "preflightQueries", "artifacts"})
        self.assertEqual(plan_json["preflightQueries"][0]["id"], "preflight:nulls:rooms:capacity")

    def test_plan_is_detached_from_later_mutation(self) -> None:
        snapshot = copy.deepcopy(SNAPSHOT)
        plan = build_schema_plan(SchemaExecutor(_StubRpc(snapshot)), ssot_text=SSOT, risk_policy=RiskPolicy())

        snapshot["tables"][0]["columns"].clear()
        snapshot["policies"] = []

        self.assertEqual(plan.snapshot_json(), SNAPSHOT)
        with self.assertRaises(TypeError):
            plan.summary_counts["SAFE"] = 0
        with self.assertRaises(TypeError):
            plan.db_snapshot["tables"] = []
        plan.snapshot_json()["tables"].clear()
        self.assertEqual(len(plan.db_snapshot["tables"]), 1)
        self.assertEqual(plan.to_plan_json()["summary"], {"SAFE": 1, "CAUTION": 2, "DESTRUCTIVE": 0})

    def test_plan_ids_are_unique_but_hashes_stable(self) -> None:
        executor = SchemaExecutor(_StubRpc(SNAPSHOT))

        first = build_schema_plan(executor, ssot_text=SSOT, risk_policy=RiskPolicy())
        second = build_schema_plan(executor, ssot_text=SSOT, risk_policy=RiskPolicy())

        self.assertNotEqual(first.plan_id, second.plan_id)
        self.assertEqual(first.db_snapshot_hash_before, second.db_snapshot_hash_before)
        self.assertEqual(first.changes, second.changes)

    def test_blank_text_falls_back_to_packaged_ssot(self) -> None:
        plan = build_schema_plan(SchemaExecutor(_StubRpc({})), ssot_text="  ", risk_policy=RiskPolicy())

        self.assertEqual(plan.ssot_version_hash, hash_ssot(read_ssot_sql_text()))
        created = [change for change in plan.changes if change.category == "TABLE"]
        self.assertEqual(len(created), 7)
        self.assertTrue(all(change.risk_level == "SAFE" for change in created))

    def test_missing_introspection_carries_ssot_hash(self) -> None:
        with self.assertRaises(NotBootstrappedError) as ctx:
            build_schema_plan(SchemaExecutor(_StubRpc(missing=True)), ssot_text=SSOT, risk_policy=RiskPolicy())

        self.assertEqual(ctx.exception.ssot_version_hash, hash_ssot(SSOT))
        self.assertEqual(ctx.exception.to_detail()["bootstrap_sql"], "-- bootstrap")

    def test_unparseable_text_fails_before_introspection(self) -> None:
        rpc = _StubRpc(missing=True)

        with self.assertRaises(ParseError):
            build_schema_plan(SchemaExecutor(rpc), ssot_text="SELECT 1;", risk_policy=RiskPolicy())


class HashingTests(unittest.TestCase):
    def test_snapshot_hash_ignores_key_order(self) -> None:
        self.assertEqual(hash_snapshot({"a": 1, "b": [1, 2]}), hash_snapshot({"b": [1, 2], "a": 1}))
        self.assertEqual(hash_snapshot(None), sha256_hex("null"))
        self.assertEqual(stable_json({"b": 1, "a": "x"}), '{"a":"x","b":1}')

    def test_ssot_hash_ignores_surrounding_whitespace(self) -> None:
        self.assertEqual(hash_ssot("  SELECT 1;\n"), hash_ssot("SELECT 1;"))
        self.assertEqual(len(hash_ssot("SELECT 1;")), 64)


if __name__ == "__main__":
    unittest.main()
