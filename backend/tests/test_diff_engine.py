from __future__ import annotations

import unittest

from schemagate.drift.diff_engine import canonical_type, diff_schema, quote_ident
from schemagate.drift.risk import RiskPolicy
from schemagate.drift.ssot_parser import parse_ssot_expectations
from schemagate.drift.types import DbSnapshot


def _policy_name(table: str) -> str:
    return f"Allow full access to authenticated users on {table}"


def _snapshot(tables: dict[str, list[dict]], **sections: list[dict]) -> DbSnapshot:
    """Build a snapshot where every table already carries its canonical policy."""

    payload = {
        "tables": [{"name": name, "columns": columns} for name, columns in tables.items()],
        "policies": [{"table": name, "name": _policy_name(name)} for name in tables],
    }
    for key, entries in sections.items():
        payload.setdefault(key, []).extend(entries)
    return DbSnapshot.from_payload(payload)


def _students_ssot(column_sql: str) -> str:
    return f'ALTER TABLE public."Students" ADD COLUMN IF NOT EXISTS {column_sql};'


class DiffEngineTests(unittest.TestCase):
    def test_missing_nullable_column_is_single_safe_change(self) -> None:
        expectation = parse_ssot_expectations(_students_ssot("notes text NULL"))
        snapshot = _snapshot({"Students": [{"name": "id", "type": "uuid", "nullable": False}]})

        diff = diff_schema(expectation, snapshot)

        self.assertEqual([change.change_id for change in diff.changes], ["column:add:Students:notes"])
        change = diff.changes[0]
        self.assertEqual(change.risk_level, "SAFE")
        self.assertEqual(change.sql_preview, 'ALTER TABLE public."Students" ADD COLUMN IF NOT EXISTS notes text;')
        self.assertEqual(change.title, "Add column Students.notes")
        self.assertEqual(diff.summary_counts, {"SAFE": 1, "CAUTION": 0, "DESTRUCTIVE": 0})

    def test_missing_not_null_column_without_default_is_caution(self) -> None:
        expectation = parse_ssot_expectations(_students_ssot("national_id text NOT NULL"))
        snapshot = _snapshot({"Students": [{"name": "id", "type": "uuid", "nullable": False}]})

        diff = diff_schema(expectation, snapshot)

        self.assertEqual(len(diff.changes), 1)
        self.assertEqual(diff.changes[0].risk_level, "CAUTION")
        self.assertTrue(diff.changes[0].sql_preview.endswith("national_id text NOT NULL;"))

    def test_not_null_column_with_default_is_safe(self) -> None:
        expectation = parse_ssot_expectations(_students_ssot("status text NOT NULL DEFAULT 'active'"))
        snapshot = _snapshot({"Students": []})

        change = diff_schema(expectation, snapshot).changes[0]

        self.assertEqual(change.risk_level, "SAFE")
        self.assertTrue(change.sql_preview.endswith("status text DEFAULT 'active' NOT NULL;"))

    def test_type_mismatch_is_destructive_with_comment_preview(self) -> None:
        expectation = parse_ssot_expectations(_students_ssot("age integer"))
        snapshot = _snapshot({"Students": [{"name": "age", "type": "text", "nullable": True}]})

        diff = diff_schema(expectation, snapshot)

        self.assertEqual([change.change_id for change in diff.changes], ["column:type:Students:age"])
        change = diff.changes[0]
        self.assertEqual(change.risk_level, "DESTRUCTIVE")
        self.assertTrue(change.sql_preview.startswith("--"))
        self.assertIn("SSOT expects integer, DB has text", change.sql_preview)

    def test_type_aliases_compare_equal(self) -> None:
        expectation = parse_ssot_expectations(
            "CREATE TABLE IF NOT EXISTS public.lessons ("
            "count int, starts_at timestamptz, ends_at timestamp, code varchar(20), tags text[]);"
        )
        snapshot = _snapshot(
            {
                "lessons": [
                    {"name": "count", "type": "integer", "nullable": True},
                    {"name": "starts_at", "type": "timestamp with time zone", "nullable": True},
                    {"name": "ends_at", "type": "timestamp without time zone", "nullable": True},
                    {"name": "code", "type": "character varying(20)", "nullable": True},
                    {"name": "tags", "type": "text[]", "nullable": True},
                ]
            }
        )

        self.assertEqual(diff_schema(expectation, snapshot).changes, ())

    def test_canonical_type(self) -> None:
        self.assertEqual(canonical_type("INT4"), "integer")
        self.assertEqual(canonical_type("timestamptz"), "timestamp with time zone")
        self.assertEqual(canonical_type("timestamp(3)"), "timestamp(3) without time zone")
        self.assertEqual(canonical_type("numeric(10, 2)"), "numeric(10,2)")
        self.assertEqual(canonical_type("int[]"), "integer[]")
        self.assertNotEqual(canonical_type("varchar(20)"), canonical_type("varchar(40)"))

    def test_nullable_db_column_gets_not_null_change_and_preflight(self) -> None:
        expectation = parse_ssot_expectations(_students_ssot("email text NOT NULL"))
        snapshot = _snapshot({"Students": [{"name": "email", "type": "text", "nullable": True}]})

        diff = diff_schema(expectation, snapshot)

        change = diff.changes[0]
        self.assertEqual(change.change_id, "column:not_null:Students:email")
        self.assertEqual(change.risk_level, "CAUTION")
        self.assertEqual(change.sql_preview, 'ALTER TABLE public."Students" ALTER COLUMN email SET NOT NULL;')
        self.assertEqual(len(diff.preflight_queries), 1)
        query = diff.preflight_queries[0]
        self.assertEqual(query.id, "preflight:nulls:Students:email")
        self.assertEqual(
            query.sql,
            'SELECT COUNT(*)::integer AS null_count FROM public."Students" WHERE email IS NULL;',
        )

    def test_missing_table_is_created_without_column_changes(self) -> None:
        expectation = parse_ssot_expectations("CREATE TABLE IF NOT EXISTS public.rooms (id uuid NOT NULL);")

        diff = diff_schema(expectation, _snapshot({}))

        self.assertEqual([change.change_id for change in diff.changes], ["table:create:rooms"])
        self.assertEqual(diff.changes[0].sql_preview, "CREATE TABLE IF NOT EXISTS public.rooms (id uuid NOT NULL);")
        self.assertEqual(diff.changes[0].title, "Create table rooms")

    def test_alter_only_missing_table_gets_comment_preview(self) -> None:
        expectation = parse_ssot_expectations("ALTER TABLE public.rooms ADD COLUMN IF NOT EXISTS label text;")

        change = diff_schema(expectation, _snapshot({})).changes[0]

        self.assertEqual(change.change_id, "table:create:rooms")
        self.assertTrue(change.sql_preview.startswith("-- Missing CREATE TABLE statement for rooms"))

    def test_rls_only_flagged_when_explicitly_disabled(self) -> None:
        expectation = parse_ssot_expectations("CREATE TABLE IF NOT EXISTS public.rooms (id uuid);")
        tables = {"rooms": [{"name": "id", "type": "uuid", "nullable": True}]}

        self.assertEqual(diff_schema(expectation, _snapshot(tables)).changes, ())
        disabled = diff_schema(expectation, _snapshot(tables, rls=[{"table": "rooms", "enabled": False}]))
        self.assertEqual([change.change_id for change in disabled.changes], ["rls:enable:rooms"])
        self.assertEqual(disabled.changes[0].sql_preview, "ALTER TABLE public.rooms ENABLE ROW LEVEL SECURITY;")
        enabled = diff_schema(expectation, _snapshot(tables, rls=[{"table": "rooms", "enabled": True}]))
        self.assertEqual(enabled.changes, ())

    def test_missing_policy_is_safe(self) -> None:
        expectation = parse_ssot_expectations('CREATE TABLE IF NOT EXISTS public."Settings" ("key" text);')
        snapshot = DbSnapshot.from_payload(
            {"tables": [{"name": "Settings", "columns": [{"name": "key", "type": "text", "nullable": True}]}]}
        )

        diff = diff_schema(expectation, snapshot)

        self.assertEqual(len(diff.changes), 1)
        change = diff.changes[0]
        self.assertEqual(change.category, "POLICY")
        self.assertEqual(change.risk_level, "SAFE")
        self.assertEqual(
            change.sql_preview,
            'CREATE POLICY "Allow full access to authenticated users on Settings" ON public."Settings" '
            "FOR ALL TO authenticated, app_user USING (true) WITH CHECK (true);",
        )

    def test_missing_index_and_constraint(self) -> None:
        expectation = parse_ssot_expectations(
            """
            CREATE TABLE IF NOT EXISTS public.rooms (id uuid, building_id uuid);
            CREATE INDEX IF NOT EXISTS rooms_building_idx ON public.rooms (building_id);
            ALTER TABLE public.rooms ADD CONSTRAINT rooms_building_fkey FOREIGN KEY (building_id) REFERENCES public.buildings(id);
            ALTER TABLE public.rooms ADD CONSTRAINT rooms_id_check CHECK (id IS NOT NULL);
            """
        )
        snapshot = _snapshot(
            {"rooms": [{"name": "id", "type": "uuid", "nullable": True}, {"name": "building_id", "type": "uuid"}]},
            constraints=[{"table": "rooms", "name": "rooms_id_check"}],
        )

        diff = diff_schema(expectation, snapshot)

        self.assertEqual(
            [change.change_id for change in diff.changes],
            ["index:create:rooms:rooms_building_idx", "constraint:add:rooms:rooms_building_fkey"],
        )
        self.assertEqual(diff.changes[0].risk_level, "SAFE")
        self.assertEqual(diff.changes[1].risk_level, "CAUTION")
        self.assertEqual(len(diff.preflight_queries), 1)
        advisory = diff.preflight_queries[0]
        self.assertEqual(advisory.id, "preflight:fk:rooms:rooms_building_fkey")
        self.assertTrue(advisory.sql.startswith("--"))

    def test_locked_table_raises_safe_changes_to_caution(self) -> None:
        expectation = parse_ssot_expectations(
            _students_ssot("notes text") + "\nCREATE TABLE IF NOT EXISTS public.rooms (id uuid);"
        )
        snapshot = _snapshot({"Students": []})

        diff = diff_schema(expectation, snapshot, risk_policy=RiskPolicy.of(["students", "ROOMS"]))

        self.assertEqual([change.risk_level for change in diff.changes], ["CAUTION", "CAUTION"])
        self.assertEqual(diff.summary_counts, {"SAFE": 0, "CAUTION": 2, "DESTRUCTIVE": 0})

    def test_locked_table_never_lowers_caution_or_destructive(self) -> None:
        expectation = parse_ssot_expectations(
            _students_ssot("age integer")
            + "\n"
            + _students_ssot("email text NOT NULL")
            + '\nALTER TABLE public."Students" ADD CONSTRAINT students_age_check CHECK (age > 0);'
        )
        snapshot = _snapshot(
            {
                "Students": [
                    {"name": "age", "type": "text", "nullable": True},
                    {"name": "email", "type": "text", "nullable": True},
                ]
            }
        )

        unlocked = diff_schema(expectation, snapshot)
        locked = diff_schema(expectation, snapshot, risk_policy=RiskPolicy.of(["Students"]))

        risks = {change.change_id: change.risk_level for change in locked.changes}
        self.assertEqual(risks["column:type:Students:age"], "DESTRUCTIVE")
        self.assertEqual(risks["column:not_null:Students:email"], "CAUTION")
        self.assertEqual(risks["constraint:add:Students:students_age_check"], "CAUTION")
        self.assertEqual(risks, {change.change_id: change.risk_level for change in unlocked.changes})
        self.assertEqual(locked.summary_counts, unlocked.summary_counts)

        self.assertEqual(locked.preflight_queries, unlocked.preflight_queries)
        nulls = [query for query in locked.preflight_queries if query.id == "preflight:nulls:Students:email"]
        self.assertEqual(len(nulls), 1)
        self.assertEqual(nulls[0].risk_level, "CAUTION")

    def test_changes_follow_table_then_index_then_constraint_order(self) -> None:
        expectation = parse_ssot_expectations(
            """
            ALTER TABLE public.b ADD CONSTRAINT b_check CHECK (true);
            CREATE INDEX IF NOT EXISTS a_idx ON public.a (x);
            CREATE TABLE IF NOT EXISTS public.a (x int);
            CREATE TABLE IF NOT EXISTS public.b (y int);
            """
        )

        diff = diff_schema(expectation, _snapshot({}))

        self.assertEqual(
            [change.change_id for change in diff.changes],
            ["table:create:a", "table:create:b", "index:create:a:a_idx", "constraint:add:b:b_check"],
        )

    def test_diff_is_deterministic_and_empty_for_applied_schema(self) -> None:
        expectation = parse_ssot_expectations(_students_ssot("notes text NULL"))
        snapshot = _snapshot({"Students": [{"name": "notes", "type": "text", "nullable": True}]})

        first = diff_schema(expectation, snapshot)
        second = diff_schema(expectation, snapshot)

        self.assertEqual(first, second)
        self.assertEqual(first.changes, ())
        self.assertEqual(first.summary_counts, {"SAFE": 0, "CAUTION": 0, "DESTRUCTIVE": 0})

    def test_quote_ident(self) -> None:
        self.assertEqual(quote_ident("students"), "students")
        self.assertEqual(quote_ident("Students"), '"Students"')
        self.assertEqual(quote_ident('odd"name'), '"odd""name"')


class DbSnapshotTests(unittest.TestCase):
    def test_malformed_payload_sections_are_ignored(self) -> None:
        snapshot = DbSnapshot.from_payload(
            {"tables": "nope", "indexes": [None, {"table": "a"}, {"table": "a", "name": "a_idx"}], "rls": [1]}
        )

        self.assertEqual(snapshot.columns_by_table, {})
        self.assertEqual(snapshot.indexes_by_table, {"a": {"a_idx"}})
        self.assertEqual(snapshot.rls_by_table, {})

    def test_non_dict_payload_becomes_empty(self) -> None:
        snapshot = DbSnapshot.from_payload(None)
        self.assertEqual(snapshot.payload, {})
        self.assertFalse(snapshot.has_table("a"))


if __name__ == "__main__":
    unittest.main()
