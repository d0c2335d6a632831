"""SSOT parser: canonical setup script -> :class:`SchemaExpectation`.

Only a fixed whitelist of statement shapes is recognized (case-insensitive):

- ``CREATE TABLE IF NOT EXISTS public.<t> ( ... )``
- ``ALTER TABLE public.<t> ADD COLUMN IF NOT EXISTS <def> [, ADD COLUMN ...]``
- ``CREATE [UNIQUE] INDEX IF NOT EXISTS <i> ON public.<t> ...``
- ``ALTER TABLE public.<t> ENABLE ROW LEVEL SECURITY``
- ``ALTER TABLE public.<t> ADD CONSTRAINT <k> <definition>``

Anything else (functions, grants, roles, conditional patches) is ignored.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field

from schemagate.drift.errors import ParseError
from schemagate.drift.scanner import (
    find_matching_paren,
    iter_ddl_statements,
    mask_literals,
    split_top_level_commas,
)
from schemagate.drift.types import Column, Constraint, Index, SchemaExpectation, Table

CANONICAL_POLICY_TEMPLATE = "Allow full access to authenticated users on {table}"

_IDENT = r'(?:"(?:[^"]|"")+"|[A-Za-z_][A-Za-z0-9_$]*)'
_CONSTRAINT_STARTERS = re.compile(
    r"^(?:CONSTRAINT|PRIMARY\s+KEY|FOREIGN\s+KEY|UNIQUE|CHECK|EXCLUDE)\b",
    re.IGNORECASE,
)
_COLUMN_HEAD = re.compile(rf"^(?P<name>{_IDENT})\s+(?P<rest>.+)$", re.DOTALL)
_KEYWORD_BOUNDARY = (
    r"\bDEFAULT\b|\bNOT\s+NULL\b|\bNULL\b|\bPRIMARY\s+KEY\b|\bUNIQUE\b|\bREFERENCES\b"
    r"|\bCHECK\b|\bCONSTRAINT\b|\bCOLLATE\b|\bGENERATED\b"
)
_TYPE_END = re.compile(_KEYWORD_BOUNDARY, re.IGNORECASE)
_DEFAULT_VALUE = re.compile(
    r"\bDEFAULT\s+(?P<value>.+?)\s*(?=\bNOT\s+NULL\b|\bNULL\b|\bPRIMARY\s+KEY\b|\bUNIQUE\b"
    r"|\bREFERENCES\b|\bCHECK\b|\bCONSTRAINT\b|\bCOLLATE\b|\bGENERATED\b|$)",
    re.IGNORECASE | re.DOTALL,
)
_NOT_NULL = re.compile(r"\bNOT\s+NULL\b", re.IGNORECASE)


class _Cursor:
    """Keyword cursor over one statement."""

    def __init__(self, text: str) -> None:
        self.text = text
        self.pos = 0

    def _skip_ws(self) -> None:
        while self.pos < len(self.text) and self.text[self.pos].isspace():
            self.pos += 1

    def accept(self, *keywords: str) -> bool:
        """Consume the keyword sequence if it is next; otherwise consume nothing."""

        start = self.pos
        for keyword in keywords:
            self._skip_ws()
            match = re.compile(rf"{keyword}\b", re.IGNORECASE).match(self.text, self.pos)
            if match is None:
                self.pos = start
                return False
            self.pos = match.end()
        return True

    def identifier(self) -> str | None:
        self._skip_ws()
        match = re.compile(_IDENT).match(self.text, self.pos)
        if match is None:
            return None
        self.pos = match.end()
        return match.group(0)

    def public_name(self) -> str | None:
        """Parse ``public.<ident>`` and return the raw identifier."""

        start = self.pos
        self._skip_ws()
        match = re.compile(rf'(?:public|"public")\s*\.\s*(?P<ident>{_IDENT})', re.IGNORECASE).match(
            self.text, self.pos
        )
        if match is None:
            self.pos = start
            return None
        self.pos = match.end()
        return match.group("ident")

    def group(self) -> str | None:
        """Consume a balanced ``( ... )`` group and return its inner text."""

        self._skip_ws()
        if self.pos >= len(self.text) or self.text[self.pos] != "(":
            return None
        close = find_matching_paren(self.text, self.pos)
        if close == -1:
            return None
        inner = self.text[self.pos + 1 : close]
        self.pos = close + 1
        return inner

    def rest(self) -> str:
        return self.text[self.pos :].strip()


@dataclass(slots=True)
class _TableDraft:
    name: str
    create_sql: str | None = None
    columns: dict[str, Column] = field(default_factory=dict)


def normalize_identifier(raw: str | None) -> str:
    """Strip double quotes from quoted identifiers; fold bare identifiers to lower case."""

    value = (raw or "").strip()
    if not value:
        return ""
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        return value[1:-1].replace('""', '"')
    return value.lower()


def parse_column_definition(entry: str) -> Column | None:
    """Parse one column definition; constraint-shaped entries return ``None``."""

    trimmed = entry.strip().rstrip(",").strip()
    if not trimmed or _CONSTRAINT_STARTERS.match(trimmed):
        return None
    head = _COLUMN_HEAD.match(trimmed)
    if head is None:
        return None

    name = normalize_identifier(head.group("name"))
    remainder = head.group("rest")
    masked = mask_literals(remainder)

    type_end = _TYPE_END.search(masked)
    column_type = remainder[: type_end.start()] if type_end else remainder
    column_type = " ".join(column_type.split()).rstrip(",")

    default: str | None = None
    default_match = _DEFAULT_VALUE.search(masked)
    if default_match:
        value_slice = remainder[default_match.start("value") : default_match.end("value")]
        default = value_slice.strip().rstrip(",").strip() or None

    return Column(
        name=name,
        type=column_type,
        nullable=_NOT_NULL.search(masked) is None,
        default=default,
        raw=trimmed,
    )


def parse_ssot_expectations(ssot_text: str) -> SchemaExpectation:
    """Extract tables, columns, indexes, constraints and RLS expectations."""

    if not isinstance(ssot_text, str) or not ssot_text.strip():
        raise ParseError("invalid_ssot_text")

    created: dict[str, _TableDraft] = {}
    altered: list[tuple[str, Column]] = []
    indexes: dict[tuple[str, str], Index] = {}
    constraints: dict[tuple[str, str], Constraint] = {}
    rls_enabled: list[str] = []
    recognized = 0

    for statement in iter_ddl_statements(ssot_text):
        cursor = _Cursor(statement)
        if cursor.accept("CREATE", "TABLE", "IF", "NOT", "EXISTS"):
            draft = _parse_create_table(cursor, statement)
            if draft is not None:
                recognized += 1
                created.setdefault(draft.name, draft)
            continue
        if cursor.accept("CREATE"):
            unique = cursor.accept("UNIQUE")
            if cursor.accept("INDEX", "IF", "NOT", "EXISTS"):
                index = _parse_create_index(cursor, statement, unique=unique)
                if index is not None:
                    recognized += 1
                    indexes.setdefault((index.table, index.name), index)
            continue
        if cursor.accept("ALTER", "TABLE"):
            cursor.accept("IF", "EXISTS")
            cursor.accept("ONLY")
            raw_table = cursor.public_name()
            if raw_table is None:
                continue
            table_name = normalize_identifier(raw_table)
            for clause in split_top_level_commas(cursor.rest()):
                clause_cursor = _Cursor(clause)
                if clause_cursor.accept("ADD", "COLUMN", "IF", "NOT", "EXISTS"):
                    column = parse_column_definition(clause_cursor.rest())
                    if column is not None:
                        recognized += 1
                        altered.append((table_name, column))
                elif clause_cursor.accept("ENABLE", "ROW", "LEVEL", "SECURITY"):
                    recognized += 1
                    if table_name not in rls_enabled:
                        rls_enabled.append(table_name)
                elif clause_cursor.accept("ADD", "CONSTRAINT"):
                    constraint = _parse_add_constraint(clause_cursor, raw_table, table_name)
                    if constraint is not None:
                        recognized += 1
                        constraints.setdefault((constraint.table, constraint.name), constraint)

    if not recognized:
        raise ParseError("ssot_has_no_recognized_statements")

    tables = dict(created)
    for table_name, column in altered:
        draft = tables.setdefault(table_name, _TableDraft(name=table_name))
        draft.columns.setdefault(column.name, column)

    return SchemaExpectation(
        tables=tuple(
            Table(
                name=draft.name,
                create_sql=draft.create_sql,
                columns=tuple(draft.columns.values()),
                expected_policies=(CANONICAL_POLICY_TEMPLATE.format(table=draft.name),),
                # Every SSOT table is expected to have RLS on, whether or not an
                # ENABLE statement was found for it.
                expects_rls_enabled=True,
            )
            for draft in tables.values()
        ),
        indexes=tuple(indexes.values()),
        constraints=tuple(constraints.values()),
        rls_enabled_tables=tuple(rls_enabled),
    )


def _parse_create_table(cursor: _Cursor, statement: str) -> _TableDraft | None:
    raw_table = cursor.public_name()
    if raw_table is None:
        return None
    column_blob = cursor.group()
    if column_blob is None:
        return None
    columns: dict[str, Column] = {}
    for item in split_top_level_commas(column_blob):
        column = parse_column_definition(item)
        if column is not None:
            columns.setdefault(column.name, column)
    return _TableDraft(
        name=normalize_identifier(raw_table),
        create_sql=f"{statement.strip()};",
        columns=columns,
    )


def _parse_create_index(cursor: _Cursor, statement: str, *, unique: bool) -> Index | None:
    raw_index = cursor.identifier()
    if raw_index is None or not cursor.accept("ON"):
        return None
    cursor.accept("ONLY")
    raw_table = cursor.public_name()
    if raw_table is None:
        return None
    return Index(
        name=normalize_identifier(raw_index),
        table=normalize_identifier(raw_table),
        unique=unique,
        sql=f"{statement.strip()};",
    )


def _parse_add_constraint(cursor: _Cursor, raw_table: str, table_name: str) -> Constraint | None:
    raw_name = cursor.identifier()
    definition = cursor.rest()
    if raw_name is None or not definition:
        return None
    return Constraint(
        table=table_name,
        name=normalize_identifier(raw_name),
        definition=definition,
        sql=f"ALTER TABLE public.{raw_table} ADD CONSTRAINT {raw_name} {definition};",
    )
