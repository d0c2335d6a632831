"""Lexer-aware scanning helpers for the restricted DDL dialect.

The SSOT script is not parsed as general SQL. These helpers only know enough
of PostgreSQL's lexical rules to find statement boundaries, balanced
parentheses and top-level commas without being fooled by:

- ``-- line`` and ``/* block */`` comments (dropped from the output),
- ``'single-quoted'`` strings with ``''`` escapes,
- ``"quoted identifiers"`` with ``""`` escapes,
- ``$tag$ dollar-quoted $tag$`` bodies (function and ``DO`` bodies).

:func:`iter_ddl_statements` additionally descends into anonymous ``DO``
blocks, because the setup script wraps non-idempotent DDL such as
``ADD CONSTRAINT`` in ``DO $$ BEGIN ... EXCEPTION ... END $$``. Strings passed
to ``EXECUTE`` inside those blocks are literals and are never scanned.
"""

from __future__ import annotations

import re
from collections.abc import Iterator

_DOLLAR_TAG = re.compile(r"\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$")
_DO_BLOCK = re.compile(
    r"^DO\s+(?:LANGUAGE\s+\w+\s+)?(?P<tag>\$(?:[A-Za-z_][A-Za-z0-9_]*)?\$)(?P<body>.*)(?P=tag)"
    r"(?:\s+LANGUAGE\s+\w+)?\s*$",
    re.IGNORECASE | re.DOTALL,
)
_BLOCK_PREFIX = re.compile(r"^(?:BEGIN|DECLARE)\b\s*", re.IGNORECASE)


def _literal_end(text: str, index: int) -> int | None:
    """Return the index just past the literal/comment starting at *index*, if any."""

    ch = text[index]
    if ch in ("'", '"'):
        cursor = index + 1
        while cursor < len(text):
            if text[cursor] == ch:
                if cursor + 1 < len(text) and text[cursor + 1] == ch:
                    cursor += 2
                    continue
                return cursor + 1
            cursor += 1
        return len(text)
    if ch == "-" and text.startswith("--", index):
        newline = text.find("\n", index)
        return len(text) if newline == -1 else newline
    if ch == "/" and text.startswith("/*", index):
        close = text.find("*/", index + 2)
        return len(text) if close == -1 else close + 2
    if ch == "$" and (index == 0 or not (text[index - 1].isalnum() or text[index - 1] == "_")):
        match = _DOLLAR_TAG.match(text, index)
        if match:
            close = text.find(match.group(0), match.end())
            return len(text) if close == -1 else close + len(match.group(0))
    return None


def _is_comment(text: str, index: int) -> bool:
    return text.startswith("--", index) or text.startswith("/*", index)


def strip_comments(text: str) -> str:
    """Remove SQL comments while keeping literals and quoted bodies verbatim."""

    out: list[str] = []
    index = 0
    while index < len(text):
        end = _literal_end(text, index)
        if end is None:
            out.append(text[index])
            index += 1
            continue
        if _is_comment(text, index):
            out.append(" " if text.startswith("/*", index) else "")
        else:
            out.append(text[index:end])
        index = end
    return "".join(out)


def split_statements(sql: str) -> list[str]:
    """Split *sql* at top-level semicolons.

    Comments are dropped; empty statements are skipped. Returned statements
    are stripped and carry no trailing semicolon.
    """

    text = strip_comments(sql or "")
    statements: list[str] = []
    start = 0
    index = 0
    while index < len(text):
        end = _literal_end(text, index)
        if end is not None:
            index = end
            continue
        if text[index] == ";":
            chunk = text[start:index].strip()
            if chunk:
                statements.append(chunk)
            start = index + 1
        index += 1
    tail = text[start:].strip()
    if tail:
        statements.append(tail)
    return statements


def iter_ddl_statements(sql: str) -> Iterator[str]:
    """Yield top-level statements and, recursively, statements inside ``DO`` blocks."""

    for statement in split_statements(sql):
        match = _DO_BLOCK.match(statement)
        if match is None:
            yield statement
            continue
        for inner in iter_ddl_statements(match.group("body")):
            inner = _BLOCK_PREFIX.sub("", inner, count=1).strip()
            if inner:
                yield inner


def find_matching_paren(text: str, open_index: int) -> int:
    """Return the index of the ``)`` closing the ``(`` at *open_index*, or -1."""

    depth = 0
    index = open_index
    while index < len(text):
        end = _literal_end(text, index)
        if end is not None:
            index = end
            continue
        ch = text[index]
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth -= 1
            if depth == 0:
                return index
        index += 1
    return -1


def split_top_level_commas(text: str) -> list[str]:
    """Split on commas that are not nested in parentheses or literals."""

    parts: list[str] = []
    depth = 0
    start = 0
    index = 0
    while index < len(text):
        end = _literal_end(text, index)
        if end is not None:
            index = end
            continue
        ch = text[index]
        if ch == "(":
            depth += 1
        elif ch == ")":
            depth = max(0, depth - 1)
        elif ch == "," and depth == 0:
            parts.append(text[start:index].strip())
            start = index + 1
        index += 1
    parts.append(text[start:].strip())
    return [part for part in parts if part]


def mask_literals(text: str) -> str:
    """Return *text* with literal and quoted-identifier contents replaced by ``_``.

    The result has the same length, so keyword positions found in the masked
    text can be used to slice the original.
    """

    out: list[str] = []
    index = 0
    while index < len(text):
        end = _literal_end(text, index)
        if end is None:
            out.append(text[index])
            index += 1
            continue
        out.append("_" * (end - index))
        index = end
    return "".join(out)
