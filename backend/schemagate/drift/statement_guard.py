"""Client-side mirror of the allow-list enforced by the tenant procedures.

The tenant database remains the enforcement point; checking here rejects a
bad batch before any statement is sent.
"""

from __future__ import annotations

import re

from schemagate.drift.errors import ValidationError

REQUIRED_PHRASE = "ALLOW DESTRUCTIVE CHANGES"

_SAFE_PATTERNS = tuple(
    re.compile(pattern, re.IGNORECASE | re.DOTALL)
    for pattern in (
        r"^CREATE\s+TABLE\s+IF\s+NOT\s+EXISTS\s",
        r"^ALTER\s+TABLE\s+.+\sADD\s+COLUMN\s+IF\s+NOT\s+EXISTS\s",
        r"^CREATE\s+(UNIQUE\s+)?INDEX\s+IF\s+NOT\s+EXISTS\s",
        r"^ALTER\s+TABLE\s+.+\sENABLE\s+ROW\s+LEVEL\s+SECURITY",
        r"^CREATE\s+POLICY\s",
        r"^ALTER\s+TABLE\s+.+\sADD\s+CONSTRAINT\s",
        r"^CREATE\s+EXTENSION\s+IF\s+NOT\s+EXISTS\s",
        r"^CREATE\s+OR\s+REPLACE\s+VIEW\s",
    )
)
_DESTRUCTIVE_KEYWORDS = re.compile(r"\bDROP\s|\bRENAME\s|\bALTER\s+COLUMN\s.*\bTYPE\s", re.IGNORECASE | re.DOTALL)


def check_select_query(query: str | None) -> str | None:
    """Return an error code for a query the preflight procedure would reject.

    Blank queries return ``"skipped"``; acceptable queries return ``None``.
    """

    text = (query or "").strip()
    if not text:
        return "skipped"
    if ";" in text:
        return "query_contains_semicolon"
    if not text.upper().startswith("SELECT"):
        return "only_select_allowed"
    return None


def check_safe_statement(statement: str) -> str | None:
    """Return an error code when *statement* is outside the safe-mode allow-list."""

    text = (statement or "").strip()
    if not any(pattern.match(text) for pattern in _SAFE_PATTERNS):
        return "statement_not_allowed_in_safe_mode"
    if _DESTRUCTIVE_KEYWORDS.search(text):
        return "statement_contains_destructive_keywords"
    return None


def check_destructive_confirmation(phrase: str | None) -> None:
    if phrase != REQUIRED_PHRASE:
        raise ValidationError("confirmation_phrase_mismatch")
