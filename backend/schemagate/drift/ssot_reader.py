"""Load the canonical tenant setup script."""

from __future__ import annotations

import logging
from pathlib import Path

from schemagate.config import get_settings
from schemagate.drift.errors import ParseError

logger = logging.getLogger(__name__)

PACKAGED_SSOT_PATH = Path(__file__).resolve().parent / "ssot" / "tenant_setup.sql"


def resolve_ssot_path(path: str | Path | None = None) -> Path:
    """Pick the SSOT file: explicit path, then ``SSOT_PATH``, then the packaged script."""

    if path:
        return Path(path)
    configured = get_settings().ssot_path
    if configured:
        return Path(configured)
    return PACKAGED_SSOT_PATH


def read_ssot_sql_text(path: str | Path | None = None) -> str:
    """Return the SSOT DDL text; unreadable or blank files raise :class:`ParseError`."""

    candidate = resolve_ssot_path(path)
    try:
        text = candidate.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("schema.ssot_read_failed path=%s error=%s", candidate, exc)
        raise ParseError("failed_to_load_ssot_setup_sql") from exc
    if not text.strip():
        logger.warning("schema.ssot_read_failed path=%s error=blank_file", candidate)
        raise ParseError("failed_to_load_ssot_setup_sql")
    return text
