"""Clients for the privileged schema procedures installed on a tenant database."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Protocol

from sqlalchemy import create_engine, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import DBAPIError
from sqlalchemy.pool import NullPool

from schemagate.drift.bootstrap_sql import (
    EXECUTE_STATEMENTS_FUNCTION,
    INTROSPECTION_FUNCTION,
    RUN_SELECTS_FUNCTION,
    build_bootstrap_sql,
)
from schemagate.drift.errors import NotBootstrappedError, StatementExecutionError

logger = logging.getLogger(__name__)

UNDEFINED_FUNCTION_SQLSTATE = "42883"

_NOT_AVAILABLE_CODES = {
    INTROSPECTION_FUNCTION: "schema_introspection_not_available",
    RUN_SELECTS_FUNCTION: "schema_preflight_not_available",
    EXECUTE_STATEMENTS_FUNCTION: "schema_executor_not_available",
}


class TenantSchemaRpc(Protocol):
    """Protocol for the three remote schema procedures of one tenant."""

    def introspect(self) -> Any:
        """Return the raw introspection payload."""

    def run_selects(self, queries: list[str]) -> list[dict[str, Any]]:
        """Run read-only SELECTs, returning ``{query, ok, result|error}`` entries."""

    def execute_statements(
        self,
        statements: list[str],
        *,
        allow_destructive: bool = False,
        confirmation_phrase: str | None = None,
    ) -> dict[str, Any]:
        """Execute DDL statements, returning ``{"statements": [...]}``."""

    def close(self) -> None:
        """Release the underlying connection resources."""


def is_missing_function_error(exc: BaseException, function_name: str) -> bool:
    """Detect an undefined-function error for *function_name*."""

    orig = getattr(exc, "orig", exc)
    if _sqlstate(orig) == UNDEFINED_FUNCTION_SQLSTATE:
        return True
    message = str(orig).lower()
    name = function_name.lower()
    if "could not find the function" in message and name in message:
        return True
    return "function" in message and name in message and "does not exist" in message


def classify_db_error(exc: DBAPIError, function_name: str) -> Exception:
    """Map a driver error to the engine's error taxonomy."""

    if is_missing_function_error(exc, function_name):
        return NotBootstrappedError(
            code=_NOT_AVAILABLE_CODES.get(function_name),
            function_name=function_name,
            bootstrap_sql=build_bootstrap_sql(),
        )
    orig = exc.orig if exc.orig is not None else exc
    diag = getattr(orig, "diag", None)
    return StatementExecutionError(
        db_message=(getattr(diag, "message_primary", None) or str(orig)).strip(),
        db_code=_sqlstate(orig),
        db_hint=getattr(diag, "message_hint", None),
    )


def _sqlstate(orig: Any) -> str | None:
    return getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)


def _decode_json(value: Any) -> Any:
    if isinstance(value, (str, bytes, bytearray)):
        return json.loads(value)
    return value


@dataclass(slots=True)
class SqlAlchemyTenantRpc:
    """Call the tenant procedures through a short-lived, unpooled SQLAlchemy engine."""

    engine: Engine
    _closed: bool = field(default=False, init=False)

    @classmethod
    def from_url(cls, url: str, *, connect_timeout_seconds: int = 10) -> SqlAlchemyTenantRpc:
        engine = create_engine(
            url,
            future=True,
            poolclass=NullPool,
            connect_args={"connect_timeout": connect_timeout_seconds},
        )
        return cls(engine=engine)

    def introspect(self) -> Any:
        statement = text(f"SELECT public.{INTROSPECTION_FUNCTION}() AS payload")
        return _decode_json(self._call(INTROSPECTION_FUNCTION, statement, {}))

    def run_selects(self, queries: list[str]) -> list[dict[str, Any]]:
        statement = text(f"SELECT public.{RUN_SELECTS_FUNCTION}(CAST(:queries AS text[])) AS payload")
        payload = _decode_json(self._call(RUN_SELECTS_FUNCTION, statement, {"queries": list(queries)}))
        return payload if isinstance(payload, list) else []

    def execute_statements(
        self,
        statements: list[str],
        *,
        allow_destructive: bool = False,
        confirmation_phrase: str | None = None,
    ) -> dict[str, Any]:
        statement = text(
            f"SELECT public.{EXECUTE_STATEMENTS_FUNCTION}("
            "CAST(:statements AS text[]), CAST(:allow_destructive AS boolean), CAST(:confirmation_phrase AS text)"
            ") AS payload"
        )
        params = {
            "statements": list(statements),
            "allow_destructive": allow_destructive,
            "confirmation_phrase": confirmation_phrase,
        }
        payload = _decode_json(self._call(EXECUTE_STATEMENTS_FUNCTION, statement, params))
        return payload if isinstance(payload, dict) else {"statements": []}

    def close(self) -> None:
        if not self._closed:
            self.engine.dispose()
            self._closed = True

    def _call(self, function_name: str, statement: Any, params: dict[str, Any]) -> Any:
        try:
            with self.engine.begin() as connection:
                return connection.execute(statement, params).scalar_one()
        except DBAPIError as exc:
            error = classify_db_error(exc, function_name)
            logger.warning(
                "schema.rpc_failed function=%s code=%s",
                function_name,
                getattr(error, "code", type(error).__name__),
            )
            raise error from exc
