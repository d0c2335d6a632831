"""Error taxonomy for schema planning and gated execution."""

from __future__ import annotations


class SchemaMigrationError(RuntimeError):
    """Base error; every failure is classified into a subclass before leaving the engine."""

    default_code = "schema_migration_error"
    status_hint = 500

    def __init__(self, message: str | None = None, *, code: str | None = None) -> None:
        self.code = code or message or self.default_code
        super().__init__(message or self.code)

    def to_detail(self) -> dict[str, object]:
        """Return a JSON-safe error payload for API responses."""

        return {"message": self.code}


class ConfigurationError(SchemaMigrationError):
    """Missing control-plane settings (connections, credentials). Not retryable."""

    default_code = "server_misconfigured"


class ParseError(SchemaMigrationError):
    """SSOT text is missing, empty or contains nothing recognizable."""

    default_code = "invalid_ssot_text"
    status_hint = 422


class ValidationError(SchemaMigrationError):
    """Caller error rejected before any SQL runs."""

    default_code = "validation_failed"
    status_hint = 400


class NotBootstrappedError(SchemaMigrationError):
    """A privileged remote procedure is absent on the tenant database."""

    default_code = "schema_introspection_not_available"
    status_hint = 424
    hint = "Run the bootstrap SQL once on the tenant database, then retry."

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        function_name: str | None = None,
        bootstrap_sql: str | None = None,
        ssot_version_hash: str | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.function_name = function_name
        self.bootstrap_sql = bootstrap_sql
        self.ssot_version_hash = ssot_version_hash

    def to_detail(self) -> dict[str, object]:
        detail: dict[str, object] = {
            "message": self.code,
            "hint": self.hint,
            "bootstrap_sql": self.bootstrap_sql,
        }
        if self.ssot_version_hash:
            detail["ssot_version_hash"] = self.ssot_version_hash
        return detail


class StatementExecutionError(SchemaMigrationError):
    """A remote SQL call failed as a whole; carries the database diagnostics."""

    default_code = "statement_execution_failed"
    status_hint = 502

    def __init__(
        self,
        message: str | None = None,
        *,
        code: str | None = None,
        db_message: str | None = None,
        db_code: str | None = None,
        db_hint: str | None = None,
    ) -> None:
        super().__init__(message, code=code)
        self.db_message = db_message
        self.db_code = db_code
        self.db_hint = db_hint

    def to_detail(self) -> dict[str, object]:
        return {
            "message": self.code,
            "error": self.db_message or str(self),
            "code": self.db_code,
            "hint": self.db_hint,
        }
