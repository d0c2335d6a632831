"""ORM models package exports."""

from schemagate.models.schema_migration_audit import SchemaMigrationAudit

__all__ = ["SchemaMigrationAudit"]
