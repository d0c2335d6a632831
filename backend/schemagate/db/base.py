"""SQLAlchemy metadata registry import for Alembic."""

from schemagate.models import SchemaMigrationAudit
from schemagate.models.base import Base

__all__ = ["Base", "SchemaMigrationAudit"]
