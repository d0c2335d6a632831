"""Schema migration plan audit model."""

from datetime import datetime

from sqlalchemy import JSON, DateTime, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from schemagate.models.base import Base, CreatedAtMixin, IdMixin


class SchemaMigrationAudit(Base, IdMixin, CreatedAtMixin):
    """One row per schema plan: lifecycle, hashes, approvals and executed SQL."""

    __tablename__ = "schema_migration_audits"

    plan_id: Mapped[str] = mapped_column(String(36), unique=True, index=True, nullable=False)
    tenant_id: Mapped[str] = mapped_column(String(64), index=True, nullable=False)
    status: Mapped[str] = mapped_column(String(32), default="planned", nullable=False)
    ssot_version_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    db_snapshot_hash_before: Mapped[str] = mapped_column(String(64), nullable=False)
    db_snapshot_hash_after: Mapped[str | None] = mapped_column(String(64), nullable=True)
    summary_counts_json: Mapped[dict[str, int]] = mapped_column(JSON, default=dict, nullable=False)
    patch_plan_json: Mapped[dict[str, object]] = mapped_column(JSON, default=dict, nullable=False)
    db_snapshot_before_json: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    db_snapshot_after_json: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    preflight_results_json: Mapped[list[dict[str, object]] | None] = mapped_column(JSON, nullable=True)
    approved_by_user_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    approval_method: Mapped[str | None] = mapped_column(String(64), nullable=True)
    approval_phrase: Mapped[str | None] = mapped_column(String(128), nullable=True)
    executed_sql_safe: Mapped[str | None] = mapped_column(Text, nullable=True)
    executed_sql_manual: Mapped[str | None] = mapped_column(Text, nullable=True)
    executed_result_json: Mapped[dict[str, object] | None] = mapped_column(JSON, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )
