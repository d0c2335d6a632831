"""schema migration audits

Revision ID: 20261018_0001
Revises:
Create Date: 2026-10-18 00:00:01
"""

from collections.abc import Sequence

from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision: str = "20261018_0001"
down_revision: str | None = None
branch_labels: Sequence[str] | None = None
depends_on: Sequence[str] | None = None


def upgrade() -> None:
    op.create_table(
        "schema_migration_audits",
        sa.Column("id", sa.Integer(), autoincrement=True, nullable=False),
        sa.Column("plan_id", sa.String(length=36), nullable=False),
        sa.Column("tenant_id", sa.String(length=64), nullable=False),
        sa.Column("status", sa.String(length=32), nullable=False, server_default="planned"),
        sa.Column("ssot_version_hash", sa.String(length=64), nullable=False),
        sa.Column("db_snapshot_hash_before", sa.String(length=64), nullable=False),
        sa.Column("db_snapshot_hash_after", sa.String(length=64), nullable=True),
        sa.Column("summary_counts_json", sa.JSON(), nullable=False),
        sa.Column("patch_plan_json", sa.JSON(), nullable=False),
        sa.Column("db_snapshot_before_json", sa.JSON(), nullable=True),
        sa.Column("db_snapshot_after_json", sa.JSON(), nullable=True),
        sa.Column("preflight_results_json", sa.JSON(), nullable=True),
        sa.Column("approved_by_user_id", sa.String(length=255), nullable=True),
        sa.Column("approval_method", sa.String(length=64), nullable=True),
        sa.Column("approval_phrase", sa.String(length=128), nullable=True),
        sa.Column("executed_sql_safe", sa.Text(), nullable=True),
        sa.Column("executed_sql_manual", sa.Text(), nullable=True),
        sa.Column("executed_result_json", sa.JSON(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.text("now()"), nullable=False),
        sa.CheckConstraint(
            "status IN ('planned', 'applied', 'failed')",
            name="ck_schema_migration_audits_status",
        ),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_schema_migration_audits_plan_id", "schema_migration_audits", ["plan_id"], unique=True)
    op.create_index("ix_schema_migration_audits_tenant_id", "schema_migration_audits", ["tenant_id"], unique=False)
    op.create_index(
        "ix_schema_migration_audits_tenant_created",
        "schema_migration_audits",
        ["tenant_id", "created_at"],
        unique=False,
    )


def downgrade() -> None:
    op.drop_index("ix_schema_migration_audits_tenant_created", table_name="schema_migration_audits")
    op.drop_index("ix_schema_migration_audits_tenant_id", table_name="schema_migration_audits")
    op.drop_index("ix_schema_migration_audits_plan_id", table_name="schema_migration_audits")
    op.drop_table("schema_migration_audits")
