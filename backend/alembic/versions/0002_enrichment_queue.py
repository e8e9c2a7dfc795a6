"""enrichment queue and channel enrichment fields

Revision ID: 0002_enrichment_queue
Revises: 0001_init
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "0002_enrichment_queue"
down_revision = "0001_init"
branch_labels = None
depends_on = None


_CHANNEL_COLUMNS = (
    ("emails", sa.JSON()),
    ("email_sources", sa.JSON()),
    ("enrichment_status", sa.String(length=10)),
    ("enriched_at", sa.DateTime(timezone=True)),
)


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def _column_names(table: str) -> set[str]:
    return {c["name"] for c in _inspector().get_columns(table)}


def upgrade() -> None:
    existing = _column_names("channels")
    missing = [(name, col_type) for name, col_type in _CHANNEL_COLUMNS if name not in existing]
    if missing:
        with op.batch_alter_table("channels") as batch:
            for name, col_type in missing:
                batch.add_column(sa.Column(name, col_type, nullable=True))
    if "ix_channels_enrichment_status" not in {i["name"] for i in _inspector().get_indexes("channels")}:
        op.create_index("ix_channels_enrichment_status", "channels", ["enrichment_status"])

    if "enrichment_jobs" not in set(_inspector().get_table_names()):
        op.create_table(
            "enrichment_jobs",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("channel_id", sa.String(), nullable=False),
            sa.Column("status", sa.String(length=10), nullable=True),
            sa.Column("priority", sa.Integer(), nullable=True),
            sa.Column("attempts", sa.Integer(), nullable=True),
            sa.Column("max_attempts", sa.Integer(), nullable=True),
            sa.Column("error_message", sa.Text(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )
        op.create_index("ix_enrichment_jobs_id", "enrichment_jobs", ["id"])
        op.create_index("ix_enrichment_jobs_channel_id", "enrichment_jobs", ["channel_id"])
        op.create_index("ix_enrichment_jobs_status", "enrichment_jobs", ["status"])


def downgrade() -> None:
    op.drop_index("ix_enrichment_jobs_status", table_name="enrichment_jobs")
    op.drop_index("ix_enrichment_jobs_channel_id", table_name="enrichment_jobs")
    op.drop_index("ix_enrichment_jobs_id", table_name="enrichment_jobs")
    op.drop_table("enrichment_jobs")

    op.drop_index("ix_channels_enrichment_status", table_name="channels")
    existing = _column_names("channels")
    with op.batch_alter_table("channels") as batch:
        for name, _col_type in reversed(_CHANNEL_COLUMNS):
            if name in existing:
                batch.drop_column(name)
