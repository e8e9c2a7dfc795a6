"""crawl session resume state

Revision ID: 0003_crawl_resume_state
Revises: 0002_enrichment_queue
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "0003_crawl_resume_state"
down_revision = "0002_enrichment_queue"
branch_labels = None
depends_on = None


def _column_names(table: str) -> set[str]:
    from sqlalchemy import inspect as sa_inspect
    return {c["name"] for c in sa_inspect(op.get_bind()).get_columns(table)}


def upgrade() -> None:
    if "resume_state" not in _column_names("crawl_sessions"):
        with op.batch_alter_table("crawl_sessions") as batch:
            batch.add_column(sa.Column("resume_state", sa.JSON(), nullable=True))


def downgrade() -> None:
    if "resume_state" in _column_names("crawl_sessions"):
        with op.batch_alter_table("crawl_sessions") as batch:
            batch.drop_column("resume_state")
