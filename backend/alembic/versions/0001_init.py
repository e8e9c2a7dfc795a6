"""init

Revision ID: 0001_init
Revises:
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "0001_init"
down_revision = None
branch_labels = None
depends_on = None


def _inspector():
    from sqlalchemy import inspect as sa_inspect
    return sa_inspect(op.get_bind())


def upgrade() -> None:
    # alembic_version.version_num defaults to VARCHAR(32); widen it before longer revision ids land.
    if op.get_bind().dialect.name == "postgresql":
        op.execute(sa.text("ALTER TABLE alembic_version ALTER COLUMN version_num TYPE VARCHAR(64)"))

    inspector = _inspector()
    existing_tables = set(inspector.get_table_names())

    def existing_indexes(table: str) -> set[str]:
        if table not in existing_tables:
            return set()
        return {idx["name"] for idx in inspector.get_indexes(table)}

    if "channels" not in existing_tables:
        op.create_table(
            "channels",
            sa.Column("id", sa.Integer(), primary_key=True),
            sa.Column("channel_id", sa.String(), nullable=False),
            sa.Column("name", sa.String(), nullable=True),
            sa.Column("url", sa.String(), nullable=True),
            sa.Column("description", sa.Text(), nullable=True),
            sa.Column("thumbnail_url", sa.String(), nullable=True),
            sa.Column("subscriber_count", sa.BigInteger(), nullable=True),
            sa.Column("video_count", sa.Integer(), nullable=True),
            sa.Column("view_count", sa.BigInteger(), nullable=True),
            sa.Column("country", sa.String(), nullable=True),
            sa.Column("social_links", sa.JSON(), nullable=True),
            sa.Column("search_keyword", sa.String(), nullable=True),
            sa.Column("relevance_score", sa.Float(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
        )
    idxs = existing_indexes("channels")
    if "ix_channels_id" not in idxs:
        op.create_index("ix_channels_id", "channels", ["id"])
    if "ix_channels_channel_id" not in idxs:
        op.create_index("ix_channels_channel_id", "channels", ["channel_id"], unique=True)
    if "ix_channels_search_keyword" not in idxs:
        op.create_index("ix_channels_search_keyword", "channels", ["search_keyword"])

    if "crawl_sessions" not in existing_tables:
        op.create_table(
            "crawl_sessions",
            sa.Column("id", sa.String(), primary_key=True),
            sa.Column("session_key", sa.String(), nullable=True),
            sa.Column("keyword", sa.String(), nullable=True),
            sa.Column("target_limit", sa.Integer(), nullable=True),
            sa.Column("filters", sa.JSON(), nullable=True),
            sa.Column("status", sa.String(length=15), nullable=True),
            sa.Column("progress", sa.Integer(), nullable=True),
            sa.Column("channels", sa.JSON(), nullable=True),
            sa.Column("continuation", sa.Text(), nullable=True),
            sa.Column("pages_fetched", sa.Integer(), nullable=True),
            sa.Column("message", sa.String(), nullable=True),
            sa.Column("error", sa.Text(), nullable=True),
            sa.Column("cancel_requested", sa.Boolean(), nullable=True),
            sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.text("(CURRENT_TIMESTAMP)")),
            sa.Column("updated_at", sa.DateTime(timezone=True), nullable=True),
            sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        )
    idxs = existing_indexes("crawl_sessions")
    if "ix_crawl_sessions_id" not in idxs:
        op.create_index("ix_crawl_sessions_id", "crawl_sessions", ["id"])
    if "ix_crawl_sessions_session_key" not in idxs:
        op.create_index("ix_crawl_sessions_session_key", "crawl_sessions", ["session_key"])
    if "ix_crawl_sessions_keyword" not in idxs:
        op.create_index("ix_crawl_sessions_keyword", "crawl_sessions", ["keyword"])


def downgrade() -> None:
    op.drop_index("ix_crawl_sessions_keyword", table_name="crawl_sessions")
    op.drop_index("ix_crawl_sessions_session_key", table_name="crawl_sessions")
    op.drop_index("ix_crawl_sessions_id", table_name="crawl_sessions")
    op.drop_table("crawl_sessions")

    op.drop_index("ix_channels_search_keyword", table_name="channels")
    op.drop_index("ix_channels_channel_id", table_name="channels")
    op.drop_index("ix_channels_id", table_name="channels")
    op.drop_table("channels")
