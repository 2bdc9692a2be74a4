"""custom queries and execution logs

Revision ID: 0001
Revises:
Create Date: 2026-10-19 00:00:00

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

revision: str = "0001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    op.create_table(
        "custom_queries",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column("slug", sa.String(), nullable=False),
        sa.Column("name", sa.String(), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("sql_query", sa.Text(), nullable=False),
        sa.Column("parameters", sa.Text(), nullable=False, server_default="[]"),
        sa.Column("method", sa.String(4), nullable=False, server_default="GET"),
        sa.Column("is_readonly", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column("cache_ttl", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_enabled", sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column(
            "created_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.Column(
            "updated_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
        sa.CheckConstraint("method IN ('GET', 'POST')", name="ck_custom_queries_method"),
        sa.CheckConstraint("cache_ttl >= 0", name="ck_custom_queries_cache_ttl"),
    )
    op.create_index("ix_custom_queries_slug", "custom_queries", ["slug"], unique=True)
    op.create_index("ix_custom_queries_is_enabled", "custom_queries", ["is_enabled"])

    op.create_table(
        "custom_query_logs",
        sa.Column("id", sa.String(32), primary_key=True),
        sa.Column(
            "query_id",
            sa.String(32),
            sa.ForeignKey("custom_queries.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("execution_time", sa.Integer(), nullable=False),
        sa.Column("row_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("parameters", sa.Text(), nullable=True),
        sa.Column("error", sa.Text(), nullable=True),
        sa.Column(
            "executed_at",
            sa.TIMESTAMP(timezone=True),
            nullable=False,
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_custom_query_logs_query", "custom_query_logs", ["query_id", "executed_at"]
    )


def downgrade() -> None:
    op.drop_index("idx_custom_query_logs_query", table_name="custom_query_logs")
    op.drop_table("custom_query_logs")
    op.drop_index("ix_custom_queries_is_enabled", table_name="custom_queries")
    op.drop_index("ix_custom_queries_slug", table_name="custom_queries")
    op.drop_table("custom_queries")
