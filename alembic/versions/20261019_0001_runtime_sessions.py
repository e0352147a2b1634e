"""Create runtime session registry with single open session per scope."""

from __future__ import annotations

import sqlalchemy as sa

from alembic import op

revision = "20261019_0001"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "runtime_sessions",
        sa.Column("session_id", sa.String(), nullable=False),
        sa.Column("scope_key", sa.String(), nullable=False),
        sa.Column("account_id", sa.String(), nullable=False),
        sa.Column("agent_id", sa.String(), nullable=False),
        sa.Column("agent_slug", sa.String(), nullable=False),
        sa.Column("session_type", sa.String(), nullable=False),
        sa.Column("task_id", sa.String(), nullable=True),
        sa.Column("generation", sa.Integer(), nullable=False),
        sa.Column("session_key", sa.String(), nullable=False),
        sa.Column("opened_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("closed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("closed_reason", sa.Text(), nullable=True),
        sa.PrimaryKeyConstraint("session_id"),
        sa.UniqueConstraint(
            "scope_key",
            "generation",
            name="uq_runtime_sessions_scope_generation",
        ),
        sa.CheckConstraint("generation >= 1", name="ck_runtime_sessions_generation_positive"),
        sa.CheckConstraint(
            "(session_type = 'task' AND task_id IS NOT NULL) "
            "OR (session_type = 'system' AND task_id IS NULL)",
            name="ck_runtime_sessions_type_task",
        ),
        sa.CheckConstraint(
            "(closed_at IS NULL AND closed_reason IS NULL) "
            "OR (closed_at IS NOT NULL AND closed_reason IS NOT NULL)",
            name="ck_runtime_sessions_closed_fields",
        ),
    )
    op.create_index(
        "ix_runtime_sessions_scope_key",
        "runtime_sessions",
        ["scope_key"],
    )
    op.create_index(
        "ix_runtime_sessions_account_id",
        "runtime_sessions",
        ["account_id"],
    )
    op.create_index(
        "ix_runtime_sessions_session_type",
        "runtime_sessions",
        ["session_type"],
    )
    op.create_index(
        "ix_runtime_sessions_session_key",
        "runtime_sessions",
        ["session_key"],
    )
    op.create_index(
        "idx_runtime_sessions_account_task_closed",
        "runtime_sessions",
        ["account_id", "task_id", "closed_at"],
    )
    op.create_index(
        "idx_runtime_sessions_account_agent",
        "runtime_sessions",
        ["account_id", "agent_id"],
    )
    op.execute(
        sa.text(
            """
            CREATE UNIQUE INDEX IF NOT EXISTS uq_runtime_sessions_scope_open
            ON runtime_sessions (scope_key)
            WHERE closed_at IS NULL
            """,
        ),
    )


def downgrade() -> None:
    op.execute(sa.text("DROP INDEX IF EXISTS uq_runtime_sessions_scope_open"))
    op.drop_index("idx_runtime_sessions_account_agent", table_name="runtime_sessions")
    op.drop_index("idx_runtime_sessions_account_task_closed", table_name="runtime_sessions")
    op.drop_index("ix_runtime_sessions_session_key", table_name="runtime_sessions")
    op.drop_index("ix_runtime_sessions_session_type", table_name="runtime_sessions")
    op.drop_index("ix_runtime_sessions_account_id", table_name="runtime_sessions")
    op.drop_index("ix_runtime_sessions_scope_key", table_name="runtime_sessions")
    op.drop_table("runtime_sessions")
