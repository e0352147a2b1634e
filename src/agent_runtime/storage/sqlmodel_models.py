"""SQLModel ORM tables for runtime session storage."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import Column, DateTime, Index, Text, UniqueConstraint, text
from sqlmodel import Field, SQLModel


class RuntimeSession(SQLModel, table=True):
    __tablename__ = "runtime_sessions"  # type: ignore[bad-override]
    __table_args__ = (
        UniqueConstraint(
            "scope_key",
            "generation",
            name="uq_runtime_sessions_scope_generation",
        ),
        Index(
            "uq_runtime_sessions_scope_open",
            "scope_key",
            unique=True,
            sqlite_where=text("closed_at IS NULL"),
        ),
        Index("idx_runtime_sessions_account_task_closed", "account_id", "task_id", "closed_at"),
        Index("idx_runtime_sessions_account_agent", "account_id", "agent_id"),
    )

    session_id: str = Field(primary_key=True)
    scope_key: str = Field(index=True)
    account_id: str = Field(index=True)
    agent_id: str
    agent_slug: str
    session_type: str = Field(index=True)
    task_id: str | None = Field(default=None)
    generation: int
    session_key: str = Field(index=True)
    opened_at: datetime = Field(sa_column=Column(DateTime(timezone=True), nullable=False))
    closed_at: datetime | None = Field(default=None, sa_column=Column(DateTime(timezone=True)))
    closed_reason: str | None = Field(default=None, sa_column=Column(Text))
