"""
Database Models - SQLAlchemy ORM models with strict typing.

All columns use Mapped[] type annotations. Users live in the identity
provider's schema, so `user_id` columns carry no foreign key.
"""

from datetime import UTC, datetime
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    ARRAY,
    Boolean,
    CheckConstraint,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class CreditBalance(Base):
    """
    ORM model for credit_balances table.

    One row per user. Created lazily with the default grant.
    """

    __tablename__ = "credit_balances"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False)

    credits_remaining: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    credits_used_this_month: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    plan_type: Mapped[str] = mapped_column(String(50), nullable=False, default="free")

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_remaining >= 0", name="ck_credits_remaining_non_negative"),
        CheckConstraint("credits_used_this_month >= 0", name="ck_credits_used_non_negative"),
        UniqueConstraint("user_id", name="uq_credit_balances_user_id"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<CreditBalance(user_id={self.user_id}, remaining={self.credits_remaining}, "
            f"plan={self.plan_type})>"
        )


class APIKey(Base):
    """
    ORM model for api_keys table.

    Stores the SHA-256 digest of each key. The plaintext is never persisted.
    """

    __tablename__ = "api_keys"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False, index=True)

    key_name: Mapped[str] = mapped_column(String(255), nullable=False)
    key_prefix: Mapped[str] = mapped_column(String(20), nullable=False)
    key_hash: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    last_used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("idx_api_keys_hash_active", "key_hash", postgresql_where=(is_active.is_(True))),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<APIKey(id={self.id}, prefix={self.key_prefix}, active={self.is_active})>"


class Agent(Base):
    """
    ORM model for agents table.

    Behavioural configuration of one user-authored assistant.
    """

    __tablename__ = "agents"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False, index=True)

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    purpose: Mapped[str] = mapped_column(String(255), nullable=False, default="")
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    system_prompt: Mapped[str | None] = mapped_column(Text, nullable=True)
    ai_model: Mapped[str | None] = mapped_column(String(255), nullable=True)
    temperature: Mapped[float | None] = mapped_column(Float, nullable=True)
    max_tokens: Mapped[int | None] = mapped_column(Integer, nullable=True)
    knowledge_base: Mapped[list[dict[str, Any]] | None] = mapped_column(JSONB, nullable=True)

    is_published: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        Index("idx_agents_published", "id", postgresql_where=(is_published.is_(True))),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Agent(id={self.id}, name={self.name}, published={self.is_published})>"


class AgentFunction(Base):
    """
    ORM model for agent_functions table.

    Keyword-triggered custom functions executed by the runtime endpoint.
    """

    __tablename__ = "agent_functions"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    agent_id: Mapped[UUID] = mapped_column(
        PG_UUID(as_uuid=True),
        ForeignKey("agents.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    function_type: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger_keywords: Mapped[list[str]] = mapped_column(
        ARRAY(String), nullable=False, default=list
    )
    config: Mapped[dict[str, Any]] = mapped_column(JSONB, nullable=False, default=dict)
    is_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    execution_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "function_type IN ('api_call', 'conditional', 'data_transform', 'webhook')",
            name="ck_agent_functions_type",
        ),
    )


class CreditUsage(Base):
    """
    ORM model for credit_usage table.

    Append-only log of completed proxied calls. Never updated.
    """

    __tablename__ = "credit_usage"

    id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(PG_UUID(as_uuid=True), nullable=False, index=True)
    agent_id: Mapped[UUID | None] = mapped_column(PG_UUID(as_uuid=True), nullable=True)

    credits_used: Mapped[int] = mapped_column(Integer, nullable=False)
    operation_type: Mapped[str] = mapped_column(String(50), nullable=False)
    # Database column is "metadata"; the attribute name avoids SQLAlchemy's reserved one
    usage_metadata: Mapped[dict[str, Any] | None] = mapped_column(
        "metadata", JSONB, nullable=True
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint("credits_used >= 0", name="ck_credit_usage_non_negative"),
        Index("idx_credit_usage_created_at", "created_at"),
    )
