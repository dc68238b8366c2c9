from __future__ import annotations

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base


JSONType = JSON().with_variant(JSONB(), "postgresql")

CREDIT_TYPES = ("free", "subscription", "pack")
TRANSACTION_KINDS = ("renewal", "generation", "purchase", "admin", "refund", "expire")
BATCH_STATUSES = ("pending", "processing", "completed", "failed")
SCRIPT_STATUSES = ("pending", "generating", "completed", "failed")


def _utcnow() -> datetime:
    return datetime.now(UTC)


class UserAccount(Base):
    __tablename__ = "user_account"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(Text, unique=True)
    plan: Mapped[str] = mapped_column(Text, default="free")
    subscription_status: Mapped[str | None] = mapped_column(Text, nullable=True)
    subscription_ends_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    credit_balances: Mapped[list["CreditBalance"]] = relationship(back_populates="user")

    __table_args__ = (
        CheckConstraint("plan in ('free', 'pro')", name="ck_user_account_plan"),
    )


class DeletedUser(Base):
    __tablename__ = "deleted_user"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    email: Mapped[str] = mapped_column(Text, unique=True)
    deleted_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)


class Project(Base):
    __tablename__ = "project"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user_account.id", ondelete="CASCADE"),
    )
    name: Mapped[str] = mapped_column(Text)
    product_description: Mapped[str] = mapped_column(Text)
    offer: Mapped[str | None] = mapped_column(Text, nullable=True)
    brand_voice: Mapped[str | None] = mapped_column(Text, nullable=True)
    forbidden_claims: Mapped[list] = mapped_column(JSONType, default=list)
    language: Mapped[str] = mapped_column(Text, default="en")
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    personas: Mapped[list["Persona"]] = relationship(
        back_populates="project",
        cascade="all, delete-orphan",
    )
    batches: Mapped[list["Batch"]] = relationship(back_populates="project")


class Persona(Base):
    __tablename__ = "persona"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("project.id", ondelete="CASCADE"),
    )
    name: Mapped[str] = mapped_column(Text)
    description: Mapped[str] = mapped_column(Text, default="")
    pain_points: Mapped[list] = mapped_column(JSONType, default=list)
    desires: Mapped[list] = mapped_column(JSONType, default=list)

    project: Mapped["Project"] = relationship(back_populates="personas")


class Batch(Base):
    __tablename__ = "batch"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("project.id", ondelete="CASCADE"),
    )
    user_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user_account.id", ondelete="SET NULL"),
        nullable=True,
    )
    requested_count: Mapped[int] = mapped_column(Integer)
    platform: Mapped[str] = mapped_column(Text, default="universal")
    angles: Mapped[list] = mapped_column(JSONType, default=list)
    durations: Mapped[list] = mapped_column(JSONType, default=list)
    persona_ids: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    quality: Mapped[str] = mapped_column(Text, default="standard")
    status: Mapped[str] = mapped_column(Text, default="pending")
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    credits_charged: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    project: Mapped["Project"] = relationship(back_populates="batches")
    scripts: Mapped[list["Script"]] = relationship(
        back_populates="batch",
        order_by="Script.created_at",
    )

    __table_args__ = (
        CheckConstraint(
            "status in ('pending', 'processing', 'completed', 'failed')",
            name="ck_batch_status",
        ),
        CheckConstraint("quality in ('standard', 'premium')", name="ck_batch_quality"),
        CheckConstraint("requested_count > 0", name="ck_batch_requested_count"),
    )


class Script(Base):
    __tablename__ = "script"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    batch_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("batch.id", ondelete="CASCADE"),
    )
    status: Mapped[str] = mapped_column(Text, default="pending")
    angle: Mapped[str] = mapped_column(Text)
    duration: Mapped[int] = mapped_column(Integer)
    hook: Mapped[str | None] = mapped_column(Text, nullable=True)
    storyboard: Mapped[list | None] = mapped_column(JSONType, nullable=True)
    cta_variants: Mapped[list] = mapped_column(JSONType, default=list)
    filming_checklist: Mapped[list] = mapped_column(JSONType, default=list)
    warnings: Mapped[list] = mapped_column(JSONType, default=list)
    score: Mapped[int | None] = mapped_column(Integer, nullable=True)
    parent_script_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("script.id", ondelete="SET NULL"),
        nullable=True,
    )
    instruction: Mapped[str | None] = mapped_column(Text, nullable=True)
    error_message: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    batch: Mapped["Batch"] = relationship(back_populates="scripts")

    __table_args__ = (
        CheckConstraint(
            "status in ('pending', 'generating', 'completed', 'failed')",
            name="ck_script_status",
        ),
        CheckConstraint("score is null or (score >= 0 and score <= 100)", name="ck_script_score"),
        Index("ix_script_batch_id", "batch_id"),
        Index("ix_script_parent_script_id", "parent_script_id"),
    )


class CreditBalance(Base):
    __tablename__ = "credit_balance"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user_account.id", ondelete="CASCADE"),
    )
    credit_type: Mapped[str] = mapped_column(Text)
    balance: Mapped[int] = mapped_column(Integer, default=0)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    user: Mapped["UserAccount"] = relationship(back_populates="credit_balances")

    __table_args__ = (
        CheckConstraint(
            "credit_type in ('free', 'subscription', 'pack')",
            name="ck_credit_balance_type",
        ),
        UniqueConstraint("user_id", "credit_type", name="uq_credit_balance_user_type"),
    )


class CreditTransaction(Base):
    __tablename__ = "credit_transaction"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("user_account.id", ondelete="CASCADE"),
    )
    credit_type: Mapped[str] = mapped_column(Text)
    amount: Mapped[int] = mapped_column(Integer)
    balance_after: Mapped[int] = mapped_column(Integer)
    kind: Mapped[str] = mapped_column(Text)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    correlation_id: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)

    __table_args__ = (
        CheckConstraint(
            "credit_type in ('free', 'subscription', 'pack')",
            name="ck_credit_transaction_type",
        ),
        CheckConstraint(
            "kind in ('renewal', 'generation', 'purchase', 'admin', 'refund', 'expire')",
            name="ck_credit_transaction_kind",
        ),
        Index("ix_credit_transaction_user_created", "user_id", "created_at"),
        Index("ix_credit_transaction_correlation_id", "correlation_id"),
    )


class Job(Base):
    __tablename__ = "job"

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    job_type: Mapped[str] = mapped_column(Text)
    status: Mapped[str] = mapped_column(Text)
    lane: Mapped[str] = mapped_column(Text, default="standard")
    attempt: Mapped[int] = mapped_column(Integer, default=0)
    max_attempts: Mapped[int] = mapped_column(Integer, default=1)
    payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    result: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    error_payload: Mapped[dict | None] = mapped_column(JSONType, nullable=True)
    queued_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    started_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    finished_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=_utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=_utcnow, onupdate=_utcnow
    )

    __table_args__ = (
        CheckConstraint(
            "job_type in ('generate-batch', 'regenerate-script')",
            name="ck_job_type",
        ),
        CheckConstraint(
            "status in ('queued', 'running', 'retrying', 'succeeded', 'failed')",
            name="ck_job_status",
        ),
        CheckConstraint("lane in ('standard', 'elevated')", name="ck_job_lane"),
    )
