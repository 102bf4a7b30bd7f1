"""
Database models for the TMS-MTM rule engine

SQLAlchemy 2.0 models with full type hints
"""

from datetime import datetime, date, UTC
from typing import Optional

from sqlalchemy import (
    String,
    Text,
    Integer,
    Float,
    Boolean,
    DateTime,
    Date,
    ForeignKey,
    UniqueConstraint,
    Index,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column

from src.core.enums import (
    ModelTier,
    EnrollmentStatus,
    TaskProgressStatus,
    ComplianceStatus,
)


class Base(DeclarativeBase):
    """Base class for all models"""

    pass


# ===========================
# MODELS
# ===========================


class MTMModel(Base):
    """
    MTM model - a trading-discipline curriculum

    Admin-owned reference data. Difficulty drives the enforcement tier
    applied to trades recorded against the model's tasks.
    """

    __tablename__ = "mtm_models"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(
        String(255), nullable=False, comment="Model title"
    )
    description: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True, comment="Model description"
    )
    tier: Mapped[str] = mapped_column(
        String(20),
        default=ModelTier.BASIC.value,
        nullable=False,
        comment="Tier (basic/intermediate/advanced)",
    )
    difficulty: Mapped[str] = mapped_column(
        String(20),
        default="advanced",
        nullable=False,
        comment="Difficulty, used for enforcement tier lookup",
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, default=True, nullable=False, comment="Is model open for enrollment"
    )
    start_date: Mapped[Optional[date]] = mapped_column(
        Date, nullable=True, comment="Enrollment approvals allowed from this date"
    )
    end_date: Mapped[Optional[date]] = mapped_column(
        Date, nullable=True, comment="Enrollment approvals allowed until this date"
    )
    created_by: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, comment="Admin user ID who created the model"
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    def __repr__(self) -> str:
        return f"<MTMModel(id={self.id}, title={self.title}, difficulty={self.difficulty})>"


class MTMTask(Base):
    """
    MTM task - one ordered gate within a model

    Rules come from the structured columns, optionally overridden
    by the free-form rule_json object.
    """

    __tablename__ = "mtm_tasks"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    model_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("mtm_models.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
        comment="Owning model ID",
    )
    tier: Mapped[str] = mapped_column(
        String(20), default=ModelTier.BASIC.value, nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False, comment="Task name")
    sort_order: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Position in the model sequence"
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Structured rules
    min_trades: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=0)
    time_window_days: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=0)
    require_sl: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True, default=False)
    max_risk_pct: Mapped[Optional[float]] = mapped_column(
        Float, nullable=True, comment="Max risk per trade, % of entry (NULL = no limit)"
    )
    max_position_pct: Mapped[Optional[float]] = mapped_column(
        Float, nullable=True, comment="Max position size, % of capital (NULL = no limit)"
    )
    min_rr: Mapped[Optional[float]] = mapped_column(
        Float, nullable=True, comment="Min risk/reward ratio (NULL = no limit)"
    )
    require_analysis_link: Mapped[Optional[bool]] = mapped_column(
        Boolean, nullable=True, default=False
    )
    weekly_min_trades: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=0)
    weeks_consistency: Mapped[Optional[int]] = mapped_column(Integer, nullable=True, default=0)

    rule_json: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True, comment="JSON object overriding/adding rules"
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )

    __table_args__ = (Index("idx_mtm_tasks_model_sort", "model_id", "sort_order"),)

    def __repr__(self) -> str:
        return f"<MTMTask(id={self.id}, model_id={self.model_id}, sort_order={self.sort_order})>"


class MTMEnrollment(Base):
    """
    MTM enrollment - a trader's participation in one model at one tier

    UNIQUE(user_id, model_id) is the final authority against
    concurrent duplicate enrollments.
    """

    __tablename__ = "mtm_enrollments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(
        Integer, nullable=False, index=True, comment="Trader user ID"
    )
    model_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("mtm_models.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    tier: Mapped[str] = mapped_column(
        String(20), default=ModelTier.BASIC.value, nullable=False
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=EnrollmentStatus.PENDING.value,
        nullable=False,
        index=True,
        comment="Enrollment status (EnrollmentStatus enum)",
    )

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    approved_by: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, comment="Admin user ID (NULL for self-service)"
    )
    rejected_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rejection_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    dropped_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    admin_notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        onupdate=lambda: datetime.now(UTC),
        nullable=False,
    )

    __table_args__ = (UniqueConstraint("user_id", "model_id", name="uq_enrollment_user_model"),)

    def __repr__(self) -> str:
        return f"<MTMEnrollment(id={self.id}, user_id={self.user_id}, model_id={self.model_id}, status={self.status})>"


class MTMTaskProgress(Base):
    """
    Task progress - state of one task for one enrollment

    Exactly one row per (enrollment, task) once the task has been unlocked.
    """

    __tablename__ = "mtm_task_progress"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    enrollment_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("mtm_enrollments.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    task_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("mtm_tasks.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    status: Mapped[str] = mapped_column(
        String(20),
        default=TaskProgressStatus.LOCKED.value,
        nullable=False,
        comment="Progress status (TaskProgressStatus enum)",
    )
    unlocked_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    passed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    last_evaluated_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    attempts: Mapped[int] = mapped_column(
        Integer, default=0, nullable=False, comment="Trades recorded against this task"
    )

    __table_args__ = (
        UniqueConstraint("enrollment_id", "task_id", name="uq_progress_enrollment_task"),
    )

    def __repr__(self) -> str:
        return f"<MTMTaskProgress(enrollment_id={self.enrollment_id}, task_id={self.task_id}, status={self.status})>"


class Trade(Base):
    """
    Journaled trade

    Only closed, non-deleted trades with compliance pass/override
    count toward task completion.
    """

    __tablename__ = "trades"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    # MTM attribution
    enrollment_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("mtm_enrollments.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    task_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("mtm_tasks.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    symbol: Mapped[str] = mapped_column(String(32), nullable=False, default="")
    side: Mapped[str] = mapped_column(String(4), nullable=False, default="buy", comment="buy/sell")
    entry_price: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)
    stop_loss: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    target_price: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    position_percent: Mapped[Optional[float]] = mapped_column(
        Float, nullable=True, comment="Position size, % of capital"
    )
    outcome: Mapped[str] = mapped_column(
        String(32), nullable=False, default="OPEN", comment="OPEN or a terminal code"
    )
    analysis_link: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    marketcap: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True, comment="Market-cap classification (large/mid/small)"
    )

    # Compliance
    compliance_status: Mapped[str] = mapped_column(
        String(10),
        default=ComplianceStatus.PASS.value,
        nullable=False,
        index=True,
    )
    compliance_notes: Mapped[Optional[str]] = mapped_column(
        Text, nullable=True, comment="JSON: violations and warnings at last evaluation"
    )
    override_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    overridden_by: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(UTC),
        nullable=False,
    )
    closed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True, comment="Soft delete marker"
    )
    deleted_by: Mapped[Optional[int]] = mapped_column(
        Integer, nullable=True, comment="User ID who deleted the trade"
    )
    deleted_by_admin: Mapped[bool] = mapped_column(
        Boolean, default=False, nullable=False, comment="Deleted from the admin panel"
    )
    deleted_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("idx_trades_enrollment_task", "enrollment_id", "task_id"),
        Index("idx_trades_user_symbol", "user_id", "symbol"),
        Index("idx_trades_deleted_at", "deleted_at"),
    )

    def __repr__(self) -> str:
        return f"<Trade(id={self.id}, symbol={self.symbol}, outcome={self.outcome}, compliance={self.compliance_status})>"
