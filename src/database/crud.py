"""
CRUD operations for the TMS-MTM rule engine

Async database operations using SQLAlchemy 2.0.
Functions here flush but never commit: the calling service owns the transaction.
"""

import logging
from datetime import date, datetime, time, timedelta, UTC
from typing import Dict, List, Optional, Tuple

from sqlalchemy import select, func, and_, or_, case
from sqlalchemy.ext.asyncio import AsyncSession

from config.mtm_config import ENROLLMENT_STATUS_ORDER, NON_TERMINAL_OUTCOMES, OPEN_OUTCOME
from src.core.enums import (
    EnrollmentStatus,
    TaskProgressStatus,
    ComplianceStatus,
)
from src.database.models import (
    MTMModel,
    MTMTask,
    MTMEnrollment,
    MTMTaskProgress,
    Trade,
)

logger = logging.getLogger(__name__)


# ===========================
# MODEL / TASK OPERATIONS
# ===========================


async def get_model(session: AsyncSession, model_id: int) -> Optional[MTMModel]:
    """
    Get MTM model by ID

    Args:
        session: Database session
        model_id: Model ID

    Returns:
        MTMModel or None
    """
    stmt = select(MTMModel).where(MTMModel.id == model_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_task(session: AsyncSession, task_id: int) -> Optional[MTMTask]:
    """Get MTM task by ID"""
    stmt = select(MTMTask).where(MTMTask.id == task_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_first_task(
    session: AsyncSession, model_id: int, tier: Optional[str] = None
) -> Optional[MTMTask]:
    """
    Get the first active task of a model in (sort_order, id) order

    Args:
        session: Database session
        model_id: Model ID
        tier: Only consider tasks of this tier (None = any tier)

    Returns:
        MTMTask or None if the model has no matching active task
    """
    conditions = [MTMTask.model_id == model_id, MTMTask.is_active.is_(True)]
    if tier is not None:
        conditions.append(MTMTask.tier == tier)

    stmt = (
        select(MTMTask)
        .where(*conditions)
        .order_by(MTMTask.sort_order.asc(), MTMTask.id.asc())
        .limit(1)
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_active_task_ids(
    session: AsyncSession, model_id: int, start: Optional[MTMTask] = None
) -> List[int]:
    """
    Get IDs of the active tasks of a model in sequence order

    Args:
        session: Database session
        model_id: Model ID
        start: First task of the sequence; earlier tasks are left out

    Returns:
        List of task IDs
    """
    conditions = [MTMTask.model_id == model_id, MTMTask.is_active.is_(True)]
    if start is not None:
        conditions.append(
            or_(
                MTMTask.sort_order > start.sort_order,
                and_(MTMTask.sort_order == start.sort_order, MTMTask.id >= start.id),
            )
        )

    stmt = (
        select(MTMTask.id)
        .where(*conditions)
        .order_by(MTMTask.sort_order.asc(), MTMTask.id.asc())
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


# ===========================
# ENROLLMENT OPERATIONS
# ===========================


async def get_enrollment(
    session: AsyncSession, enrollment_id: int, for_update: bool = False
) -> Optional[MTMEnrollment]:
    """
    Get enrollment by ID

    Args:
        session: Database session
        enrollment_id: Enrollment ID
        for_update: Lock the row until the transaction ends

    Returns:
        MTMEnrollment or None
    """
    stmt = select(MTMEnrollment).where(MTMEnrollment.id == enrollment_id)
    if for_update:
        stmt = stmt.with_for_update()
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_enrollment_by_user_model(
    session: AsyncSession, user_id: int, model_id: int
) -> Optional[MTMEnrollment]:
    """Get a trader's enrollment in a model, regardless of status"""
    stmt = select(MTMEnrollment).where(
        MTMEnrollment.user_id == user_id,
        MTMEnrollment.model_id == model_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_user_enrollments(
    session: AsyncSession, user_id: int
) -> List[Tuple[MTMEnrollment, MTMModel]]:
    """
    Get all enrollments of a trader with their models, newest first

    Args:
        session: Database session
        user_id: Trader user ID

    Returns:
        List of (MTMEnrollment, MTMModel) tuples
    """
    stmt = (
        select(MTMEnrollment, MTMModel)
        .join(MTMModel, MTMModel.id == MTMEnrollment.model_id)
        .where(MTMEnrollment.user_id == user_id)
        .order_by(MTMEnrollment.requested_at.desc(), MTMEnrollment.id.desc())
    )
    result = await session.execute(stmt)
    return [(row[0], row[1]) for row in result.all()]


async def get_latest_approved_enrollment(
    session: AsyncSession, user_id: int
) -> Optional[Tuple[MTMEnrollment, MTMModel]]:
    """Get a trader's most recently approved enrollment with its model"""
    stmt = (
        select(MTMEnrollment, MTMModel)
        .join(MTMModel, MTMModel.id == MTMEnrollment.model_id)
        .where(
            MTMEnrollment.user_id == user_id,
            MTMEnrollment.status == EnrollmentStatus.APPROVED.value,
        )
        .order_by(MTMEnrollment.approved_at.desc(), MTMEnrollment.id.desc())
        .limit(1)
    )
    result = await session.execute(stmt)
    row = result.first()
    return (row[0], row[1]) if row else None


async def list_enrollments(
    session: AsyncSession,
    status: Optional[str] = None,
    model_id: Optional[int] = None,
    limit: int = 20,
    offset: int = 0,
) -> Tuple[List[Tuple[MTMEnrollment, MTMModel, Dict[str, int]]], int]:
    """
    List enrollments for the admin panel with per-enrollment task counts

    Ordered pending, approved, rejected, dropped, completed; newest request
    first within a status.

    Args:
        session: Database session
        status: Only enrollments with this status
        model_id: Only enrollments in this model
        limit: Page size
        offset: Rows to skip

    Returns:
        ((enrollment, model, task_counts) rows, total matching enrollments)
    """
    conditions = []
    if status:
        conditions.append(MTMEnrollment.status == status)
    if model_id:
        conditions.append(MTMEnrollment.model_id == model_id)

    def _count_status(value: str):
        return func.sum(case((MTMTaskProgress.status == value, 1), else_=0))

    counts = (
        select(
            MTMTaskProgress.enrollment_id.label("enrollment_id"),
            func.count(MTMTaskProgress.id).label("total"),
            _count_status(TaskProgressStatus.PASSED.value).label("passed"),
            _count_status(TaskProgressStatus.FAILED.value).label("failed"),
            _count_status(TaskProgressStatus.UNLOCKED.value).label("unlocked"),
            _count_status(TaskProgressStatus.IN_PROGRESS.value).label("in_progress"),
        )
        .group_by(MTMTaskProgress.enrollment_id)
        .subquery()
    )
    count_columns = ("total", "passed", "failed", "unlocked", "in_progress")

    total_stmt = select(func.count(MTMEnrollment.id)).where(*conditions)
    total = (await session.execute(total_stmt)).scalar_one()

    status_order = case(ENROLLMENT_STATUS_ORDER, value=MTMEnrollment.status, else_=99)
    stmt = (
        select(
            MTMEnrollment,
            MTMModel,
            *[func.coalesce(counts.c[name], 0) for name in count_columns],
        )
        .join(MTMModel, MTMModel.id == MTMEnrollment.model_id)
        .outerjoin(counts, counts.c.enrollment_id == MTMEnrollment.id)
        .where(*conditions)
        .order_by(status_order, MTMEnrollment.requested_at.desc(), MTMEnrollment.id.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await session.execute(stmt)

    rows = []
    for row in result.all():
        task_counts = {name: int(value) for name, value in zip(count_columns, row[2:])}
        rows.append((row[0], row[1], task_counts))
    return rows, total


# ===========================
# TASK PROGRESS OPERATIONS
# ===========================


async def get_task_progress(
    session: AsyncSession, enrollment_id: int, task_id: int
) -> Optional[MTMTaskProgress]:
    """Get the progress row of (enrollment, task)"""
    stmt = select(MTMTaskProgress).where(
        MTMTaskProgress.enrollment_id == enrollment_id,
        MTMTaskProgress.task_id == task_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def get_progress_position(
    session: AsyncSession, enrollment_id: int, task_id: int
) -> Optional[Tuple[int, int]]:
    """
    Get (model_id, sort_order) of a task through its progress row

    Returns:
        Tuple or None when the enrollment has no progress row for the task
    """
    stmt = (
        select(MTMTask.model_id, MTMTask.sort_order)
        .join(MTMTaskProgress, MTMTaskProgress.task_id == MTMTask.id)
        .where(
            MTMTaskProgress.enrollment_id == enrollment_id,
            MTMTaskProgress.task_id == task_id,
        )
    )
    result = await session.execute(stmt)
    row = result.first()
    return (row[0], row[1]) if row else None


async def get_successor_task(
    session: AsyncSession,
    enrollment_id: int,
    model_id: int,
    sort_order: int,
    current_task_id: int,
) -> Optional[Tuple[int, Optional[str]]]:
    """
    Find the next not-yet-passed active task after the current one

    Order is (sort_order, id); ties on sort_order fall back to id.

    Returns:
        (task_id, progress_status or None) or None at the end of the sequence
    """
    stmt = (
        select(MTMTask.id, MTMTaskProgress.status)
        .outerjoin(
            MTMTaskProgress,
            and_(
                MTMTaskProgress.task_id == MTMTask.id,
                MTMTaskProgress.enrollment_id == enrollment_id,
            ),
        )
        .where(
            MTMTask.model_id == model_id,
            MTMTask.is_active.is_(True),
            or_(
                MTMTask.sort_order > sort_order,
                and_(MTMTask.sort_order == sort_order, MTMTask.id > current_task_id),
            ),
            or_(
                MTMTaskProgress.status.is_(None),
                MTMTaskProgress.status != TaskProgressStatus.PASSED.value,
            ),
        )
        .order_by(MTMTask.sort_order.asc(), MTMTask.id.asc())
        .limit(1)
    )
    result = await session.execute(stmt)
    row = result.first()
    return (row[0], row[1]) if row else None


async def upsert_unlocked_progress(
    session: AsyncSession, enrollment_id: int, task_id: int
) -> MTMTaskProgress:
    """
    Insert or refresh a progress row as unlocked

    Re-unlocking an unlocked task only refreshes unlocked_at.

    Args:
        session: Database session
        enrollment_id: Enrollment ID
        task_id: Task ID

    Returns:
        The unlocked MTMTaskProgress row
    """
    now = datetime.now(UTC)
    progress = await get_task_progress(session, enrollment_id, task_id)

    if progress is None:
        progress = MTMTaskProgress(
            enrollment_id=enrollment_id,
            task_id=task_id,
            status=TaskProgressStatus.UNLOCKED.value,
            unlocked_at=now,
            attempts=0,
        )
        session.add(progress)
    else:
        progress.status = TaskProgressStatus.UNLOCKED.value
        progress.unlocked_at = now

    await session.flush()
    logger.debug(f"Progress unlocked: enrollment={enrollment_id} task={task_id}")
    return progress


async def get_current_task(
    session: AsyncSession, enrollment_id: int
) -> Optional[Tuple[MTMTask, MTMTaskProgress]]:
    """Get the lowest actionable (unlocked/in_progress) task of an enrollment"""
    stmt = (
        select(MTMTask, MTMTaskProgress)
        .join(MTMTaskProgress, MTMTaskProgress.task_id == MTMTask.id)
        .where(
            MTMTaskProgress.enrollment_id == enrollment_id,
            MTMTaskProgress.status.in_(
                [s.value for s in TaskProgressStatus.actionable_states()]
            ),
        )
        .order_by(MTMTask.sort_order.asc(), MTMTask.id.asc())
        .limit(1)
    )
    result = await session.execute(stmt)
    row = result.first()
    return (row[0], row[1]) if row else None


async def get_actionable_task_ids(session: AsyncSession, enrollment_id: int) -> List[int]:
    """Get IDs of every unlocked/in_progress task of an enrollment"""
    stmt = select(MTMTaskProgress.task_id).where(
        MTMTaskProgress.enrollment_id == enrollment_id,
        MTMTaskProgress.status.in_(
            [s.value for s in TaskProgressStatus.actionable_states()]
        ),
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def count_passed_tasks(
    session: AsyncSession, enrollment_id: int, task_ids: List[int]
) -> int:
    """Count passed progress rows of an enrollment among task_ids"""
    if not task_ids:
        return 0
    stmt = select(func.count(MTMTaskProgress.id)).where(
        MTMTaskProgress.enrollment_id == enrollment_id,
        MTMTaskProgress.task_id.in_(task_ids),
        MTMTaskProgress.status == TaskProgressStatus.PASSED.value,
    )
    result = await session.execute(stmt)
    return result.scalar_one()


# ===========================
# TRADE OPERATIONS
# ===========================


async def get_trade(session: AsyncSession, trade_id: int) -> Optional[Trade]:
    """Get trade by ID (soft-deleted trades included)"""
    stmt = select(Trade).where(Trade.id == trade_id)
    result = await session.execute(stmt)
    return result.scalar_one_or_none()


async def count_qualifying_trades(
    session: AsyncSession, enrollment_id: int, task_id: int
) -> int:
    """
    Count closed, compliant, non-deleted trades attributed to (enrollment, task)

    Args:
        session: Database session
        enrollment_id: Enrollment ID
        task_id: Task ID

    Returns:
        Number of trades counting toward the task
    """
    stmt = select(func.count(Trade.id)).where(
        Trade.enrollment_id == enrollment_id,
        Trade.task_id == task_id,
        Trade.compliance_status.in_(
            [s.value for s in ComplianceStatus.counting_states()]
        ),
        Trade.outcome.is_not(None),
        func.upper(func.trim(Trade.outcome)).not_in(list(NON_TERMINAL_OUTCOMES)),
        Trade.deleted_at.is_(None),
    )
    result = await session.execute(stmt)
    return result.scalar_one()


async def get_open_position_avg_price(
    session: AsyncSession,
    user_id: int,
    symbol: str,
    side: str,
    exclude_trade_id: Optional[int] = None,
) -> Optional[float]:
    """
    Average entry price of a trader's open trades in a symbol/side

    Returns:
        Average entry price or None when there is no open position
    """
    conditions = [
        Trade.user_id == user_id,
        func.upper(Trade.symbol) == symbol.upper(),
        func.lower(Trade.side) == side.lower(),
        func.upper(Trade.outcome) == OPEN_OUTCOME,
        Trade.deleted_at.is_(None),
    ]
    if exclude_trade_id is not None:
        conditions.append(Trade.id != exclude_trade_id)

    stmt = select(func.avg(Trade.entry_price)).where(*conditions)
    result = await session.execute(stmt)
    avg_price = result.scalar_one_or_none()
    return float(avg_price) if avg_price is not None else None


async def get_user_trades(
    session: AsyncSession,
    user_id: int,
    symbol: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    limit: int = 50,
    offset: int = 0,
) -> List[Trade]:
    """
    Get a trader's non-deleted trades, newest first

    Args:
        session: Database session
        user_id: Trader user ID
        symbol: Case-insensitive substring of the symbol
        date_from: First trade date included (UTC)
        date_to: Last trade date included (UTC)
        limit: Max trades to return
        offset: Trades to skip

    Returns:
        List of Trade
    """
    conditions = [Trade.user_id == user_id, Trade.deleted_at.is_(None)]
    if symbol:
        conditions.append(Trade.symbol.icontains(symbol, autoescape=True))
    if date_from:
        conditions.append(Trade.created_at >= datetime.combine(date_from, time.min, tzinfo=UTC))
    if date_to:
        day_after = date_to + timedelta(days=1)
        conditions.append(Trade.created_at < datetime.combine(day_after, time.min, tzinfo=UTC))

    stmt = (
        select(Trade)
        .where(*conditions)
        .order_by(Trade.created_at.desc(), Trade.id.desc())
        .limit(limit)
        .offset(offset)
    )
    result = await session.execute(stmt)
    return list(result.scalars().all())
