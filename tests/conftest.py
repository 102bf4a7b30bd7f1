"""
Pytest configuration and fixtures for TMS-MTM rule engine tests
"""

import pytest
from datetime import datetime, UTC
from typing import AsyncGenerator, Optional
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.core.enums import EnrollmentStatus, TaskProgressStatus, ComplianceStatus
from src.database.engine import build_engine
from src.database.models import (
    Base,
    MTMModel,
    MTMTask,
    MTMEnrollment,
    MTMTaskProgress,
    Trade,
)


# Test database URL (in-memory SQLite for testing)
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"


@pytest.fixture(scope="function")
async def test_db_engine():
    """
    Create test database engine
    """
    engine = build_engine(TEST_DATABASE_URL)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture(scope="function")
async def db_session(test_db_engine) -> AsyncGenerator[AsyncSession, None]:
    """
    Create test database session
    """
    async_session_maker = async_sessionmaker(
        test_db_engine, class_=AsyncSession, expire_on_commit=False
    )

    async with async_session_maker() as session:
        yield session
        await session.rollback()


# ===========================
# ROW FACTORIES
# ===========================


@pytest.fixture
def create_model(db_session):
    """Factory: insert an MTMModel"""

    async def _create(
        title: str = "Discipline Basics",
        difficulty: str = "advanced",
        tier: str = "basic",
        is_active: bool = True,
        **kwargs,
    ) -> MTMModel:
        model = MTMModel(
            title=title, difficulty=difficulty, tier=tier, is_active=is_active, **kwargs
        )
        db_session.add(model)
        await db_session.commit()
        return model

    return _create


@pytest.fixture
def create_task(db_session):
    """Factory: insert an MTMTask"""

    async def _create(model: MTMModel, sort_order: int, name: Optional[str] = None, **kwargs) -> MTMTask:
        task = MTMTask(
            model_id=model.id,
            name=name or f"Task {sort_order}",
            sort_order=sort_order,
            **kwargs,
        )
        db_session.add(task)
        await db_session.commit()
        return task

    return _create


@pytest.fixture
def create_enrollment(db_session):
    """Factory: insert an MTMEnrollment without unlocking any task"""

    async def _create(
        model: MTMModel,
        user_id: int = 7,
        status: EnrollmentStatus = EnrollmentStatus.APPROVED,
        tier: str = "basic",
    ) -> MTMEnrollment:
        enrollment = MTMEnrollment(
            user_id=user_id, model_id=model.id, tier=tier, status=status.value
        )
        db_session.add(enrollment)
        await db_session.commit()
        return enrollment

    return _create


@pytest.fixture
def create_progress(db_session):
    """Factory: insert an MTMTaskProgress row"""

    async def _create(
        enrollment: MTMEnrollment,
        task: MTMTask,
        status: TaskProgressStatus = TaskProgressStatus.UNLOCKED,
    ) -> MTMTaskProgress:
        progress = MTMTaskProgress(
            enrollment_id=enrollment.id,
            task_id=task.id,
            status=status.value,
            unlocked_at=datetime.now(UTC),
        )
        db_session.add(progress)
        await db_session.commit()
        return progress

    return _create


@pytest.fixture
def create_trade(db_session):
    """Factory: insert a closed, compliant Trade attributed to (enrollment, task)"""

    async def _create(
        enrollment: MTMEnrollment,
        task: MTMTask,
        outcome: str = "TARGET_HIT",
        compliance: ComplianceStatus = ComplianceStatus.PASS,
        deleted: bool = False,
        **kwargs,
    ) -> Trade:
        now = datetime.now(UTC)
        trade = Trade(
            user_id=enrollment.user_id,
            enrollment_id=enrollment.id,
            task_id=task.id,
            symbol=kwargs.pop("symbol", "RELIANCE"),
            entry_price=kwargs.pop("entry_price", 100.0),
            outcome=outcome,
            compliance_status=compliance.value,
            closed_at=None if outcome == "OPEN" else now,
            deleted_at=now if deleted else None,
            **kwargs,
        )
        db_session.add(trade)
        await db_session.commit()
        return trade

    return _create
