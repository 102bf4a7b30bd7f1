"""
Tests for task evaluation and progress application
"""

import pytest
from datetime import datetime, UTC

from src.core.enums import ComplianceStatus, EnrollmentStatus, TaskProgressStatus
from src.database import crud
from src.database.models import MTMModel
from src.services.mtm.progress_tracker import TaskProgressTracker
from src.services.mtm.unlock_sequencer import EnrollmentUnlockSequencer


@pytest.fixture
async def single_task(create_model, create_task, create_enrollment, create_progress):
    """Model with one task (min_trades=3), an enrollment and its unlocked progress"""
    model = await create_model()
    task = await create_task(model, sort_order=1, min_trades=3)
    enrollment = await create_enrollment(model)
    progress = await create_progress(enrollment, task)
    return enrollment, task, progress


@pytest.mark.asyncio
async def test_evaluate_unknown_task(db_session):
    evaluation = await TaskProgressTracker.evaluate(db_session, 1, 404)

    assert evaluation.should_pass is False
    assert evaluation.reason == "Task not found"
    assert evaluation.trade_count == 0


@pytest.mark.asyncio
async def test_evaluate_without_minimum(db_session, create_model, create_task, create_enrollment, create_trade):
    """min_trades <= 0 passes immediately and does not count trades"""
    model = await create_model()
    task = await create_task(model, sort_order=1, min_trades=0)
    enrollment = await create_enrollment(model)
    await create_trade(enrollment, task)

    evaluation = await TaskProgressTracker.evaluate(db_session, enrollment.id, task.id)

    assert evaluation.should_pass is True
    assert evaluation.reason == "No minimum trade requirement"
    assert evaluation.trade_count == 0


@pytest.mark.asyncio
async def test_evaluate_threshold(db_session, single_task, create_trade):
    """Two qualifying trades of three required fail; the third passes"""
    enrollment, task, _ = single_task
    await create_trade(enrollment, task)
    await create_trade(enrollment, task, compliance=ComplianceStatus.OVERRIDE)
    # Never counted
    await create_trade(enrollment, task, outcome="OPEN")
    await create_trade(enrollment, task, outcome="")
    await create_trade(enrollment, task, deleted=True)
    await create_trade(enrollment, task, compliance=ComplianceStatus.FAIL)

    evaluation = await TaskProgressTracker.evaluate(db_session, enrollment.id, task.id)

    assert evaluation.should_pass is False
    assert evaluation.trade_count == 2
    assert evaluation.reason == "Insufficient trades (2/3)"

    await create_trade(enrollment, task, outcome="SL_HIT")

    evaluation = await TaskProgressTracker.evaluate(db_session, enrollment.id, task.id)

    assert evaluation.should_pass is True
    assert evaluation.trade_count == 3
    assert evaluation.reason == "Met minimum trades (3/3)"


@pytest.mark.asyncio
async def test_evaluate_ignores_other_tasks(db_session, single_task, create_task, create_trade):
    enrollment, task, _ = single_task
    model = await db_session.get(MTMModel, task.model_id)
    other = await create_task(model, sort_order=2)
    for _ in range(3):
        await create_trade(enrollment, other)

    evaluation = await TaskProgressTracker.evaluate(db_session, enrollment.id, task.id)

    assert evaluation.trade_count == 0


@pytest.mark.asyncio
async def test_evaluate_uses_rule_json_minimum(db_session, create_model, create_task, create_enrollment, create_trade):
    model = await create_model()
    task = await create_task(model, sort_order=1, min_trades=5, rule_json='{"min_trades": 1}')
    enrollment = await create_enrollment(model)
    await create_trade(enrollment, task)

    evaluation = await TaskProgressTracker.evaluate(db_session, enrollment.id, task.id)

    assert evaluation.should_pass is True
    assert evaluation.reason == "Met minimum trades (1/1)"


@pytest.mark.asyncio
async def test_apply_progress_not_passing_only_touches_timestamp(db_session, single_task):
    enrollment, task, progress = single_task

    assert await TaskProgressTracker.apply_progress(db_session, enrollment.id, task.id) is True

    await db_session.refresh(progress)
    assert progress.status == TaskProgressStatus.UNLOCKED.value
    assert progress.last_evaluated_at is not None
    assert progress.passed_at is None


@pytest.mark.asyncio
async def test_apply_progress_passes_and_unlocks_successor(
    db_session, single_task, create_task, create_trade
):
    enrollment, task, progress = single_task
    model = await db_session.get(MTMModel, task.model_id)
    successor = await create_task(model, sort_order=2, min_trades=1)
    for _ in range(3):
        await create_trade(enrollment, task)

    assert await TaskProgressTracker.apply_progress(db_session, enrollment.id, task.id) is True

    await db_session.refresh(progress)
    assert progress.status == TaskProgressStatus.PASSED.value
    assert progress.passed_at is not None

    next_progress = await crud.get_task_progress(db_session, enrollment.id, successor.id)
    assert next_progress is not None
    assert next_progress.status == TaskProgressStatus.UNLOCKED.value

    enrollment = await crud.get_enrollment(db_session, enrollment.id)
    assert enrollment.status == EnrollmentStatus.APPROVED.value


@pytest.mark.asyncio
async def test_apply_progress_does_not_restamp_passed_task(db_session, single_task):
    enrollment, task, progress = single_task
    stamp = datetime(2024, 1, 15, 10, 30, tzinfo=UTC)
    progress.status = TaskProgressStatus.PASSED.value
    progress.passed_at = stamp
    task.min_trades = 0
    await db_session.commit()

    assert await TaskProgressTracker.apply_progress(db_session, enrollment.id, task.id) is True

    await db_session.refresh(progress)
    assert progress.status == TaskProgressStatus.PASSED.value
    assert progress.passed_at.replace(tzinfo=None) == stamp.replace(tzinfo=None)


@pytest.mark.asyncio
async def test_apply_progress_completes_enrollment(db_session, single_task, create_trade):
    """Passing the last task of the model completes the enrollment"""
    enrollment, task, _ = single_task
    for _ in range(3):
        await create_trade(enrollment, task)

    assert await TaskProgressTracker.apply_progress(db_session, enrollment.id, task.id) is True

    enrollment = await crud.get_enrollment(db_session, enrollment.id)
    assert enrollment.status == EnrollmentStatus.COMPLETED.value
    assert enrollment.completed_at is not None


@pytest.mark.asyncio
async def test_apply_progress_without_progress_row(db_session, create_model, create_task, create_enrollment):
    model = await create_model()
    task = await create_task(model, sort_order=1)
    enrollment = await create_enrollment(model)

    assert await TaskProgressTracker.apply_progress(db_session, enrollment.id, task.id) is False


@pytest.mark.asyncio
async def test_apply_progress_rolls_back_on_error(db_session, single_task, create_trade, monkeypatch):
    enrollment, task, progress = single_task
    for _ in range(3):
        await create_trade(enrollment, task)

    async def broken_unlock(*args, **kwargs):
        raise RuntimeError("connection lost")

    monkeypatch.setattr(EnrollmentUnlockSequencer, "unlock_next", broken_unlock)

    assert await TaskProgressTracker.apply_progress(db_session, enrollment.id, task.id) is False

    await db_session.refresh(progress)
    assert progress.status == TaskProgressStatus.UNLOCKED.value
    assert progress.passed_at is None


@pytest.mark.asyncio
async def test_apply_progress_completes_from_tier_start(
    db_session, create_model, create_task, create_enrollment, create_progress, create_trade
):
    """Tasks before the tier's first task do not block completion"""
    model = await create_model()
    await create_task(model, sort_order=1, tier="basic", min_trades=1)
    advanced = await create_task(model, sort_order=2, tier="advanced", min_trades=1)
    enrollment = await create_enrollment(model, tier="advanced")
    await create_progress(enrollment, advanced)
    await create_trade(enrollment, advanced)

    assert await TaskProgressTracker.apply_progress(db_session, enrollment.id, advanced.id) is True

    enrollment = await crud.get_enrollment(db_session, enrollment.id)
    assert enrollment.status == EnrollmentStatus.COMPLETED.value
