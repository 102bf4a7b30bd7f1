"""
Tests for MTM enrollment and the admin approval workflow
"""

import pytest
from datetime import date, timedelta
from sqlalchemy import select, func

from src.core.enums import EnrollmentStatus, ErrorCode, TaskProgressStatus
from src.database import crud
from src.database.models import MTMEnrollment, MTMTaskProgress
from src.services.mtm.enrollment_service import EnrollmentService


async def count_enrollments(session, user_id, model_id):
    stmt = select(func.count(MTMEnrollment.id)).where(
        MTMEnrollment.user_id == user_id,
        MTMEnrollment.model_id == model_id,
    )
    result = await session.execute(stmt)
    return result.scalar_one()


async def count_progress(session, enrollment_id):
    stmt = select(func.count(MTMTaskProgress.id)).where(
        MTMTaskProgress.enrollment_id == enrollment_id
    )
    result = await session.execute(stmt)
    return result.scalar_one()


@pytest.fixture
async def model_with_tasks(create_model, create_task):
    """Active model with two tasks; returns (model_id, first_task_id, second_task_id)"""
    model = await create_model()
    t1 = await create_task(model, sort_order=1, min_trades=1)
    t2 = await create_task(model, sort_order=2, min_trades=1)
    return model.id, t1.id, t2.id


# ===========================
# ENROLL
# ===========================


@pytest.mark.asyncio
async def test_enroll_unlocks_first_task(db_session, model_with_tasks):
    model_id, t1_id, t2_id = model_with_tasks

    result = await EnrollmentService.enroll(db_session, 7, model_id, "basic")

    assert result.success is True
    assert result.error is None
    assert result.unlocked_task_id == t1_id

    enrollment = await crud.get_enrollment(db_session, result.enrollment_id)
    assert enrollment.status == EnrollmentStatus.APPROVED.value
    assert enrollment.tier == "basic"
    assert enrollment.approved_at is not None

    first = await crud.get_task_progress(db_session, result.enrollment_id, t1_id)
    assert first.status == TaskProgressStatus.UNLOCKED.value
    assert await crud.get_task_progress(db_session, result.enrollment_id, t2_id) is None


@pytest.mark.asyncio
async def test_enroll_twice_is_rejected(db_session, model_with_tasks):
    """Second enrollment of the same trader in the same model fails"""
    model_id, _, _ = model_with_tasks

    first = await EnrollmentService.enroll(db_session, 7, model_id, "basic")
    second = await EnrollmentService.enroll(db_session, 7, model_id, "basic")

    assert first.success is True
    assert second.success is False
    assert second.error == ErrorCode.ALREADY_ENROLLED
    assert second.enrollment_id == first.enrollment_id
    assert await count_enrollments(db_session, 7, model_id) == 1


@pytest.mark.asyncio
async def test_enroll_duplicate_caught_by_unique_constraint(db_session, model_with_tasks, monkeypatch):
    """A race past the pre-check is stopped by UNIQUE(user_id, model_id)"""
    model_id, _, _ = model_with_tasks
    first = await EnrollmentService.enroll(db_session, 7, model_id, "basic")

    async def no_existing(*args, **kwargs):
        return None

    monkeypatch.setattr(crud, "get_enrollment_by_user_model", no_existing)

    second = await EnrollmentService.enroll(db_session, 7, model_id, "basic")

    assert first.success is True
    assert second.success is False
    assert second.error == ErrorCode.ALREADY_ENROLLED
    assert await count_enrollments(db_session, 7, model_id) == 1


@pytest.mark.asyncio
async def test_enroll_existing_enrollment_of_any_status(db_session, create_model, create_enrollment):
    model = await create_model()
    model_id = model.id
    await create_enrollment(model, user_id=7, status=EnrollmentStatus.REJECTED)

    result = await EnrollmentService.enroll(db_session, 7, model_id, "basic")

    assert result.error == ErrorCode.ALREADY_ENROLLED


@pytest.mark.asyncio
async def test_enroll_invalid_tier(db_session, model_with_tasks):
    model_id, _, _ = model_with_tasks

    result = await EnrollmentService.enroll(db_session, 7, model_id, "platinum")

    assert result.success is False
    assert result.error == ErrorCode.VALIDATION_ERROR
    assert await count_enrollments(db_session, 7, model_id) == 0


@pytest.mark.asyncio
async def test_enroll_default_tier(db_session, model_with_tasks):
    model_id, _, _ = model_with_tasks

    result = await EnrollmentService.enroll(db_session, 7, model_id, None)

    enrollment = await crud.get_enrollment(db_session, result.enrollment_id)
    assert enrollment.tier == "basic"


@pytest.mark.asyncio
async def test_enroll_unknown_model(db_session):
    result = await EnrollmentService.enroll(db_session, 7, 404, "basic")

    assert result.success is False
    assert result.error == ErrorCode.SERVER_ERROR


@pytest.mark.asyncio
async def test_enroll_model_without_tasks(db_session, create_model):
    model = await create_model()

    result = await EnrollmentService.enroll(db_session, 7, model.id, "advanced")

    assert result.success is True
    assert result.unlocked_task_id is None


@pytest.mark.asyncio
async def test_enroll_unlocks_first_task_of_tier(db_session, create_model, create_task):
    """The sequence starts at the lowest task of the enrollment's tier"""
    model = await create_model()
    await create_task(model, sort_order=1, tier="basic")
    advanced = await create_task(model, sort_order=2, tier="advanced")

    result = await EnrollmentService.enroll(db_session, 7, model.id, "advanced")

    assert result.success is True
    assert result.unlocked_task_id == advanced.id
    assert await count_progress(db_session, result.enrollment_id) == 1


@pytest.mark.asyncio
async def test_enroll_tier_without_tasks_unlocks_nothing(db_session, create_model, create_task):
    model = await create_model()
    await create_task(model, sort_order=1, tier="basic")

    result = await EnrollmentService.enroll(db_session, 7, model.id, "intermediate")

    assert result.success is True
    assert result.unlocked_task_id is None
    assert await count_progress(db_session, result.enrollment_id) == 0


# ===========================
# ADMIN WORKFLOW
# ===========================


@pytest.mark.asyncio
async def test_request_then_approve(db_session, model_with_tasks):
    model_id, t1_id, _ = model_with_tasks

    requested = await EnrollmentService.request_enrollment(db_session, 7, model_id, "intermediate")

    assert requested.success is True
    assert requested.unlocked_task_id is None
    assert await count_progress(db_session, requested.enrollment_id) == 0

    approved = await EnrollmentService.approve(
        db_session, requested.enrollment_id, admin_id=1, admin_notes="Welcome aboard"
    )

    assert approved.success is True
    assert approved.status == EnrollmentStatus.APPROVED.value

    enrollment = await crud.get_enrollment(db_session, requested.enrollment_id)
    assert enrollment.approved_by == 1
    assert enrollment.admin_notes == "Welcome aboard"
    progress = await crud.get_task_progress(db_session, requested.enrollment_id, t1_id)
    assert progress.status == TaskProgressStatus.UNLOCKED.value


@pytest.mark.asyncio
async def test_approve_twice(db_session, model_with_tasks):
    model_id, _, _ = model_with_tasks
    enrolled = await EnrollmentService.enroll(db_session, 7, model_id, "basic")

    result = await EnrollmentService.approve(db_session, enrolled.enrollment_id, admin_id=1)

    assert result.success is False
    assert result.error == ErrorCode.ALREADY_EXISTS


@pytest.mark.asyncio
async def test_approve_unknown_enrollment(db_session):
    result = await EnrollmentService.approve(db_session, 404, admin_id=1)

    assert result.error == ErrorCode.NOT_FOUND


@pytest.mark.asyncio
async def test_approve_notes_too_long(db_session, model_with_tasks):
    model_id, _, _ = model_with_tasks
    requested = await EnrollmentService.request_enrollment(db_session, 7, model_id)

    result = await EnrollmentService.approve(
        db_session, requested.enrollment_id, admin_id=1, admin_notes="x" * 1001
    )

    assert result.error == ErrorCode.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_approve_inactive_model(db_session, create_model):
    model = await create_model(is_active=False)
    requested = await EnrollmentService.request_enrollment(db_session, 7, model.id)

    result = await EnrollmentService.approve(db_session, requested.enrollment_id, admin_id=1)

    assert result.error == ErrorCode.VALIDATION_ERROR
    assert result.message == "Model is not active"


@pytest.mark.asyncio
async def test_approve_outside_date_window(db_session, create_model):
    model = await create_model(start_date=date.today() + timedelta(days=30))
    requested = await EnrollmentService.request_enrollment(db_session, 7, model.id)

    result = await EnrollmentService.approve(db_session, requested.enrollment_id, admin_id=1)

    assert result.error == ErrorCode.VALIDATION_ERROR
    assert result.message.startswith("Model opens on")


@pytest.mark.asyncio
async def test_reject_requires_reason(db_session, model_with_tasks):
    model_id, _, _ = model_with_tasks
    requested = await EnrollmentService.request_enrollment(db_session, 7, model_id)

    result = await EnrollmentService.reject(db_session, requested.enrollment_id, admin_id=1)

    assert result.error == ErrorCode.VALIDATION_ERROR


@pytest.mark.asyncio
async def test_reject_then_force_approve(db_session, model_with_tasks):
    model_id, _, _ = model_with_tasks
    requested = await EnrollmentService.request_enrollment(db_session, 7, model_id)
    enrollment_id = requested.enrollment_id

    rejected = await EnrollmentService.reject(
        db_session, enrollment_id, admin_id=1, reason="Incomplete profile"
    )
    assert rejected.success is True
    assert rejected.status == EnrollmentStatus.REJECTED.value

    again = await EnrollmentService.reject(db_session, enrollment_id, admin_id=1, reason="Still no")
    assert again.error == ErrorCode.ALREADY_EXISTS

    refused = await EnrollmentService.approve(db_session, enrollment_id, admin_id=1)
    assert refused.error == ErrorCode.INVALID_STATE

    forced = await EnrollmentService.approve(db_session, enrollment_id, admin_id=1, force=True)
    assert forced.success is True
    assert forced.status == EnrollmentStatus.APPROVED.value


@pytest.mark.asyncio
async def test_cannot_reject_approved(db_session, model_with_tasks):
    model_id, _, _ = model_with_tasks
    enrolled = await EnrollmentService.enroll(db_session, 7, model_id, "basic")

    result = await EnrollmentService.reject(
        db_session, enrolled.enrollment_id, admin_id=1, reason="Changed my mind"
    )

    assert result.error == ErrorCode.INVALID_STATE


@pytest.mark.asyncio
async def test_drop_only_approved(db_session, model_with_tasks):
    model_id, _, _ = model_with_tasks
    enrolled = await EnrollmentService.enroll(db_session, 7, model_id, "basic")
    pending = await EnrollmentService.request_enrollment(db_session, 8, model_id)

    dropped = await EnrollmentService.drop(
        db_session, enrolled.enrollment_id, admin_id=1, reason="Inactive for 60 days"
    )
    refused = await EnrollmentService.drop(db_session, pending.enrollment_id, admin_id=1)

    assert dropped.success is True
    assert dropped.status == EnrollmentStatus.DROPPED.value
    assert refused.error == ErrorCode.INVALID_STATE

    enrollment = await crud.get_enrollment(db_session, enrolled.enrollment_id)
    assert enrollment.dropped_at is not None
    assert enrollment.admin_notes == "Inactive for 60 days"


# ===========================
# QUERIES
# ===========================


@pytest.mark.asyncio
async def test_enrollment_queries(db_session, model_with_tasks, create_model):
    model_id, t1_id, _ = model_with_tasks
    other = await create_model(title="Risk Mastery")
    other_id = other.id

    enrolled = await EnrollmentService.enroll(db_session, 7, model_id, "basic")
    await EnrollmentService.request_enrollment(db_session, 7, other_id)

    enrollments = await EnrollmentService.get_user_enrollments(db_session, 7)
    assert {model.id for _, model in enrollments} == {model_id, other_id}

    active = await EnrollmentService.get_active_enrollment(db_session, 7)
    assert active is not None
    assert active[0].id == enrolled.enrollment_id

    current = await EnrollmentService.get_current_task(db_session, enrolled.enrollment_id)
    assert current is not None
    task, progress = current
    assert task.id == t1_id
    assert progress.status == TaskProgressStatus.UNLOCKED.value

    assert await EnrollmentService.get_active_enrollment(db_session, 99) is None


# ===========================
# ADMIN LIST
# ===========================


@pytest.mark.asyncio
async def test_list_enrollments_counts_and_order(
    db_session, create_model, create_task, create_enrollment, create_progress
):
    model = await create_model()
    other_model = await create_model(title="Risk First")
    t1 = await create_task(model, sort_order=1)
    t2 = await create_task(model, sort_order=2)
    t3 = await create_task(model, sort_order=3)

    approved = await create_enrollment(model, user_id=1)
    await create_progress(approved, t1, TaskProgressStatus.PASSED)
    await create_progress(approved, t2, TaskProgressStatus.FAILED)
    await create_progress(approved, t3, TaskProgressStatus.IN_PROGRESS)
    pending = await create_enrollment(model, user_id=2, status=EnrollmentStatus.PENDING)
    completed = await create_enrollment(model, user_id=3, status=EnrollmentStatus.COMPLETED)
    rejected = await create_enrollment(other_model, user_id=4, status=EnrollmentStatus.REJECTED)

    page = await EnrollmentService.list_enrollments(db_session)

    assert page.total == 4
    assert page.pages == 1
    assert [item.enrollment.id for item in page.items] == [
        pending.id, approved.id, rejected.id, completed.id
    ]

    row = page.items[1]
    assert row.model.id == model.id
    assert (row.total, row.passed, row.failed, row.unlocked, row.in_progress) == (3, 1, 1, 0, 1)
    assert row.completed == 2
    assert page.items[0].total == 0


@pytest.mark.asyncio
async def test_list_enrollments_filters(db_session, create_model, create_enrollment):
    model = await create_model()
    other_model = await create_model(title="Risk First")
    await create_enrollment(model, user_id=1)
    pending = await create_enrollment(model, user_id=2, status=EnrollmentStatus.PENDING)
    other = await create_enrollment(other_model, user_id=3, status=EnrollmentStatus.PENDING)

    by_status = await EnrollmentService.list_enrollments(db_session, status="Pending")
    by_model = await EnrollmentService.list_enrollments(db_session, model_id=other_model.id)
    both = await EnrollmentService.list_enrollments(db_session, status="pending", model_id=model.id)

    assert {item.enrollment.id for item in by_status.items} == {pending.id, other.id}
    assert [item.enrollment.id for item in by_model.items] == [other.id]
    assert both.total == 1


@pytest.mark.asyncio
async def test_list_enrollments_pagination(db_session, create_model, create_enrollment):
    model = await create_model()
    for user_id in range(1, 13):
        await create_enrollment(model, user_id=user_id, status=EnrollmentStatus.PENDING)

    first = await EnrollmentService.list_enrollments(db_session, page=1, limit=3)
    second = await EnrollmentService.list_enrollments(db_session, page=2, limit=3)

    # limit is clamped up to the minimum page size
    assert first.limit == 10
    assert first.total == 12
    assert first.pages == 2
    assert len(first.items) == 10
    assert len(second.items) == 2
    assert not {i.enrollment.id for i in first.items} & {i.enrollment.id for i in second.items}
