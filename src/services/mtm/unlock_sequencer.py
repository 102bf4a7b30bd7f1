# coding: utf-8
"""
MTM Enrollment Unlock Sequencer

Unlocks tasks of an enrollment in (sort_order, id) order. The sequence
starts at the first task of the enrollment's tier; successors follow in
model order whatever their tier.
Only flushes: the caller owns the transaction.
"""

from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.logging import log_event
from src.core.enums import TaskProgressStatus
from src.database import crud

_UNLOCKABLE = {s.value for s in TaskProgressStatus.unlockable_states()}


class EnrollmentUnlockSequencer:
    """Unlocks the first and the next task of an enrollment"""

    @staticmethod
    async def _unlock(
        session: AsyncSession,
        enrollment_id: int,
        task_id: int,
        status: Optional[str],
    ) -> None:
        # in_progress/failed rows are left as they are
        if status is not None and status not in _UNLOCKABLE:
            logger.debug(
                f"Task {task_id} of enrollment {enrollment_id} is {status}, not re-unlocking"
            )
            return

        await crud.upsert_unlocked_progress(session, enrollment_id, task_id)
        log_event("mtm_task_unlocked", enrollment_id=enrollment_id, task_id=task_id)

    @staticmethod
    async def unlock_next(
        session: AsyncSession,
        enrollment_id: int,
        current_task_id: int,
    ) -> Optional[int]:
        """
        Unlock the task following current_task_id

        Args:
            session: Database session
            enrollment_id: Enrollment ID
            current_task_id: Task that was just passed

        Returns:
            ID of the successor task, or None at the end of the sequence
        """
        position = await crud.get_progress_position(session, enrollment_id, current_task_id)
        if position is None:
            logger.warning(
                f"No progress row for enrollment {enrollment_id} task {current_task_id}, "
                f"nothing to unlock"
            )
            return None

        model_id, sort_order = position
        successor = await crud.get_successor_task(
            session, enrollment_id, model_id, sort_order, current_task_id
        )
        if successor is None:
            logger.info(f"Enrollment {enrollment_id} reached the end of model {model_id}")
            return None

        next_task_id, status = successor
        await EnrollmentUnlockSequencer._unlock(session, enrollment_id, next_task_id, status)
        return next_task_id

    @staticmethod
    async def initialize(session: AsyncSession, enrollment_id: int) -> Optional[int]:
        """
        Unlock the first active task of the enrollment's tier

        Returns:
            ID of the first task, or None when the enrollment or task is missing
        """
        enrollment = await crud.get_enrollment(session, enrollment_id)
        if enrollment is None:
            logger.warning(f"Cannot initialize tasks: enrollment {enrollment_id} not found")
            return None

        first_task = await crud.get_first_task(session, enrollment.model_id, enrollment.tier)
        if first_task is None:
            log_event(
                "resolve_task_info",
                level="WARNING",
                model_id=enrollment.model_id,
                tier=enrollment.tier,
                message="No active tasks found for model and tier",
            )
            return None

        progress = await crud.get_task_progress(session, enrollment_id, first_task.id)
        await EnrollmentUnlockSequencer._unlock(
            session,
            enrollment_id,
            first_task.id,
            progress.status if progress else None,
        )
        return first_task.id
