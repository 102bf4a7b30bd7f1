# coding: utf-8
"""
MTM Task Progress Tracker

Decides whether an enrollment has met a task's completion requirement
and persists the result, unlocking the next task on pass.
"""

from dataclasses import dataclass
from datetime import datetime, UTC

from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.logging import log_event
from config.sentry import capture_exception
from src.core.enums import EnrollmentStatus, TaskProgressStatus
from src.database import crud
from src.services.mtm.rules import resolve_rules
from src.services.mtm.unlock_sequencer import EnrollmentUnlockSequencer


@dataclass(frozen=True)
class TaskEvaluation:
    should_pass: bool
    reason: str
    trade_count: int = 0


class TaskProgressTracker:
    """Evaluates and applies task completion"""

    @staticmethod
    async def evaluate(
        session: AsyncSession,
        enrollment_id: int,
        task_id: int,
    ) -> TaskEvaluation:
        """
        Evaluate whether a task should be marked passed

        Counts closed trades of (enrollment, task) with compliance pass or
        override that are not soft-deleted.

        Args:
            session: Database session
            enrollment_id: Enrollment ID
            task_id: Task ID

        Returns:
            TaskEvaluation
        """
        task = await crud.get_task(session, task_id)
        if task is None:
            return TaskEvaluation(should_pass=False, reason="Task not found")

        rules = resolve_rules(task)
        if rules.min_trades <= 0:
            return TaskEvaluation(should_pass=True, reason="No minimum trade requirement")

        count = await crud.count_qualifying_trades(session, enrollment_id, task_id)
        if count >= rules.min_trades:
            return TaskEvaluation(
                should_pass=True,
                reason=f"Met minimum trades ({count}/{rules.min_trades})",
                trade_count=count,
            )

        return TaskEvaluation(
            should_pass=False,
            reason=f"Insufficient trades ({count}/{rules.min_trades})",
            trade_count=count,
        )

    @staticmethod
    async def _complete_if_finished(session: AsyncSession, enrollment_id: int) -> bool:
        """Mark an approved enrollment completed once every task of its sequence is passed."""
        enrollment = await crud.get_enrollment(session, enrollment_id)
        if enrollment is None or enrollment.status != EnrollmentStatus.APPROVED.value:
            return False

        first_task = await crud.get_first_task(session, enrollment.model_id, enrollment.tier)
        if first_task is None:
            return False

        task_ids = await crud.get_active_task_ids(session, enrollment.model_id, start=first_task)
        passed = await crud.count_passed_tasks(session, enrollment_id, task_ids)
        if passed < len(task_ids):
            return False

        enrollment.status = EnrollmentStatus.COMPLETED.value
        enrollment.completed_at = datetime.now(UTC)
        log_event(
            "mtm_enrollment_completed",
            enrollment_id=enrollment_id,
            model_id=enrollment.model_id,
        )
        return True

    @staticmethod
    async def apply_progress(
        session: AsyncSession,
        enrollment_id: int,
        task_id: int,
    ) -> bool:
        """
        Re-evaluate a task and persist the outcome

        On pass the progress row is marked passed and the next task unlocked;
        otherwise only last_evaluated_at is refreshed. Commits.

        Returns:
            True if the result was written, False if the progress row is
            missing or the write failed
        """
        try:
            evaluation = await TaskProgressTracker.evaluate(session, enrollment_id, task_id)

            progress = await crud.get_task_progress(session, enrollment_id, task_id)
            if progress is None:
                logger.warning(
                    f"No progress row for enrollment {enrollment_id} task {task_id}: "
                    f"{evaluation.reason}"
                )
                return False

            now = datetime.now(UTC)
            progress.last_evaluated_at = now

            if evaluation.should_pass:
                if progress.status != TaskProgressStatus.PASSED.value:
                    progress.status = TaskProgressStatus.PASSED.value
                    progress.passed_at = now
                    log_event(
                        "mtm_task_passed",
                        enrollment_id=enrollment_id,
                        task_id=task_id,
                        reason=evaluation.reason,
                    )

                await session.flush()
                next_task_id = await EnrollmentUnlockSequencer.unlock_next(
                    session, enrollment_id, task_id
                )
                if next_task_id is None:
                    await TaskProgressTracker._complete_if_finished(session, enrollment_id)

            await session.commit()
            logger.debug(
                f"Progress applied: enrollment={enrollment_id} task={task_id} "
                f"pass={evaluation.should_pass} ({evaluation.reason})"
            )
            return True

        except Exception as e:
            await session.rollback()
            logger.error(
                f"Error applying progress for enrollment {enrollment_id} task {task_id}: {e}"
            )
            capture_exception(e, enrollment_id=enrollment_id, task_id=task_id)
            return False
