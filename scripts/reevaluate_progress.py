"""
Re-apply task progress for approved enrollments

Walks every actionable (unlocked/in_progress) task of each enrollment and
re-runs progress evaluation. Use after fixing trade data or task rules.
Safe to run multiple times - passing and unlocking are idempotent.

Usage:
    python scripts/reevaluate_progress.py              # all approved enrollments
    python scripts/reevaluate_progress.py 12 15        # only these enrollment IDs
"""
import asyncio
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sqlalchemy import select
from loguru import logger

from config.logging import setup_logging
from config.sentry import init_sentry
from src.core.enums import EnrollmentStatus
from src.database import crud
from src.database.engine import get_session_maker, dispose_engine
from src.database.models import MTMEnrollment
from src.services.mtm.progress_tracker import TaskProgressTracker


async def reevaluate_progress(enrollment_ids=None):
    """Re-apply progress for the given (or all approved) enrollments"""

    logger.info("🔍 Collecting enrollments to re-evaluate...")

    session_maker = get_session_maker()
    async with session_maker() as session:
        if enrollment_ids:
            ids = list(enrollment_ids)
        else:
            stmt = select(MTMEnrollment.id).where(
                MTMEnrollment.status == EnrollmentStatus.APPROVED.value
            )
            result = await session.execute(stmt)
            ids = list(result.scalars().all())

        logger.info(f"Found {len(ids)} enrollments")

        applied = 0
        failed = 0
        for enrollment_id in ids:
            # Passing a task can unlock the next one, so walk until nothing new is actionable
            seen = set()
            while True:
                task_ids = [
                    t for t in await crud.get_actionable_task_ids(session, enrollment_id)
                    if t not in seen
                ]
                if not task_ids:
                    break
                for task_id in task_ids:
                    seen.add(task_id)
                    if await TaskProgressTracker.apply_progress(session, enrollment_id, task_id):
                        applied += 1
                    else:
                        failed += 1

        logger.info(f"✅ Done: {applied} tasks re-applied, {failed} failed")


async def main():
    setup_logging()
    init_sentry()
    ids = [int(arg) for arg in sys.argv[1:]]
    try:
        await reevaluate_progress(ids)
    except Exception as e:
        logger.error(f"Script failed: {e}")
        raise
    finally:
        await dispose_engine()


if __name__ == "__main__":
    asyncio.run(main())
