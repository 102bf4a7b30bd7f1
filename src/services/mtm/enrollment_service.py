# coding: utf-8
"""
MTM Enrollment Service

Enrolls traders into models and runs the admin approval workflow.

Features:
- Self-service enrollment with first task unlocked in the same transaction
- Duplicate protection: pre-check plus UNIQUE(user_id, model_id)
- Admin approve / reject / drop with state validation
- Admin enrollment list with per-enrollment task progress counts
"""

import math
from dataclasses import dataclass
from datetime import datetime, UTC
from typing import List, Optional, Tuple

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.config import MTM_ADMIN_NOTES_MAX_LENGTH, MTM_ALLOW_FORCE_APPROVE, MTM_DEFAULT_TIER
from config.logging import log_event
from config.mtm_config import (
    ENROLLMENT_LIST_DEFAULT_LIMIT,
    ENROLLMENT_LIST_MAX_LIMIT,
    ENROLLMENT_LIST_MIN_LIMIT,
    VALID_TIERS,
)
from config.sentry import capture_exception
from src.core.enums import EnrollmentStatus, ErrorCode
from src.database import crud
from src.database.models import MTMEnrollment, MTMModel, MTMTask, MTMTaskProgress
from src.services.mtm.unlock_sequencer import EnrollmentUnlockSequencer


@dataclass
class EnrollmentResult:
    success: bool
    enrollment_id: Optional[int] = None
    unlocked_task_id: Optional[int] = None
    error: Optional[ErrorCode] = None
    message: str = ""


@dataclass
class EnrollmentActionResult:
    success: bool
    enrollment_id: Optional[int] = None
    status: Optional[str] = None
    error: Optional[ErrorCode] = None
    message: str = ""


@dataclass
class EnrollmentOverview:
    """One row of the admin enrollment list"""

    enrollment: MTMEnrollment
    model: MTMModel
    total: int = 0
    passed: int = 0
    failed: int = 0
    unlocked: int = 0
    in_progress: int = 0

    @property
    def completed(self) -> int:
        """Tasks with a final verdict (passed or failed)"""
        return self.passed + self.failed


@dataclass
class EnrollmentPage:
    items: List[EnrollmentOverview]
    page: int
    limit: int
    total: int

    @property
    def pages(self) -> int:
        return math.ceil(self.total / self.limit) if self.limit else 0


def _fail(enrollment_id: Optional[int], error: ErrorCode, message: str) -> EnrollmentActionResult:
    return EnrollmentActionResult(
        success=False, enrollment_id=enrollment_id, error=error, message=message
    )


async def _abort(
    session: AsyncSession, enrollment_id: Optional[int], error: ErrorCode, message: str
) -> EnrollmentActionResult:
    """Roll back (releasing row locks) and return a failed result."""
    await session.rollback()
    return _fail(enrollment_id, error, message)


def _normalize_tier(tier: Optional[str]) -> str:
    return (tier or MTM_DEFAULT_TIER).strip().lower()


class EnrollmentService:
    """Service for MTM enrollments"""

    @staticmethod
    async def _create(
        session: AsyncSession,
        trader_id: int,
        model_id: int,
        tier: Optional[str],
        status: EnrollmentStatus,
    ) -> EnrollmentResult:
        """Insert an enrollment with the given status; shared by enroll/request."""
        tier = _normalize_tier(tier)
        log_event(
            "mtm_enroll_attempt",
            trader_id=trader_id,
            model_id=model_id,
            tier=tier,
            status=status.value,
        )

        if tier not in VALID_TIERS:
            return EnrollmentResult(
                success=False,
                error=ErrorCode.VALIDATION_ERROR,
                message=f"Invalid tier '{tier}'. Must be one of: {', '.join(sorted(VALID_TIERS))}",
            )

        try:
            model = await crud.get_model(session, model_id)
            if model is None:
                await session.rollback()
                log_event(
                    "mtm_enroll_error",
                    level="ERROR",
                    trader_id=trader_id,
                    model_id=model_id,
                    error="model_not_found",
                )
                return EnrollmentResult(
                    success=False, error=ErrorCode.SERVER_ERROR, message="Model not found"
                )

            existing = await crud.get_enrollment_by_user_model(session, trader_id, model_id)
            if existing is not None:
                existing_id, existing_status = existing.id, existing.status
                await session.rollback()
                log_event(
                    "mtm_enroll_conflict",
                    level="WARNING",
                    trader_id=trader_id,
                    model_id=model_id,
                    reason="duplicate_enrollment",
                    existing_status=existing_status,
                )
                return EnrollmentResult(
                    success=False,
                    enrollment_id=existing_id,
                    error=ErrorCode.ALREADY_ENROLLED,
                    message=f"Already enrolled in this model (status: {existing_status})",
                )

            now = datetime.now(UTC)
            enrollment = MTMEnrollment(
                user_id=trader_id,
                model_id=model_id,
                tier=tier,
                status=status.value,
                requested_at=now,
                approved_at=now if status == EnrollmentStatus.APPROVED else None,
            )
            session.add(enrollment)

            try:
                await session.flush()
            except IntegrityError:
                # Lost a race against a concurrent enrollment
                await session.rollback()
                log_event(
                    "mtm_enroll_conflict",
                    level="WARNING",
                    trader_id=trader_id,
                    model_id=model_id,
                    reason="unique_constraint",
                )
                return EnrollmentResult(
                    success=False,
                    error=ErrorCode.ALREADY_ENROLLED,
                    message="Already enrolled in this model",
                )

            unlocked_task_id = None
            if status == EnrollmentStatus.APPROVED:
                unlocked_task_id = await EnrollmentUnlockSequencer.initialize(
                    session, enrollment.id
                )

            await session.commit()

            log_event(
                "mtm_enroll_success",
                trader_id=trader_id,
                model_id=model_id,
                enrollment_id=enrollment.id,
                status=status.value,
                unlocked_task_id=unlocked_task_id,
            )
            return EnrollmentResult(
                success=True,
                enrollment_id=enrollment.id,
                unlocked_task_id=unlocked_task_id,
            )

        except Exception as e:
            await session.rollback()
            log_event(
                "mtm_enroll_error",
                level="ERROR",
                trader_id=trader_id,
                model_id=model_id,
                error=str(e),
            )
            capture_exception(e, trader_id=trader_id, model_id=model_id)
            return EnrollmentResult(
                success=False, error=ErrorCode.SERVER_ERROR, message="Enrollment failed"
            )

    @staticmethod
    async def enroll(
        session: AsyncSession,
        trader_id: int,
        model_id: int,
        tier: Optional[str] = None,
    ) -> EnrollmentResult:
        """
        Enroll a trader and unlock the first task of their tier

        Args:
            session: Database session
            trader_id: Trader user ID
            model_id: Model ID
            tier: basic/intermediate/advanced (defaults to MTM_DEFAULT_TIER)

        Returns:
            EnrollmentResult; error is ALREADY_ENROLLED for any existing
            enrollment of the trader in the model
        """
        return await EnrollmentService._create(
            session, trader_id, model_id, tier, EnrollmentStatus.APPROVED
        )

    @staticmethod
    async def request_enrollment(
        session: AsyncSession,
        trader_id: int,
        model_id: int,
        tier: Optional[str] = None,
    ) -> EnrollmentResult:
        """
        Request enrollment; an admin must approve before tasks unlock

        Returns:
            EnrollmentResult with unlocked_task_id None
        """
        return await EnrollmentService._create(
            session, trader_id, model_id, tier, EnrollmentStatus.PENDING
        )

    @staticmethod
    async def approve(
        session: AsyncSession,
        enrollment_id: int,
        admin_id: int,
        admin_notes: Optional[str] = None,
        force: bool = False,
    ) -> EnrollmentActionResult:
        """
        Approve a pending enrollment (or a rejected one with force)

        Validates model availability and its date window, then unlocks the
        first task of the enrollment's tier. An already approved enrollment
        is refused; UNIQUE(user_id, model_id) rules out a second one.

        Args:
            session: Database session
            enrollment_id: Enrollment ID
            admin_id: Approving admin user ID
            admin_notes: Optional notes (max MTM_ADMIN_NOTES_MAX_LENGTH chars)
            force: Allow approving a rejected enrollment

        Returns:
            EnrollmentActionResult
        """
        if admin_notes and len(admin_notes) > MTM_ADMIN_NOTES_MAX_LENGTH:
            return _fail(
                enrollment_id,
                ErrorCode.VALIDATION_ERROR,
                f"Admin notes must be at most {MTM_ADMIN_NOTES_MAX_LENGTH} characters",
            )

        try:
            enrollment = await crud.get_enrollment(session, enrollment_id, for_update=True)
            if enrollment is None:
                return await _abort(session, enrollment_id, ErrorCode.NOT_FOUND, "Enrollment not found")

            status = enrollment.status
            if status == EnrollmentStatus.APPROVED.value:
                return await _abort(session, enrollment_id, ErrorCode.ALREADY_EXISTS, "Enrollment is already approved")

            if status == EnrollmentStatus.REJECTED.value:
                if not force:
                    return await _abort(
                        session,
                        enrollment_id,
                        ErrorCode.INVALID_STATE,
                        "Enrollment was rejected; use force to approve it",
                    )
                if not MTM_ALLOW_FORCE_APPROVE:
                    return await _abort(
                        session,
                        enrollment_id,
                        ErrorCode.INVALID_STATE,
                        "Force approval is disabled",
                    )
            elif status != EnrollmentStatus.PENDING.value:
                return await _abort(
                    session,
                    enrollment_id,
                    ErrorCode.INVALID_STATE,
                    f"Cannot approve enrollment with status '{status}'",
                )

            model = await crud.get_model(session, enrollment.model_id)
            if model is None:
                return await _abort(session, enrollment_id, ErrorCode.NOT_FOUND, "Model not found")
            if not model.is_active:
                return await _abort(session, enrollment_id, ErrorCode.VALIDATION_ERROR, "Model is not active")

            today = datetime.now(UTC).date()
            if model.start_date and today < model.start_date:
                return await _abort(
                    session,
                    enrollment_id,
                    ErrorCode.VALIDATION_ERROR,
                    f"Model opens on {model.start_date.isoformat()}",
                )
            if model.end_date and today > model.end_date:
                return await _abort(
                    session,
                    enrollment_id,
                    ErrorCode.VALIDATION_ERROR,
                    f"Model closed on {model.end_date.isoformat()}",
                )

            enrollment.status = EnrollmentStatus.APPROVED.value
            enrollment.approved_at = datetime.now(UTC)
            enrollment.approved_by = admin_id
            if admin_notes:
                enrollment.admin_notes = admin_notes
            await session.flush()

            unlocked_task_id = await EnrollmentUnlockSequencer.initialize(session, enrollment.id)
            await session.commit()

            log_event(
                "mtm_enrollment_approved",
                enrollment_id=enrollment.id,
                admin_id=admin_id,
                forced=status == EnrollmentStatus.REJECTED.value,
                unlocked_task_id=unlocked_task_id,
            )
            return EnrollmentActionResult(
                success=True,
                enrollment_id=enrollment.id,
                status=enrollment.status,
                message="Enrollment approved",
            )

        except Exception as e:
            await session.rollback()
            logger.error(f"Error approving enrollment {enrollment_id}: {e}")
            capture_exception(e, enrollment_id=enrollment_id, admin_id=admin_id)
            return _fail(enrollment_id, ErrorCode.SERVER_ERROR, "Failed to approve enrollment")

    @staticmethod
    async def reject(
        session: AsyncSession,
        enrollment_id: int,
        admin_id: int,
        reason: Optional[str] = None,
    ) -> EnrollmentActionResult:
        """
        Reject a pending enrollment

        Approved enrollments cannot be rejected, only dropped.
        """
        reason = (reason or "").strip()
        if len(reason) > MTM_ADMIN_NOTES_MAX_LENGTH:
            return _fail(
                enrollment_id,
                ErrorCode.VALIDATION_ERROR,
                f"Reason must be at most {MTM_ADMIN_NOTES_MAX_LENGTH} characters",
            )

        try:
            enrollment = await crud.get_enrollment(session, enrollment_id, for_update=True)
            if enrollment is None:
                return await _abort(session, enrollment_id, ErrorCode.NOT_FOUND, "Enrollment not found")

            status = enrollment.status
            if status == EnrollmentStatus.REJECTED.value:
                return await _abort(session, enrollment_id, ErrorCode.ALREADY_EXISTS, "Enrollment is already rejected")
            if status == EnrollmentStatus.APPROVED.value:
                return await _abort(
                    session,
                    enrollment_id,
                    ErrorCode.INVALID_STATE,
                    "Approved enrollments cannot be rejected; drop them instead",
                )
            if status != EnrollmentStatus.PENDING.value:
                return await _abort(
                    session,
                    enrollment_id,
                    ErrorCode.INVALID_STATE,
                    f"Cannot reject enrollment with status '{status}'",
                )
            if not reason:
                return await _abort(
                    session,
                    enrollment_id,
                    ErrorCode.VALIDATION_ERROR,
                    "Rejection reason is required",
                )

            enrollment.status = EnrollmentStatus.REJECTED.value
            enrollment.rejected_at = datetime.now(UTC)
            enrollment.rejection_reason = reason
            await session.commit()

            log_event("mtm_enrollment_rejected", enrollment_id=enrollment.id, admin_id=admin_id)
            return EnrollmentActionResult(
                success=True,
                enrollment_id=enrollment.id,
                status=enrollment.status,
                message="Enrollment rejected",
            )

        except Exception as e:
            await session.rollback()
            logger.error(f"Error rejecting enrollment {enrollment_id}: {e}")
            capture_exception(e, enrollment_id=enrollment_id, admin_id=admin_id)
            return _fail(enrollment_id, ErrorCode.SERVER_ERROR, "Failed to reject enrollment")

    @staticmethod
    async def drop(
        session: AsyncSession,
        enrollment_id: int,
        admin_id: int,
        reason: Optional[str] = None,
    ) -> EnrollmentActionResult:
        """Drop an approved enrollment; its progress rows are kept."""
        reason = (reason or "").strip()
        if len(reason) > MTM_ADMIN_NOTES_MAX_LENGTH:
            return _fail(
                enrollment_id,
                ErrorCode.VALIDATION_ERROR,
                f"Reason must be at most {MTM_ADMIN_NOTES_MAX_LENGTH} characters",
            )

        try:
            enrollment = await crud.get_enrollment(session, enrollment_id, for_update=True)
            if enrollment is None:
                return await _abort(session, enrollment_id, ErrorCode.NOT_FOUND, "Enrollment not found")

            if enrollment.status != EnrollmentStatus.APPROVED.value:
                return await _abort(
                    session,
                    enrollment_id,
                    ErrorCode.INVALID_STATE,
                    f"Only approved enrollments can be dropped (current: '{enrollment.status}')",
                )

            enrollment.status = EnrollmentStatus.DROPPED.value
            enrollment.dropped_at = datetime.now(UTC)
            if reason:
                enrollment.admin_notes = reason
            await session.commit()

            log_event("mtm_enrollment_dropped", enrollment_id=enrollment.id, admin_id=admin_id)
            return EnrollmentActionResult(
                success=True,
                enrollment_id=enrollment.id,
                status=enrollment.status,
                message="Enrollment dropped",
            )

        except Exception as e:
            await session.rollback()
            logger.error(f"Error dropping enrollment {enrollment_id}: {e}")
            capture_exception(e, enrollment_id=enrollment_id, admin_id=admin_id)
            return _fail(enrollment_id, ErrorCode.SERVER_ERROR, "Failed to drop enrollment")

    @staticmethod
    async def get_user_enrollments(
        session: AsyncSession, trader_id: int
    ) -> List[Tuple[MTMEnrollment, MTMModel]]:
        """Get all enrollments of a trader with their models, newest first"""
        return await crud.get_user_enrollments(session, trader_id)

    @staticmethod
    async def get_active_enrollment(
        session: AsyncSession, trader_id: int
    ) -> Optional[Tuple[MTMEnrollment, MTMModel]]:
        """Get the trader's most recently approved enrollment"""
        return await crud.get_latest_approved_enrollment(session, trader_id)

    @staticmethod
    async def get_current_task(
        session: AsyncSession, enrollment_id: int
    ) -> Optional[Tuple[MTMTask, MTMTaskProgress]]:
        """Get the lowest unlocked or in-progress task of an enrollment"""
        return await crud.get_current_task(session, enrollment_id)

    @staticmethod
    async def list_enrollments(
        session: AsyncSession,
        status: Optional[str] = None,
        model_id: Optional[int] = None,
        page: int = 1,
        limit: int = ENROLLMENT_LIST_DEFAULT_LIMIT,
    ) -> EnrollmentPage:
        """
        Admin listing of enrollments with task progress counts

        Args:
            session: Database session
            status: Only this status (empty = all)
            model_id: Only this model (0/None = all)
            page: 1-based page number
            limit: Page size, clamped to the configured range

        Returns:
            EnrollmentPage
        """
        page = max(1, page)
        limit = min(ENROLLMENT_LIST_MAX_LIMIT, max(ENROLLMENT_LIST_MIN_LIMIT, limit))
        status = (status or "").strip().lower() or None

        rows, total = await crud.list_enrollments(
            session,
            status=status,
            model_id=model_id,
            limit=limit,
            offset=(page - 1) * limit,
        )
        items = [
            EnrollmentOverview(enrollment=enrollment, model=model, **counts)
            for enrollment, model, counts in rows
        ]
        logger.debug(
            f"Enrollment list: status={status} model={model_id} page={page} "
            f"-> {len(items)}/{total}"
        )
        return EnrollmentPage(items=items, page=page, limit=limit, total=total)
