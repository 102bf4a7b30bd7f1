# coding: utf-8
"""
MTM Trade Service

Records journaled trades against an enrollment's task:
compliance evaluation, enforcement, and progress updates.
Also serves the trader journal listing and admin soft delete / restore.
"""

import json
import math
from dataclasses import dataclass
from datetime import date, datetime, UTC
from typing import Any, List, Mapping, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession
from loguru import logger

from config.config import MTM_ADMIN_NOTES_MAX_LENGTH
from config.logging import log_event
from config.mtm_config import (
    NON_TERMINAL_OUTCOMES,
    OPEN_OUTCOME,
    TRADE_LIST_DEFAULT_LIMIT,
    TRADE_LIST_MAX_LIMIT,
)
from config.sentry import capture_exception
from src.core.enums import (
    ComplianceStatus,
    EnforcementTier,
    EnrollmentStatus,
    ErrorCode,
    TaskProgressStatus,
)
from src.database import crud
from src.database.models import Trade
from src.services.mtm.compliance import (
    ComplianceResult,
    TradeInput,
    TradingContext,
    evaluate_trade_compliance,
)
from src.services.mtm.enforcement import (
    EnforcementDecision,
    decide_enforcement,
    get_enforcement_tier,
)
from src.services.mtm.progress_tracker import TaskProgressTracker
from src.services.mtm.rules import resolve_rules


@dataclass
class TradeResult:
    success: bool
    trade_id: Optional[int] = None
    compliance: Optional[ComplianceResult] = None
    enforcement_tier: Optional[EnforcementTier] = None
    decision: Optional[EnforcementDecision] = None
    error: Optional[ErrorCode] = None
    message: str = ""


def _fail(error: ErrorCode, message: str, **kwargs: Any) -> TradeResult:
    return TradeResult(success=False, error=error, message=message, **kwargs)


def _stored_violations(trade: Trade) -> List[str]:
    """Violations recorded on the trade at its last evaluation."""
    if not trade.compliance_notes:
        return []
    try:
        notes = json.loads(trade.compliance_notes)
    except json.JSONDecodeError:
        logger.warning(f"Unreadable compliance notes on trade {trade.id}")
        return []
    return list(notes.get("violations") or []) if isinstance(notes, dict) else []


class TradeService:
    """Service for MTM trade journaling"""

    @staticmethod
    async def submit_trade(
        session: AsyncSession,
        user_id: int,
        enrollment_id: int,
        task_id: int,
        trade: Union[TradeInput, Mapping[str, Any]],
        override_reason: Optional[str] = None,
        account_capital: Optional[float] = None,
    ) -> TradeResult:
        """
        Record a trade against an unlocked task

        Args:
            session: Database session
            user_id: Trader user ID
            enrollment_id: Enrollment the trade is attributed to
            task_id: Task the trade is attributed to
            trade: TradeInput or request-style mapping
            override_reason: Trader's justification for soft-blocked violations
            account_capital: Trader's capital, enables the min_capital check

        Returns:
            TradeResult; COMPLIANCE_BLOCKED when enforcement refuses the trade
        """
        if not isinstance(trade, TradeInput):
            try:
                trade = TradeInput.from_mapping(trade)
            except (TypeError, ValueError) as e:
                return _fail(ErrorCode.VALIDATION_ERROR, f"Invalid trade data: {e}")

        non_finite = trade.non_finite_fields()
        if non_finite:
            return _fail(
                ErrorCode.VALIDATION_ERROR,
                f"Invalid trade data: {', '.join(non_finite)} must be a finite number",
            )
        if account_capital is not None and not math.isfinite(account_capital):
            return _fail(ErrorCode.VALIDATION_ERROR, "Account capital must be a finite number")
        if trade.entry_price <= 0:
            return _fail(ErrorCode.VALIDATION_ERROR, "Entry price must be positive")
        if trade.side not in ("buy", "sell"):
            return _fail(ErrorCode.VALIDATION_ERROR, "Side must be 'buy' or 'sell'")

        try:
            enrollment = await crud.get_enrollment(session, enrollment_id)
            if enrollment is None:
                return _fail(ErrorCode.NOT_FOUND, "Enrollment not found")
            if enrollment.user_id != user_id:
                return _fail(ErrorCode.FORBIDDEN, "Enrollment belongs to another trader")
            if enrollment.status != EnrollmentStatus.APPROVED.value:
                return _fail(
                    ErrorCode.INVALID_STATE,
                    f"Enrollment is not active (status: {enrollment.status})",
                )

            progress = await crud.get_task_progress(session, enrollment_id, task_id)
            if progress is None or not TaskProgressStatus(progress.status).is_actionable():
                return _fail(ErrorCode.INVALID_STATE, "Task is not unlocked for this enrollment")

            task = await crud.get_task(session, task_id)
            model = await crud.get_model(session, enrollment.model_id)
            if task is None or model is None:
                return _fail(ErrorCode.NOT_FOUND, "Task not found")

            rules = resolve_rules(task)

            open_avg = None
            if rules.forbid_avg_down and trade.symbol:
                open_avg = await crud.get_open_position_avg_price(
                    session, user_id, trade.symbol, trade.side
                )
            context = TradingContext(
                account_capital=account_capital,
                open_position_avg_price=open_avg,
            )

            compliance = evaluate_trade_compliance(trade, rules, context)
            tier = get_enforcement_tier(model.difficulty)
            decision = decide_enforcement(tier, compliance, override_reason)

            if not decision.allowed:
                await session.rollback()
                log_event(
                    "mtm_trade_blocked",
                    user_id=user_id,
                    enrollment_id=enrollment_id,
                    task_id=task_id,
                    tier=tier.value,
                    violations=len(compliance.violations),
                )
                return _fail(
                    ErrorCode.COMPLIANCE_BLOCKED,
                    decision.message,
                    compliance=compliance,
                    enforcement_tier=tier,
                    decision=decision,
                )

            now = datetime.now(UTC)
            outcome = (trade.outcome or OPEN_OUTCOME).upper()
            is_closed = outcome not in NON_TERMINAL_OUTCOMES

            row = Trade(
                user_id=user_id,
                enrollment_id=enrollment_id,
                task_id=task_id,
                symbol=trade.symbol,
                side=trade.side,
                entry_price=trade.entry_price,
                stop_loss=trade.stop_loss,
                target_price=trade.target_price,
                position_percent=trade.position_percent,
                outcome=outcome,
                analysis_link=trade.analysis_link,
                notes=trade.notes or None,
                marketcap=trade.marketcap or None,
                compliance_status=decision.compliance_status.value,
                compliance_notes=json.dumps(compliance.to_dict()),
                override_reason=(
                    override_reason
                    if decision.compliance_status == ComplianceStatus.OVERRIDE
                    else None
                ),
                created_at=now,
                closed_at=now if is_closed else None,
            )
            session.add(row)

            progress.attempts = (progress.attempts or 0) + 1
            if progress.status == TaskProgressStatus.UNLOCKED.value:
                progress.status = TaskProgressStatus.IN_PROGRESS.value

            await session.flush()
            trade_id = row.id
            await session.commit()

            log_event(
                "mtm_trade_recorded",
                user_id=user_id,
                enrollment_id=enrollment_id,
                task_id=task_id,
                trade_id=trade_id,
                compliance=decision.compliance_status.value,
            )

            if is_closed:
                await TaskProgressTracker.apply_progress(session, enrollment_id, task_id)

            return TradeResult(
                success=True,
                trade_id=trade_id,
                compliance=compliance,
                enforcement_tier=tier,
                decision=decision,
                message=decision.message,
            )

        except Exception as e:
            await session.rollback()
            logger.error(f"Error submitting trade for user {user_id} task {task_id}: {e}")
            capture_exception(e, user_id=user_id, enrollment_id=enrollment_id, task_id=task_id)
            return _fail(ErrorCode.SERVER_ERROR, "Failed to record trade")

    @staticmethod
    async def close_trade(
        session: AsyncSession,
        trade_id: int,
        user_id: int,
        outcome: str,
    ) -> TradeResult:
        """
        Close an open trade and re-apply task progress

        Compliance is re-evaluated with the final outcome. Violations found
        at submission stay recorded and an override stays an override.
        """
        outcome = (outcome or "").strip().upper()
        if outcome in NON_TERMINAL_OUTCOMES:
            return _fail(ErrorCode.VALIDATION_ERROR, "A closing outcome is required")

        try:
            trade = await crud.get_trade(session, trade_id)
            if trade is None or trade.deleted_at is not None:
                return _fail(ErrorCode.NOT_FOUND, "Trade not found")
            if trade.user_id != user_id:
                return _fail(ErrorCode.FORBIDDEN, "Trade belongs to another trader")
            if (trade.outcome or "").strip().upper() not in NON_TERMINAL_OUTCOMES:
                return _fail(ErrorCode.INVALID_STATE, f"Trade is already closed ({trade.outcome})")

            trade.outcome = outcome
            trade.closed_at = datetime.now(UTC)

            compliance = None
            task = await crud.get_task(session, trade.task_id) if trade.task_id else None
            if task is not None:
                evaluated = evaluate_trade_compliance(
                    TradeInput.from_model(trade), resolve_rules(task)
                )
                violations = _stored_violations(trade)
                violations += [v for v in evaluated.violations if v not in violations]
                compliance = ComplianceResult(
                    compliant=not violations,
                    violations=violations,
                    warnings=evaluated.warnings,
                )
                if trade.compliance_status != ComplianceStatus.OVERRIDE.value:
                    trade.compliance_status = (
                        ComplianceStatus.FAIL.value if violations else ComplianceStatus.PASS.value
                    )
                trade.compliance_notes = json.dumps(compliance.to_dict())

            enrollment_id, task_id = trade.enrollment_id, trade.task_id
            await session.commit()

            log_event(
                "mtm_trade_closed",
                trade_id=trade_id,
                outcome=outcome,
                compliance=trade.compliance_status,
            )

            if enrollment_id and task_id:
                await TaskProgressTracker.apply_progress(session, enrollment_id, task_id)

            return TradeResult(success=True, trade_id=trade_id, compliance=compliance)

        except Exception as e:
            await session.rollback()
            logger.error(f"Error closing trade {trade_id}: {e}")
            capture_exception(e, trade_id=trade_id, user_id=user_id)
            return _fail(ErrorCode.SERVER_ERROR, "Failed to close trade")

    @staticmethod
    async def delete_trade(session: AsyncSession, trade_id: int, user_id: int) -> TradeResult:
        """Soft-delete a trade; it stops counting toward its task."""
        try:
            trade = await crud.get_trade(session, trade_id)
            if trade is None or trade.deleted_at is not None:
                return _fail(ErrorCode.NOT_FOUND, "Trade not found")
            if trade.user_id != user_id:
                return _fail(ErrorCode.FORBIDDEN, "Trade belongs to another trader")

            trade.deleted_at = datetime.now(UTC)
            trade.deleted_by = user_id
            trade.deleted_by_admin = False
            await session.commit()

            log_event("mtm_trade_deleted", trade_id=trade_id, user_id=user_id)
            return TradeResult(success=True, trade_id=trade_id)

        except Exception as e:
            await session.rollback()
            logger.error(f"Error deleting trade {trade_id}: {e}")
            capture_exception(e, trade_id=trade_id, user_id=user_id)
            return _fail(ErrorCode.SERVER_ERROR, "Failed to delete trade")

    @staticmethod
    async def admin_delete_trade(
        session: AsyncSession,
        trade_id: int,
        admin_id: int,
        reason: str,
    ) -> TradeResult:
        """
        Soft-delete any trader's trade from the admin panel

        A task already passed stays passed; the trade only stops counting
        toward future evaluations.
        """
        reason = (reason or "").strip()
        if not reason:
            return _fail(ErrorCode.VALIDATION_ERROR, "Reason required for soft delete")
        if len(reason) > MTM_ADMIN_NOTES_MAX_LENGTH:
            return _fail(
                ErrorCode.VALIDATION_ERROR,
                f"Reason must be at most {MTM_ADMIN_NOTES_MAX_LENGTH} characters",
            )

        try:
            trade = await crud.get_trade(session, trade_id)
            if trade is None:
                return _fail(ErrorCode.NOT_FOUND, "Trade not found")
            if trade.deleted_at is not None:
                return _fail(ErrorCode.INVALID_STATE, "Trade is already deleted")

            trade.deleted_at = datetime.now(UTC)
            trade.deleted_by = admin_id
            trade.deleted_by_admin = True
            trade.deleted_reason = reason
            await session.commit()

            log_event("mtm_trade_deleted", trade_id=trade_id, admin_id=admin_id, by_admin=True)
            return TradeResult(success=True, trade_id=trade_id, message="Trade soft-deleted")

        except Exception as e:
            await session.rollback()
            logger.error(f"Error deleting trade {trade_id} as admin {admin_id}: {e}")
            capture_exception(e, trade_id=trade_id, admin_id=admin_id)
            return _fail(ErrorCode.SERVER_ERROR, "Failed to delete trade")

    @staticmethod
    async def restore_trade(session: AsyncSession, trade_id: int, admin_id: int) -> TradeResult:
        """
        Undo a soft delete and re-apply progress of the trade's task

        Args:
            session: Database session
            trade_id: Trade ID
            admin_id: Restoring admin user ID

        Returns:
            TradeResult
        """
        try:
            trade = await crud.get_trade(session, trade_id)
            if trade is None:
                return _fail(ErrorCode.NOT_FOUND, "Trade not found")
            if trade.deleted_at is None:
                return _fail(ErrorCode.INVALID_STATE, "Trade is not deleted")

            trade.deleted_at = None
            trade.deleted_by = None
            trade.deleted_by_admin = False
            trade.deleted_reason = None
            enrollment_id, task_id = trade.enrollment_id, trade.task_id
            await session.commit()

            log_event("mtm_trade_restored", trade_id=trade_id, admin_id=admin_id)

            if enrollment_id and task_id:
                await TaskProgressTracker.apply_progress(session, enrollment_id, task_id)

            return TradeResult(success=True, trade_id=trade_id, message="Trade restored")

        except Exception as e:
            await session.rollback()
            logger.error(f"Error restoring trade {trade_id}: {e}")
            capture_exception(e, trade_id=trade_id, admin_id=admin_id)
            return _fail(ErrorCode.SERVER_ERROR, "Failed to restore trade")

    @staticmethod
    async def get_user_trades(
        session: AsyncSession,
        user_id: int,
        symbol: Optional[str] = None,
        date_from: Optional[date] = None,
        date_to: Optional[date] = None,
        limit: int = TRADE_LIST_DEFAULT_LIMIT,
        offset: int = 0,
    ) -> List[Trade]:
        """
        Get a trader's journal, newest first

        Soft-deleted trades are left out. limit is clamped to
        [1, TRADE_LIST_MAX_LIMIT].
        """
        limit = min(TRADE_LIST_MAX_LIMIT, max(1, limit))
        return await crud.get_user_trades(
            session,
            user_id,
            symbol=(symbol or "").strip() or None,
            date_from=date_from,
            date_to=date_to,
            limit=limit,
            offset=max(0, offset),
        )

    @staticmethod
    async def override_compliance(
        session: AsyncSession,
        trade_id: int,
        admin_id: int,
        reason: str,
    ) -> TradeResult:
        """
        Accept a non-compliant trade so it counts toward its task

        Args:
            session: Database session
            trade_id: Trade ID
            admin_id: Admin user ID
            reason: Override justification (required)

        Returns:
            TradeResult
        """
        reason = (reason or "").strip()
        if not reason:
            return _fail(ErrorCode.VALIDATION_ERROR, "Override reason is required")
        if len(reason) > MTM_ADMIN_NOTES_MAX_LENGTH:
            return _fail(
                ErrorCode.VALIDATION_ERROR,
                f"Override reason must be at most {MTM_ADMIN_NOTES_MAX_LENGTH} characters",
            )

        try:
            trade = await crud.get_trade(session, trade_id)
            if trade is None or trade.deleted_at is not None:
                return _fail(ErrorCode.NOT_FOUND, "Trade not found")
            if trade.compliance_status == ComplianceStatus.OVERRIDE.value:
                return _fail(ErrorCode.ALREADY_EXISTS, "Trade compliance is already overridden")

            trade.compliance_status = ComplianceStatus.OVERRIDE.value
            trade.override_reason = reason
            trade.overridden_by = admin_id
            enrollment_id, task_id = trade.enrollment_id, trade.task_id
            await session.commit()

            log_event("mtm_trade_overridden", trade_id=trade_id, admin_id=admin_id)

            if enrollment_id and task_id:
                await TaskProgressTracker.apply_progress(session, enrollment_id, task_id)

            return TradeResult(success=True, trade_id=trade_id)

        except Exception as e:
            await session.rollback()
            logger.error(f"Error overriding compliance of trade {trade_id}: {e}")
            capture_exception(e, trade_id=trade_id, admin_id=admin_id)
            return _fail(ErrorCode.SERVER_ERROR, "Failed to override compliance")
