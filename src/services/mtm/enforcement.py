# coding: utf-8
"""
MTM Enforcement Policy

Maps a model's difficulty to how hard a rule violation blocks a trade.
"""

from dataclasses import dataclass
from typing import Optional

from config.mtm_config import DIFFICULTY_ENFORCEMENT, DEFAULT_ENFORCEMENT_TIER
from src.core.enums import ComplianceStatus, EnforcementTier
from src.services.mtm.compliance import ComplianceResult


def get_enforcement_tier(difficulty: Optional[str]) -> EnforcementTier:
    """
    Get enforcement tier for a model difficulty

    Unknown or missing difficulty falls back to hard_block.
    """
    if not difficulty:
        return DEFAULT_ENFORCEMENT_TIER
    return DIFFICULTY_ENFORCEMENT.get(difficulty.strip().lower(), DEFAULT_ENFORCEMENT_TIER)


@dataclass(frozen=True)
class EnforcementDecision:
    """What to do with a trade after compliance evaluation"""

    allowed: bool
    compliance_status: ComplianceStatus
    requires_override: bool = False
    message: str = ""


def decide_enforcement(
    tier: EnforcementTier,
    compliance: ComplianceResult,
    override_reason: Optional[str] = None,
) -> EnforcementDecision:
    """
    Decide whether a trade may be saved and with which compliance status

    Args:
        tier: Enforcement tier of the trade's model
        compliance: Compliance result of the trade
        override_reason: Trader's justification (honoured on soft_block only)

    Returns:
        EnforcementDecision
    """
    if compliance.compliant:
        return EnforcementDecision(allowed=True, compliance_status=ComplianceStatus.PASS)

    summary = "; ".join(compliance.violations)

    if tier == EnforcementTier.NUDGE:
        return EnforcementDecision(
            allowed=True,
            compliance_status=ComplianceStatus.FAIL,
            message=f"Trade saved with rule violations: {summary}",
        )

    if tier == EnforcementTier.SOFT_BLOCK:
        if override_reason and override_reason.strip():
            return EnforcementDecision(
                allowed=True,
                compliance_status=ComplianceStatus.OVERRIDE,
                message=f"Rule violations overridden: {summary}",
            )
        return EnforcementDecision(
            allowed=False,
            compliance_status=ComplianceStatus.FAIL,
            requires_override=True,
            message=f"Trade blocked, override reason required: {summary}",
        )

    return EnforcementDecision(
        allowed=False,
        compliance_status=ComplianceStatus.FAIL,
        message=f"Trade blocked: {summary}",
    )
