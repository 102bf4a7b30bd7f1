"""
MTM Rule Engine

Rule resolution, trade compliance, enforcement tiers, task progress
and enrollment sequencing for Mark-to-Market (MTM) curricula.

NOTE: The database-backed services are imported directly from their modules:
    from src.services.mtm.enrollment_service import EnrollmentService
    from src.services.mtm.trade_service import TradeService
"""
from src.services.mtm.rules import (
    RuleSet,
    RuleResolution,
    resolve_rules,
    resolve_rules_detailed,
)
from src.services.mtm.compliance import (
    TradeInput,
    TradingContext,
    ComplianceResult,
    evaluate_trade_compliance,
)
from src.services.mtm.enforcement import (
    EnforcementDecision,
    get_enforcement_tier,
    decide_enforcement,
)

__all__ = [
    # Rules
    "RuleSet",
    "RuleResolution",
    "resolve_rules",
    "resolve_rules_detailed",
    # Compliance
    "TradeInput",
    "TradingContext",
    "ComplianceResult",
    "evaluate_trade_compliance",
    # Enforcement
    "EnforcementDecision",
    "get_enforcement_tier",
    "decide_enforcement",
]
