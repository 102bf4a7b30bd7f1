# coding: utf-8
"""
MTM Rule Engine Configuration

Centralized tables for task rule defaults, enforcement tiers and trade outcomes.
"""

from typing import Dict, FrozenSet

from src.core.enums import EnforcementTier, EnrollmentStatus, ModelTier


# =======================
# ENFORCEMENT
# =======================

# Model difficulty -> enforcement strength (lookup is case-insensitive)
DIFFICULTY_ENFORCEMENT: Dict[str, EnforcementTier] = {
    "easy": EnforcementTier.NUDGE,
    "basic": EnforcementTier.NUDGE,
    "moderate": EnforcementTier.SOFT_BLOCK,
    "intermediate": EnforcementTier.SOFT_BLOCK,
    "hard": EnforcementTier.HARD_BLOCK,
    "advanced": EnforcementTier.HARD_BLOCK,
}

# Unknown difficulties fall back to the strictest tier
DEFAULT_ENFORCEMENT_TIER: EnforcementTier = EnforcementTier.HARD_BLOCK


# =======================
# TIERS
# =======================

VALID_TIERS: FrozenSet[str] = frozenset(tier.value for tier in ModelTier)


# =======================
# TRADE OUTCOMES
# =======================

# Outcome of a position that is still running
OPEN_OUTCOME: str = "OPEN"

# Outcomes that never count as a closed trade
NON_TERMINAL_OUTCOMES: FrozenSet[str] = frozenset({OPEN_OUTCOME, ""})


# =======================
# RULE DEFAULTS
# =======================

# Defaults for structured task columns (None = no limit)
STRUCTURED_RULE_DEFAULTS: Dict[str, object] = {
    "min_trades": 0,
    "time_window_days": 0,
    "require_sl": False,
    "max_risk_pct": None,
    "max_position_pct": None,
    "min_rr": None,
    "require_analysis_link": False,
    "weekly_min_trades": 0,
    "weeks_consistency": 0,
}

# Max length of raw rule_json echoed into logs on parse errors
RULE_JSON_LOG_PREVIEW: int = 200


# =======================
# LISTINGS
# =======================

# Trader trade journal: offset pagination
TRADE_LIST_DEFAULT_LIMIT: int = 50
TRADE_LIST_MAX_LIMIT: int = 100

# Admin enrollment list: page pagination, limit clamped to [min, max]
ENROLLMENT_LIST_DEFAULT_LIMIT: int = 20
ENROLLMENT_LIST_MIN_LIMIT: int = 10
ENROLLMENT_LIST_MAX_LIMIT: int = 100

# Admin enrollment list order: pending first, completed last
ENROLLMENT_STATUS_ORDER: Dict[str, int] = {
    EnrollmentStatus.PENDING.value: 1,
    EnrollmentStatus.APPROVED.value: 2,
    EnrollmentStatus.REJECTED.value: 3,
    EnrollmentStatus.DROPPED.value: 4,
    EnrollmentStatus.COMPLETED.value: 5,
}
