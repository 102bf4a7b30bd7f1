"""
Core module - base types and enums for the whole stack.
"""

from src.core.enums import (
    ModelTier,
    EnrollmentStatus,
    TaskProgressStatus,
    ComplianceStatus,
    EnforcementTier,
    OverrideSource,
    ErrorCode,
)

__all__ = [
    "ModelTier",
    "EnrollmentStatus",
    "TaskProgressStatus",
    "ComplianceStatus",
    "EnforcementTier",
    "OverrideSource",
    "ErrorCode",
]
