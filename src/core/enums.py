"""
Core Enums - shared types for the MTM rule engine.

Defines:
- ModelTier: curriculum tiers a trader enrolls at
- EnrollmentStatus: canonical enrollment lifecycle
- TaskProgressStatus: per-(enrollment, task) state machine
- ComplianceStatus: verdict stored on a trade
- EnforcementTier: how hard a violation blocks a trade
- OverrideSource: where a resolved rule set came from
- ErrorCode: failure codes of service results
"""

from enum import Enum


class ModelTier(str, Enum):
    """Curriculum tier"""

    BASIC = "basic"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"


class EnrollmentStatus(str, Enum):
    """Enrollment lifecycle.

    Lifecycle:
    - PENDING: trader requested, awaiting admin
    - APPROVED: active participation, tasks are unlocked
    - REJECTED: admin declined (may be force-approved later)
    - DROPPED: admin removed an approved trader
    - COMPLETED: every task of its tier sequence passed
    """

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    DROPPED = "dropped"
    COMPLETED = "completed"


class TaskProgressStatus(str, Enum):
    """Task progress state machine.

    locked -> unlocked -> in_progress -> passed
    failed is terminal for an attempt (set by admins).
    """

    LOCKED = "locked"
    UNLOCKED = "unlocked"
    IN_PROGRESS = "in_progress"
    PASSED = "passed"
    FAILED = "failed"

    @classmethod
    def actionable_states(cls) -> list["TaskProgressStatus"]:
        """States in which the trader can record trades against the task."""
        return [cls.UNLOCKED, cls.IN_PROGRESS]

    @classmethod
    def unlockable_states(cls) -> list["TaskProgressStatus"]:
        """States the sequencer may (re)write to unlocked."""
        return [cls.LOCKED, cls.UNLOCKED]

    def is_actionable(self) -> bool:
        return self in self.actionable_states()


class ComplianceStatus(str, Enum):
    """Trade compliance verdict"""

    PASS = "pass"  # satisfied every rule
    FAIL = "fail"  # violated at least one rule
    OVERRIDE = "override"  # violated, accepted by override

    @classmethod
    def counting_states(cls) -> list["ComplianceStatus"]:
        """Verdicts that count toward task completion."""
        return [cls.PASS, cls.OVERRIDE]


class EnforcementTier(str, Enum):
    """How a rule violation is enforced at trade submission"""

    NUDGE = "nudge"  # saved, violation surfaced
    SOFT_BLOCK = "soft_block"  # blocked unless the trader overrides
    HARD_BLOCK = "hard_block"  # blocked


class OverrideSource(str, Enum):
    """Outcome of applying a task's rule_json overrides"""

    NONE = "none"  # no rule_json on the task
    APPLIED = "applied"  # rule_json parsed and merged
    PARTIAL = "partial"  # valid keys merged, keys with bad values dropped
    MALFORMED = "malformed"  # rule_json present but unusable, defaults kept


class ErrorCode(str, Enum):
    """Machine-readable failure codes returned by MTM services"""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    NOT_FOUND = "NOT_FOUND"
    FORBIDDEN = "FORBIDDEN"
    ALREADY_ENROLLED = "ALREADY_ENROLLED"
    ALREADY_EXISTS = "ALREADY_EXISTS"
    INVALID_STATE = "INVALID_STATE"
    COMPLIANCE_BLOCKED = "COMPLIANCE_BLOCKED"
    SERVER_ERROR = "SERVER_ERROR"
