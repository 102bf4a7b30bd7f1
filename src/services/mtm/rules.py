# coding: utf-8
"""
MTM Rule Resolution

Merges a task's structured rule columns with its optional rule_json
override object into one flat, typed RuleSet.

Malformed rule_json never fails the caller: it is logged and the
structured rules are used as-is. A key with a bad value is dropped on
its own and the other keys still apply. RuleResolution.source tells the
caller which case it got.
"""

import json
from dataclasses import dataclass, fields, replace
from typing import Any, List, Mapping, Optional, Tuple, Union

from pydantic import BaseModel, ConfigDict, ValidationError

from config.logging import log_event
from config.mtm_config import STRUCTURED_RULE_DEFAULTS, RULE_JSON_LOG_PREVIEW
from src.core.enums import OverrideSource
from src.database.models import MTMTask


@dataclass(frozen=True)
class RuleSet:
    """Resolved rules of one task. None thresholds mean "no limit"."""

    # Structured columns
    min_trades: int = 0
    time_window_days: int = 0
    require_sl: bool = False
    max_risk_pct: Optional[float] = None
    max_position_pct: Optional[float] = None
    min_rr: Optional[float] = None
    require_analysis_link: bool = False
    weekly_min_trades: int = 0
    weeks_consistency: int = 0

    # rule_json-only keys
    allowed_outcomes: Optional[Tuple[str, ...]] = None
    require_chart_tag: Optional[str] = None
    market: Optional[str] = None
    min_capital: Optional[float] = None
    forbid_avg_down: bool = False

    def to_dict(self) -> dict:
        data = {f.name: getattr(self, f.name) for f in fields(self)}
        if self.allowed_outcomes is not None:
            data["allowed_outcomes"] = list(self.allowed_outcomes)
        return data


class RuleOverrides(BaseModel):
    """Keys accepted from rule_json. Anything else is ignored."""

    model_config = ConfigDict(extra="ignore")

    min_trades: Optional[int] = None
    time_window_days: Optional[int] = None
    require_sl: Optional[bool] = None
    max_risk_pct: Optional[float] = None
    max_position_pct: Optional[float] = None
    min_rr: Optional[float] = None
    require_analysis_link: Optional[bool] = None
    weekly_min_trades: Optional[int] = None
    weeks_consistency: Optional[int] = None

    allowed_outcomes: Optional[List[str]] = None
    require_chart_tag: Optional[str] = None
    market: Optional[str] = None
    min_capital: Optional[float] = None
    forbid_avg_down: Optional[bool] = None


@dataclass(frozen=True)
class RuleResolution:
    """Resolved rules plus where they came from."""

    rules: RuleSet
    source: OverrideSource
    error: Optional[str] = None


# Fields that cannot hold None; an explicit JSON null restores the default
_NON_NULLABLE = {
    "min_trades": 0,
    "time_window_days": 0,
    "require_sl": False,
    "require_analysis_link": False,
    "weekly_min_trades": 0,
    "weeks_consistency": 0,
    "forbid_avg_down": False,
}

_KNOWN_KEYS = frozenset(RuleOverrides.model_fields)


def _column(task: Union[MTMTask, Mapping[str, Any]], name: str) -> Any:
    if isinstance(task, Mapping):
        return task.get(name)
    return getattr(task, name, None)


def _structured_rules(task: Union[MTMTask, Mapping[str, Any]]) -> RuleSet:
    """Build a RuleSet from the structured columns only."""
    values = {}
    for name, default in STRUCTURED_RULE_DEFAULTS.items():
        raw = _column(task, name)
        if isinstance(default, bool):
            values[name] = bool(raw) if raw is not None else default
        elif isinstance(default, int):
            values[name] = int(raw) if raw is not None else default
        else:
            # Falsy threshold (NULL or 0) means no limit
            values[name] = float(raw) if raw else None
    return RuleSet(**values)


def _malformed(task_id: Any, base: RuleSet, raw: str, error: str) -> RuleResolution:
    log_event(
        "parse_rule_config_error",
        level="WARNING",
        task_id=task_id,
        error=error,
        raw_text=raw[:RULE_JSON_LOG_PREVIEW],
    )
    return RuleResolution(rules=base, source=OverrideSource.MALFORMED, error=error)


def _merge_key(name: str, value: Any) -> Any:
    """Validate one rule_json key; raises ValidationError on a bad value."""
    validated = RuleOverrides.model_validate({name: value})
    value = getattr(validated, name)
    if value is None and name in _NON_NULLABLE:
        return _NON_NULLABLE[name]
    if name == "allowed_outcomes" and value is not None:
        return tuple(value)
    return value


def resolve_rules_detailed(task: Union[MTMTask, Mapping[str, Any]]) -> RuleResolution:
    """
    Resolve a task's rules and report how rule_json was handled

    Keys are validated one at a time: a key with a bad value is dropped and
    logged while the remaining keys still apply (source PARTIAL). When no
    key survives, the structured rules are returned as MALFORMED.

    Args:
        task: MTMTask row or a mapping with the same column names

    Returns:
        RuleResolution with the merged RuleSet
    """
    base = _structured_rules(task)
    raw = _column(task, "rule_json")
    task_id = _column(task, "id")

    if raw is None or not str(raw).strip():
        return RuleResolution(rules=base, source=OverrideSource.NONE)

    raw = str(raw)
    try:
        data = json.loads(raw)
    except json.JSONDecodeError as e:
        return _malformed(task_id, base, raw, f"Invalid JSON: {e.msg}")

    if not isinstance(data, dict):
        return _malformed(task_id, base, raw, "rule_json is not a JSON object")

    unknown = sorted(set(data) - _KNOWN_KEYS)
    if unknown:
        log_event("rule_config_unknown_keys", level="DEBUG", task_id=task_id, keys=unknown)

    values = {}
    rejected = []
    for name, value in data.items():
        if name not in _KNOWN_KEYS:
            continue
        try:
            values[name] = _merge_key(name, value)
        except ValidationError:
            rejected.append(name)

    if not rejected:
        return RuleResolution(rules=replace(base, **values), source=OverrideSource.APPLIED)

    error = f"Invalid rule values: {', '.join(rejected)}"
    if not values:
        return _malformed(task_id, base, raw, error)

    log_event(
        "parse_rule_config_error",
        level="WARNING",
        task_id=task_id,
        error=error,
        applied=sorted(values),
    )
    return RuleResolution(
        rules=replace(base, **values), source=OverrideSource.PARTIAL, error=error
    )


def resolve_rules(task: Union[MTMTask, Mapping[str, Any]]) -> RuleSet:
    """
    Resolve the effective rules of a task

    Structured columns give the defaults; rule_json keys override them
    one by one. Malformed rule_json yields the structured rules.
    """
    return resolve_rules_detailed(task).rules
