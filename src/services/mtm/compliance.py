# coding: utf-8
"""
MTM Trade Compliance

Pure evaluation of one trade against a resolved RuleSet.
Every check runs so the full violation list is always returned;
violations are data, never exceptions.
"""

import math
from dataclasses import dataclass, field
from typing import Any, List, Mapping, Optional

from config.mtm_config import NON_TERMINAL_OUTCOMES
from src.database.models import Trade
from src.services.mtm.rules import RuleSet


def _to_float(value: Any) -> Optional[float]:
    """Empty string / None -> None, anything else -> finite float."""
    if value is None:
        return None
    if isinstance(value, str) and value.strip() == "":
        return None
    number = float(value)
    if not math.isfinite(number):
        raise ValueError(f"{value!r} is not a finite number")
    return number


@dataclass(frozen=True)
class TradeInput:
    """Fields of a trade the compliance checks read."""

    entry_price: float = 0.0
    stop_loss: Optional[float] = None
    target_price: Optional[float] = None
    position_percent: Optional[float] = None
    outcome: str = ""
    analysis_link: Optional[str] = None
    notes: str = ""
    marketcap: str = ""
    symbol: str = ""
    side: str = "buy"

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any]) -> "TradeInput":
        """Build from request-style data; blank numeric fields become None."""
        return cls(
            entry_price=_to_float(data.get("entry_price")) or 0.0,
            stop_loss=_to_float(data.get("stop_loss")),
            target_price=_to_float(data.get("target_price")),
            position_percent=_to_float(data.get("position_percent")),
            outcome=str(data.get("outcome") or "").strip(),
            analysis_link=data.get("analysis_link") or None,
            notes=str(data.get("notes") or ""),
            marketcap=str(data.get("marketcap") or ""),
            symbol=str(data.get("symbol") or "").strip(),
            side=str(data.get("side") or "buy").strip().lower(),
        )

    @classmethod
    def from_model(cls, trade: Trade) -> "TradeInput":
        return cls(
            entry_price=trade.entry_price or 0.0,
            stop_loss=trade.stop_loss,
            target_price=trade.target_price,
            position_percent=trade.position_percent,
            outcome=(trade.outcome or "").strip(),
            analysis_link=trade.analysis_link or None,
            notes=trade.notes or "",
            marketcap=trade.marketcap or "",
            symbol=trade.symbol or "",
            side=(trade.side or "buy").lower(),
        )

    def non_finite_fields(self) -> List[str]:
        """Names of numeric fields holding NaN or infinity."""
        numbers = {
            "entry_price": self.entry_price,
            "stop_loss": self.stop_loss,
            "target_price": self.target_price,
            "position_percent": self.position_percent,
        }
        return [
            name for name, value in numbers.items()
            if value is not None and not math.isfinite(value)
        ]


@dataclass(frozen=True)
class TradingContext:
    """
    Account state some rules need

    Without it min_capital and forbid_avg_down can only warn.
    """

    account_capital: Optional[float] = None
    open_position_avg_price: Optional[float] = None


@dataclass
class ComplianceResult:
    compliant: bool
    violations: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "compliant": self.compliant,
            "violations": list(self.violations),
            "warnings": list(self.warnings),
        }


def evaluate_trade_compliance(
    trade: TradeInput,
    rules: RuleSet,
    context: Optional[TradingContext] = None,
) -> ComplianceResult:
    """
    Evaluate a trade against resolved rules

    Args:
        trade: Trade fields
        rules: Resolved rules of the task the trade is attributed to
        context: Optional account state for capital / averaging-down checks

    Returns:
        ComplianceResult; compliant iff there are no violations
    """
    violations: List[str] = []
    warnings: List[str] = []

    entry_price = trade.entry_price or 0.0
    stop_loss = trade.stop_loss
    target_price = trade.target_price
    outcome = trade.outcome.strip().upper()
    notes = trade.notes.strip()

    # 1. Stop loss requirement
    if rules.require_sl and stop_loss is None:
        violations.append("Stop loss is required")

    # 2. Risk percentage
    if rules.max_risk_pct is not None and stop_loss is not None and entry_price > 0:
        risk_pct = abs(entry_price - stop_loss) / entry_price * 100
        if risk_pct > rules.max_risk_pct:
            violations.append(
                f"Risk percentage ({risk_pct:.2f}%) exceeds maximum allowed ({rules.max_risk_pct:g}%)"
            )

    # 3. Position size
    if rules.max_position_pct is not None and trade.position_percent is not None:
        if trade.position_percent > rules.max_position_pct:
            violations.append(
                f"Position size ({trade.position_percent:g}%) exceeds maximum allowed "
                f"({rules.max_position_pct:g}%)"
            )

    # 4. Risk/reward ratio (skipped when risk is zero)
    if (
        rules.min_rr is not None
        and stop_loss is not None
        and target_price is not None
        and entry_price > 0
    ):
        risk = abs(entry_price - stop_loss)
        reward = abs(target_price - entry_price)
        if risk > 0:
            rr = reward / risk
            if rr < rules.min_rr:
                violations.append(
                    f"Risk-Reward ratio ({rr:.2f}) below minimum required ({rules.min_rr:g})"
                )

    # 5. Analysis link requirement
    if rules.require_analysis_link and not trade.analysis_link:
        violations.append("Analysis link is required")

    # 6. Allowed outcomes (closed trades only)
    if rules.allowed_outcomes is not None and outcome not in NON_TERMINAL_OUTCOMES:
        allowed = [str(o).strip().upper() for o in rules.allowed_outcomes]
        if outcome not in allowed:
            violations.append(
                f"Outcome '{outcome}' not in allowed outcomes: {', '.join(rules.allowed_outcomes)}"
            )

    # 7. Chart tag in notes
    if rules.require_chart_tag and rules.require_chart_tag.strip():
        tag = rules.require_chart_tag.strip().lower()
        if tag not in notes.lower():
            violations.append(f"Chart tag '{rules.require_chart_tag}' required in notes")

    # 8. Market restriction
    if rules.market and rules.market.strip():
        marketcap = trade.marketcap.strip().upper()
        if marketcap != rules.market.strip().upper():
            violations.append(f"Market must be '{rules.market}' (current: {marketcap})")

    # 9. Minimum capital
    if rules.min_capital is not None and rules.min_capital > 0:
        capital = context.account_capital if context else None
        if capital is None:
            warnings.append(f"Minimum capital requirement: ₹{rules.min_capital:,.0f}")
        elif capital < rules.min_capital:
            violations.append(
                f"Account capital (₹{capital:,.0f}) below minimum required (₹{rules.min_capital:,.0f})"
            )

    # 10. Averaging down
    if rules.forbid_avg_down:
        avg_price = context.open_position_avg_price if context else None
        if avg_price is None:
            warnings.append("Averaging down is not allowed for this task")
        elif entry_price > 0 and _is_averaging_down(trade.side, entry_price, avg_price):
            violations.append(
                f"Averaging down is not allowed: entry {entry_price:g} vs open average {avg_price:g}"
            )

    return ComplianceResult(
        compliant=not violations,
        violations=violations,
        warnings=warnings,
    )


def _is_averaging_down(side: str, entry_price: float, avg_price: float) -> bool:
    """Adding to a losing long below its average, or a short above it."""
    if side.lower() == "sell":
        return entry_price > avg_price
    return entry_price < avg_price
