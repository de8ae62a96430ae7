"""
Kill-switch predicates evaluated on every supervision cycle.

Each predicate looks at the whole strategy (both legs). The first one that
fires returns a reason code; the supervisor then force-closes the strategy.
"""

from decimal import Decimal
from typing import List, Optional, Sequence, Tuple

from ..config import KillSwitchConfig, RiskLimitsConfig
from ..funding_analyzer import liquidation_distance_pct
from ..models import Position, PositionSide


HUNDRED = Decimal("100")


class KillReason:
    SINGLE_LEG = "single_leg"
    NEAR_LIQUIDATION = "near_liquidation"
    MAX_DRAWDOWN = "max_drawdown"
    SIZE_MISMATCH = "size_mismatch"
    OVERSIZED = "oversized"


def drawdown_pct(position: Position) -> Decimal:
    """Loss as a percentage of entry notional (0 when in profit)."""
    if position.unrealized_pnl >= 0 or position.entry_notional <= 0:
        return Decimal("0")
    return abs(position.unrealized_pnl) / position.entry_notional * HUNDRED


def position_liquidation_distance(position: Position) -> Decimal:
    return liquidation_distance_pct(PositionSide(position.side).value, position.mark_price, position.liquidation_price)


class KillSwitchEvaluator:
    def __init__(self, kill_switch: KillSwitchConfig, limits: RiskLimitsConfig):
        self.kill_switch = kill_switch
        self.limits = limits

    def evaluate(self, legs: Sequence[Position]) -> Tuple[bool, Optional[str], str]:
        """
        Returns:
            (should_kill, reason_code, detail)
        """
        for check in (
            self._check_legs,
            self._check_liquidation,
            self._check_drawdown,
            self._check_size_mismatch,
            self._check_oversize,
        ):
            result = check(legs)
            if result is not None:
                return True, result[0], result[1]
        return False, None, ""

    def _check_legs(self, legs: Sequence[Position]):
        open_legs = [leg for leg in legs if leg.is_open]
        if len(open_legs) != 2:
            return KillReason.SINGLE_LEG, f"{len(open_legs)} open leg(s)"

        sides = {PositionSide(leg.side) for leg in open_legs}
        venues = {leg.venue for leg in open_legs}
        if sides != {PositionSide.LONG, PositionSide.SHORT} or len(venues) != 2:
            return KillReason.SINGLE_LEG, "legs are not one long and one short on distinct venues"
        return None

    def _check_liquidation(self, legs: Sequence[Position]):
        threshold = self.kill_switch.near_liquidation_percent
        for leg in legs:
            distance = position_liquidation_distance(leg)
            if distance < threshold:
                return (
                    KillReason.NEAR_LIQUIDATION,
                    f"{leg.venue} {leg.side} {distance:.2f}% from liquidation (< {threshold}%)",
                )
        return None

    def _check_drawdown(self, legs: Sequence[Position]):
        limit = self.kill_switch.max_drawdown_percent
        for leg in legs:
            drawdown = drawdown_pct(leg)
            if drawdown > limit:
                return KillReason.MAX_DRAWDOWN, f"{leg.venue} drawdown {drawdown:.2f}% (> {limit}%)"
        return None

    def _check_size_mismatch(self, legs: Sequence[Position]):
        notionals: List[Decimal] = [leg.notional for leg in legs]
        largest = max(notionals)
        if largest <= 0:
            return None
        mismatch = (largest - min(notionals)) / largest * HUNDRED
        if mismatch > self.kill_switch.max_size_mismatch_percent:
            return KillReason.SIZE_MISMATCH, f"leg notionals differ by {mismatch:.2f}%"
        return None

    def _check_oversize(self, legs: Sequence[Position]):
        limit = self.limits.max_position_size * self.kill_switch.oversize_tolerance
        for leg in legs:
            if leg.notional > limit:
                return KillReason.OVERSIZED, f"{leg.venue} notional ${leg.notional:.2f} > ${limit:.2f}"
        return None
