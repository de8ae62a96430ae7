"""
Funding Rate Analyzer

Pure calculations behind opportunity detection and sizing. No I/O, no state:
the same inputs always give the same result, so every threshold here is
easy to pin down in tests.

- Spread and persistence of a funding divergence
- Order book liquidity within a slippage budget
- Position sizing, expected daily profit
- Confidence and risk scoring
- Liquidation price estimate and distance
"""

from decimal import Decimal
from typing import Iterable, Optional, Sequence

from exchange_clients.base_models import OrderBookLevel, OrderBookSnapshot

from .config import AnalysisConfig, RiskLimitsConfig


BPS = Decimal("10000")
HOURS_PER_YEAR = Decimal(365 * 24)
HOURS_PER_DAY = Decimal(24)

ZERO = Decimal("0")
ONE = Decimal("1")


class FundingRateAnalyzer:
    """
    Funding divergence math.

    Sign convention: the venue with the highest funding rate is shorted
    (shorts receive positive funding) and the venue with the lowest rate is
    longed. ``rate_spread = high - low`` is therefore never negative.
    """

    def __init__(self, analysis: Optional[AnalysisConfig] = None, limits: Optional[RiskLimitsConfig] = None):
        self.analysis = analysis or AnalysisConfig()
        self.limits = limits or RiskLimitsConfig()

    # ========================================================================
    # Spread & persistence
    # ========================================================================

    @staticmethod
    def spread_basis_points(high_rate: Decimal, low_rate: Decimal) -> Decimal:
        """
        Absolute funding spread in basis points.

        Example:
            >>> FundingRateAnalyzer.spread_basis_points(Decimal("0.0015"), Decimal("0.0001"))
            Decimal('14.0000')
        """
        return abs(high_rate - low_rate) * BPS

    @property
    def periods_per_day(self) -> Decimal:
        return HOURS_PER_DAY / Decimal(self.analysis.funding_period_hours)

    def annualize(self, per_period_rate: Decimal) -> Decimal:
        """Per-funding-period rate -> simple annual rate."""
        return per_period_rate * (HOURS_PER_YEAR / Decimal(self.analysis.funding_period_hours))

    def is_persistent(self, high_rates: Sequence[Decimal], low_rates: Sequence[Decimal]) -> bool:
        """
        Decide whether a divergence has held over the trailing window.

        Both venues need at least ``min_samples_per_venue`` observations; the
        difference of the means, annualized, must exceed
        ``min_funding_rate_threshold`` in absolute value.
        """
        min_samples = self.analysis.min_samples_per_venue
        if len(high_rates) < min_samples or len(low_rates) < min_samples:
            return False

        avg_high = sum(high_rates, ZERO) / Decimal(len(high_rates))
        avg_low = sum(low_rates, ZERO) / Decimal(len(low_rates))

        annualized = self.annualize(avg_high - avg_low)
        return abs(annualized) > self.analysis.min_funding_rate_threshold

    # ========================================================================
    # Liquidity & sizing
    # ========================================================================

    @staticmethod
    def _side_liquidity(levels: Iterable[OrderBookLevel], limit: Decimal, is_bid: bool) -> Decimal:
        total = ZERO
        for level in levels:
            if (is_bid and level.price < limit) or (not is_bid and level.price > limit):
                break
            total += level.price * level.size
        return total

    def liquidity_within_slippage(self, book: OrderBookSnapshot) -> Decimal:
        """
        Notional tradable within the slippage budget on the thinner side.

        Bids count down to ``best_bid * (1 - s)``, asks up to
        ``best_ask * (1 + s)``. An empty side gives zero.
        """
        if book.best_bid is None or book.best_ask is None:
            return ZERO

        slippage = self.analysis.slippage_budget
        bid_liquidity = self._side_liquidity(book.bids, book.best_bid * (ONE - slippage), is_bid=True)
        ask_liquidity = self._side_liquidity(book.asks, book.best_ask * (ONE + slippage), is_bid=False)
        return min(bid_liquidity, ask_liquidity)

    def min_liquidity(self, books: Iterable[OrderBookSnapshot]) -> Decimal:
        values = [self.liquidity_within_slippage(book) for book in books]
        return min(values) if values else ZERO

    def optimal_size(self, min_liquidity: Decimal) -> Decimal:
        """
        ``min(liquidity x utilization, max_position_size, allocation x buffer)``.

        Monotone non-decreasing in ``min_liquidity``; saturates at the smaller
        of the two fixed caps.
        """
        return min(
            min_liquidity * self.analysis.liquidity_utilization,
            self.limits.max_position_size,
            self.limits.capital_allocation * self.analysis.capital_buffer,
        )

    # ========================================================================
    # Profitability & scoring
    # ========================================================================

    def daily_profit(
        self,
        rate_spread: Decimal,
        size: Decimal,
        long_taker_fee: Decimal,
        short_taker_fee: Decimal,
    ) -> Decimal:
        """Funding collected per day minus one taker fee on each leg."""
        per_period = rate_spread * size
        fees = (long_taker_fee + short_taker_fee) * size
        return per_period * self.periods_per_day - fees

    @staticmethod
    def average_spread(books: Sequence[OrderBookSnapshot]) -> Decimal:
        """Mean relative bid/ask spread; 1 (100%) when no book is usable."""
        spreads = [book.spread_pct for book in books if book.spread_pct is not None]
        if not spreads:
            return ONE
        return sum(spreads, ZERO) / Decimal(len(spreads))

    @staticmethod
    def confidence(venue_count: int, avg_spread: Decimal) -> Decimal:
        score = Decimal("0.5")
        if venue_count >= 3:
            score += Decimal("0.2")
        if venue_count >= 4:
            score += Decimal("0.1")
        if avg_spread < Decimal("0.001"):
            score += Decimal("0.1")
        if avg_spread < Decimal("0.0005"):
            score += Decimal("0.1")
        return min(score, ONE)

    def risk_score(self, instrument: str, size: Decimal, rate_spread: Decimal) -> Decimal:
        score = Decimal("0.3")
        max_size = self.limits.max_position_size
        if max_size > 0:
            score += Decimal("0.3") * (size / max_size)
        if abs(rate_spread) > Decimal("0.01"):
            score += Decimal("0.2")
        if abs(rate_spread) > Decimal("0.02"):
            score += Decimal("0.2")
        if instrument.upper() not in {s.upper() for s in self.analysis.low_risk_instruments}:
            score += Decimal("0.1")
        return min(score, ONE)


# ============================================================================
# Liquidation math
# ============================================================================

def estimate_liquidation_price(
    side: str,
    entry_price: Decimal,
    leverage: int,
    maintenance_margin_rate: Decimal = Decimal("0.01"),
) -> Decimal:
    """Isolated-margin approximation used when the venue reports none."""
    inverse = ONE / Decimal(leverage)
    if side == "long":
        return entry_price * (ONE - inverse + maintenance_margin_rate)
    return entry_price * (ONE + inverse - maintenance_margin_rate)


def liquidation_distance_pct(side: str, mark_price: Optional[Decimal], liquidation_price: Optional[Decimal]) -> Decimal:
    """
    Distance to liquidation as a percentage of the mark price.

    Returns 100 when either price is unknown.
    """
    if not liquidation_price or not mark_price:
        return Decimal("100")

    if side == "long":
        return (mark_price - liquidation_price) / mark_price * Decimal("100")
    return (liquidation_price - mark_price) / mark_price * Decimal("100")
