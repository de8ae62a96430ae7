"""Detection, sizing and ranking of funding arbitrage opportunities."""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from decimal import Decimal
from typing import TYPE_CHECKING, Callable, Dict, List, Optional, Sequence

from exchange_clients.base_models import FundingRate, OrderBookSnapshot
from helpers.event_notifier import ArbEvent, ArbEventNotifier
from helpers.unified_logger import get_strategy_logger

from ..config import FundingArbConfig
from ..funding_analyzer import FundingRateAnalyzer
from ..models import ArbitrageOpportunity

if TYPE_CHECKING:
    from funding_rate_service.market_data import MarketDataService


class OpportunityAnalyzer:
    """
    Turns current funding rates into ranked, sized opportunities.

    Per instrument with rates on at least two venues:

    1. highest rate -> short venue, lowest rate -> long venue
    2. spread must reach ``min_spread_bps``
    3. the divergence must have persisted over the trailing window
    4. size from order book liquidity within the slippage budget
    5. profit, confidence and risk scoring

    ``find_opportunities`` never raises; a failing instrument is logged and
    skipped. Every produced opportunity is persisted (best effort).
    """

    def __init__(
        self,
        config: FundingArbConfig,
        market_data: "MarketDataService",
        store=None,
        notifier: Optional[ArbEventNotifier] = None,
        analyzer: Optional[FundingRateAnalyzer] = None,
        clock: Callable[[], datetime] = lambda: datetime.now(timezone.utc),
    ) -> None:
        self.config = config
        self.market_data = market_data
        self.store = store
        self.notifier = notifier
        self.analyzer = analyzer or FundingRateAnalyzer(config.analysis, config.risk)
        self._clock = clock
        self.logger = get_strategy_logger(config.strategy_name, component="analyzer")
        self.last_analysis_time: Optional[datetime] = None

    # ========================================================================
    # Public API
    # ========================================================================

    async def find_opportunities(self) -> List[ArbitrageOpportunity]:
        """Ranked opportunities, best expected daily profit first."""
        try:
            rates_by_instrument = await self.market_data.collect_current_funding_rates(self.config.instruments)
        except Exception as exc:
            self.logger.error(f"Funding rate collection failed: {exc}")
            self.last_analysis_time = self._clock()
            return []

        opportunities: List[ArbitrageOpportunity] = []
        for instrument in self.config.instruments:
            rates = rates_by_instrument.get(instrument, [])
            try:
                opportunity = await self.analyze_instrument(instrument, rates)
            except Exception as exc:
                self.logger.error(f"Analysis failed for {instrument}: {exc}")
                continue
            if opportunity is not None:
                opportunities.append(opportunity)

        opportunities.sort(key=lambda opp: opp.estimated_daily_profit, reverse=True)
        self.last_analysis_time = self._clock()

        await self._persist(opportunities)
        self._announce(opportunities)

        if opportunities:
            self.logger.info(f"📊 Found {len(opportunities)} opportunities")
            for opp in opportunities:
                self.logger.info(f"   {opp.summary()}")
        else:
            self.logger.debug("No opportunities this cycle")

        return opportunities

    async def analyze_instrument(
        self,
        instrument: str,
        rates: Sequence[FundingRate],
    ) -> Optional[ArbitrageOpportunity]:
        """Evaluate one instrument; None when any filter rejects it."""
        by_venue: Dict[str, FundingRate] = {}
        for rate in rates:
            by_venue[rate.venue] = rate

        if len(by_venue) < 2:
            self.logger.debug(f"{instrument}: fewer than two venues quote funding")
            return None

        ranked = sorted(by_venue.values(), key=lambda r: r.rate, reverse=True)
        high, low = ranked[0], ranked[-1]
        if high.rate == low.rate:
            return None

        rate_spread = high.rate - low.rate
        spread_bps = self.analyzer.spread_basis_points(high.rate, low.rate)
        if spread_bps < self.config.analysis.min_spread_bps:
            self.logger.debug(
                f"{instrument}: spread {spread_bps:.2f} bps below {self.config.analysis.min_spread_bps} bps"
            )
            return None

        if not await self.is_persistent_funding(instrument, high.venue, low.venue):
            self.logger.debug(f"{instrument}: divergence {high.venue}/{low.venue} not persistent")
            return None

        books = await self.market_data.get_order_books(
            instrument, list(by_venue.keys()), self.config.analysis.order_book_depth
        )
        if low.venue not in books or high.venue not in books:
            self.logger.debug(f"{instrument}: order book missing for a trading venue")
            return None

        book_list: List[OrderBookSnapshot] = list(books.values())
        min_liquidity = self.analyzer.min_liquidity([books[low.venue], books[high.venue]])
        optimal_size = self.analyzer.optimal_size(min_liquidity)
        if optimal_size < self.config.risk.minimum_position_size:
            self.logger.debug(
                f"{instrument}: size ${optimal_size:.2f} below minimum "
                f"${self.config.risk.minimum_position_size} (liquidity ${min_liquidity:.2f})"
            )
            return None

        daily_profit = self.analyzer.daily_profit(
            rate_spread,
            optimal_size,
            self._taker_fee(low.venue),
            self._taker_fee(high.venue),
        )
        avg_spread = self.analyzer.average_spread(book_list)

        return ArbitrageOpportunity(
            instrument=instrument,
            long_venue=low.venue,
            short_venue=high.venue,
            long_rate=low.rate,
            short_rate=high.rate,
            rate_spread=rate_spread,
            spread_basis_points=spread_bps,
            estimated_daily_profit=daily_profit,
            optimal_notional_size=optimal_size,
            confidence=self.analyzer.confidence(len(by_venue), avg_spread),
            risk_score=self.analyzer.risk_score(instrument, optimal_size, rate_spread),
            venue_count=len(by_venue),
            discovered_at=self._clock(),
        )

    async def is_persistent_funding(self, instrument: str, high_venue: str, low_venue: str) -> bool:
        """Trailing-window persistence check for a venue pair."""
        hours = self.config.analysis.persistence_window_hours
        high_history, low_history = await asyncio.gather(
            self.market_data.get_historical_funding_rates(instrument, high_venue, hours),
            self.market_data.get_historical_funding_rates(instrument, low_venue, hours),
        )
        return self.analyzer.is_persistent(
            [r.rate for r in high_history],
            [r.rate for r in low_history],
        )

    # ========================================================================
    # Internals
    # ========================================================================

    def _taker_fee(self, venue: str) -> Decimal:
        client = self.market_data.clients.get(venue)
        override = client.get_taker_fee() if client is not None else None
        return override if override is not None else self.config.taker_fee_for(venue)

    async def _persist(self, opportunities: Sequence[ArbitrageOpportunity]) -> None:
        if self.store is None:
            return
        for opportunity in opportunities:
            try:
                await self.store.save_opportunity(opportunity)
            except Exception as exc:
                self.logger.warning(
                    f"Failed to persist opportunity {opportunity.opportunity_id} ({opportunity.instrument}): {exc}"
                )

    def _announce(self, opportunities: Sequence[ArbitrageOpportunity]) -> None:
        if self.notifier is None:
            return
        for opportunity in opportunities[: self.config.analysis.notify_top_n]:
            self.notifier.notify(
                ArbEvent.OPPORTUNITY_FOUND,
                {
                    "instrument": opportunity.instrument,
                    "long_venue": opportunity.long_venue,
                    "short_venue": opportunity.short_venue,
                    "spread_bps": opportunity.spread_basis_points,
                    "size_usd": opportunity.optimal_notional_size,
                    "daily_profit": opportunity.estimated_daily_profit,
                    "confidence": opportunity.confidence,
                    "risk_score": opportunity.risk_score,
                },
                message=opportunity.summary(),
            )
