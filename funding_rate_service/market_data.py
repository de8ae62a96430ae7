"""
Market Data Service

Read-side access to funding rates and order books across venues. Current
data comes straight from the (guarded) venue adapters in parallel; trailing
history comes from the store, falling back to the adapter's own history
endpoint when nothing has been recorded yet.

A venue that fails is logged and skipped; callers always get whatever the
healthy venues returned.
"""

import asyncio
from typing import Dict, Iterable, List, Mapping, Optional

from exchange_clients.base_client import BaseExchangeClient
from exchange_clients.base_models import FundingRate, OrderBookSnapshot
from helpers.unified_logger import get_service_logger


class MarketDataService:
    """
    Usage:
        market_data = MarketDataService(clients={"bybit": bybit, "okx": okx}, store=store)
        rates = await market_data.collect_current_funding_rates(["BTC", "ETH"])
    """

    def __init__(
        self,
        clients: Mapping[str, BaseExchangeClient],
        store=None,
        *,
        record_rates: bool = False,
    ):
        """
        Args:
            clients: venue -> adapter
            store: ``ArbitrageStore`` (or compatible) used for history lookups
            record_rates: Persist every fetched current rate to the store
        """
        self.clients = dict(clients)
        self.store = store
        self.record_rates = record_rates
        self.logger = get_service_logger("market_data")

    @property
    def venues(self) -> List[str]:
        return list(self.clients.keys())

    # ========================================================================
    # Funding rates
    # ========================================================================

    async def _fetch_venue_rates(self, venue: str, instruments: List[str]) -> List[FundingRate]:
        client = self.clients[venue]
        results = await asyncio.gather(
            *(client.get_current_funding_rate(symbol) for symbol in instruments),
            return_exceptions=True,
        )

        rates: List[FundingRate] = []
        for symbol, result in zip(instruments, results):
            if isinstance(result, Exception):
                self.logger.debug(f"[{venue}] No funding rate for {symbol}: {result}")
                continue
            if result is not None:
                rates.append(result)
        return rates

    async def collect_current_funding_rates(self, instruments: Iterable[str]) -> Dict[str, List[FundingRate]]:
        """
        Latest funding rate per venue, grouped by instrument.

        Returns:
            instrument -> list of FundingRate (one per venue that answered)
        """
        symbols = [s.upper() for s in instruments]
        venues = self.venues
        results = await asyncio.gather(
            *(self._fetch_venue_rates(venue, symbols) for venue in venues),
            return_exceptions=True,
        )

        by_instrument: Dict[str, List[FundingRate]] = {symbol: [] for symbol in symbols}
        for venue, result in zip(venues, results):
            if isinstance(result, Exception):
                self.logger.warning(f"⚠️ [{venue}] Funding rate collection failed: {result}")
                continue
            for rate in result:
                by_instrument.setdefault(rate.instrument.upper(), []).append(rate)

        if self.record_rates and self.store is not None:
            await self._record(by_instrument)

        return by_instrument

    async def _record(self, by_instrument: Dict[str, List[FundingRate]]) -> None:
        for rates in by_instrument.values():
            for rate in rates:
                try:
                    await self.store.save_funding_rate(rate)
                except Exception as e:
                    self.logger.warning(f"Failed to record funding rate {rate.venue}/{rate.instrument}: {e}")

    async def get_historical_funding_rates(self, instrument: str, venue: str, hours: int) -> List[FundingRate]:
        """Trailing observations for one venue, oldest first (empty on failure)."""
        history: List[FundingRate] = []
        if self.store is not None:
            try:
                history = await self.store.get_funding_history(instrument, venue, hours)
            except Exception as e:
                self.logger.warning(f"History lookup failed for {venue}/{instrument}: {e}")

        if history:
            return history

        client = self.clients.get(venue)
        if client is None:
            return []

        try:
            return await client.get_funding_rate_history(instrument, hours)
        except Exception as e:
            self.logger.warning(f"[{venue}] Funding history unavailable for {instrument}: {e}")
            return []

    # ========================================================================
    # Order books
    # ========================================================================

    async def get_order_books(
        self,
        instrument: str,
        venues: Optional[Iterable[str]] = None,
        depth: int = 50,
    ) -> Dict[str, OrderBookSnapshot]:
        """Order book per venue; venues that fail are omitted."""
        targets = [v for v in (venues or self.venues) if v in self.clients]
        results = await asyncio.gather(
            *(self.clients[v].get_order_book(instrument, depth) for v in targets),
            return_exceptions=True,
        )

        books: Dict[str, OrderBookSnapshot] = {}
        for venue, result in zip(targets, results):
            if isinstance(result, Exception):
                self.logger.warning(f"⚠️ [{venue}] Order book fetch failed for {instrument}: {result}")
                continue
            books[venue] = result
        return books
