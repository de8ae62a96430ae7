"""
Tests for OpportunityAnalyzer

Covers venue selection, each eligibility filter (which must return no
opportunity rather than raise), ranking, persistence and notifications.
"""

import pytest
from decimal import Decimal

from exchange_clients.base_models import OrderBookSnapshot
from funding_rate_service.market_data import MarketDataService
from helpers.event_notifier import ArbEvent
from strategies.implementations.funding_arbitrage.config import FundingArbConfig
from strategies.implementations.funding_arbitrage.models import OpportunityStatus
from strategies.implementations.funding_arbitrage.operations.opportunity_analyzer import OpportunityAnalyzer
from tests.fakes import FakeExchangeClient, FakeStore, RecordingNotifier, fixed_clock, make_book, make_history


def build_client(venue, rates, history_rate=None, books=True):
    history = {}
    for instrument, rate in rates.items():
        history[instrument] = make_history(venue, instrument, history_rate if history_rate is not None else rate)
    return FakeExchangeClient(
        venue,
        rates=rates,
        history=history,
        books={instrument: make_book(venue, instrument) for instrument in rates} if books else {},
    )


@pytest.fixture
def config():
    return FundingArbConfig(instruments=["BTC", "ETH"])


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def notifier():
    return RecordingNotifier()


def make_analyzer(config, clients, store=None, notifier=None):
    market_data = MarketDataService({c.venue: c for c in clients}, store)
    return OpportunityAnalyzer(config, market_data, store, notifier, clock=fixed_clock())


class TestOpportunityDetection:

    @pytest.mark.asyncio
    async def test_long_cheapest_short_most_expensive(self, config, store):
        clients = [
            build_client("A", {"BTC": Decimal("0.0001")}),
            build_client("B", {"BTC": Decimal("0.0051")}),
            build_client("C", {"BTC": Decimal("0.0020")}),
        ]
        analyzer = make_analyzer(config, clients, store)

        opportunities = await analyzer.find_opportunities()

        assert len(opportunities) == 1
        opp = opportunities[0]
        assert opp.long_venue == "A"
        assert opp.short_venue == "B"
        assert opp.rate_spread == Decimal("0.0050")
        assert opp.spread_basis_points == Decimal("50")
        assert opp.venue_count == 3
        # liquidity is deep, so the allocation cap (5000 * 20% * 0.9) binds
        assert opp.optimal_notional_size == Decimal("900")
        assert Decimal("0") <= opp.confidence <= Decimal("1")
        assert Decimal("0") <= opp.risk_score <= Decimal("1")

    @pytest.mark.asyncio
    async def test_thin_book_on_uninvolved_venue_does_not_limit_size(self, config, store):
        thin = build_client("C", {"BTC": Decimal("0.0020")})
        thin.books["BTC"] = make_book("C", size=Decimal("0.5"), levels=1)
        clients = [
            build_client("A", {"BTC": Decimal("0.0001")}),
            build_client("B", {"BTC": Decimal("0.0051")}),
            thin,
        ]

        opportunities = await make_analyzer(config, clients, store).find_opportunities()

        assert len(opportunities) == 1
        assert (opportunities[0].long_venue, opportunities[0].short_venue) == ("A", "B")
        assert opportunities[0].optimal_notional_size == Decimal("900")

    @pytest.mark.asyncio
    async def test_single_venue_produces_nothing(self, config):
        analyzer = make_analyzer(config, [build_client("A", {"BTC": Decimal("0.0050")})])
        assert await analyzer.find_opportunities() == []

    @pytest.mark.asyncio
    async def test_equal_rates_produce_nothing(self, config):
        clients = [build_client("A", {"BTC": Decimal("0.001")}), build_client("B", {"BTC": Decimal("0.001")})]
        assert await make_analyzer(config, clients).find_opportunities() == []

    @pytest.mark.asyncio
    async def test_spread_below_minimum_rejected(self, config):
        clients = [build_client("A", {"BTC": Decimal("0.0001")}), build_client("B", {"BTC": Decimal("0.0015")})]
        # 14 bps < 30 bps
        assert await make_analyzer(config, clients).find_opportunities() == []

    @pytest.mark.asyncio
    async def test_non_persistent_divergence_rejected(self, config):
        clients = [
            build_client("A", {"BTC": Decimal("0.0001")}, history_rate=Decimal("0.0010")),
            build_client("B", {"BTC": Decimal("0.0051")}, history_rate=Decimal("0.0011")),
        ]
        assert await make_analyzer(config, clients).find_opportunities() == []

    @pytest.mark.asyncio
    async def test_missing_book_rejected(self, config):
        clients = [
            build_client("A", {"BTC": Decimal("0.0001")}),
            build_client("B", {"BTC": Decimal("0.0051")}, books=False),
        ]
        assert await make_analyzer(config, clients).find_opportunities() == []

    @pytest.mark.asyncio
    async def test_thin_liquidity_rejected(self, config):
        clients = [build_client("A", {"BTC": Decimal("0.0001")}), build_client("B", {"BTC": Decimal("0.0051")})]
        clients[1].books["BTC"] = OrderBookSnapshot.from_levels("B", "BTC", bids=[(100, "0.5")], asks=[(100.1, "0.5")])
        # 50 * 0.8 = 40 < minimum 100
        assert await make_analyzer(config, clients).find_opportunities() == []

    @pytest.mark.asyncio
    async def test_failing_venue_is_skipped(self, config):
        class BrokenClient(FakeExchangeClient):
            async def get_current_funding_rate(self, instrument):
                raise ConnectionError("venue down")

        clients = [
            build_client("A", {"BTC": Decimal("0.0001")}),
            build_client("B", {"BTC": Decimal("0.0051")}),
            BrokenClient("C"),
        ]
        opportunities = await make_analyzer(config, clients).find_opportunities()
        assert [(o.long_venue, o.short_venue) for o in opportunities] == [("A", "B")]


class TestRankingAndSideEffects:

    @pytest.mark.asyncio
    async def test_ranked_by_daily_profit(self, config, store):
        clients = [
            build_client("A", {"BTC": Decimal("0.0001"), "ETH": Decimal("0.0001")}),
            build_client("B", {"BTC": Decimal("0.0041"), "ETH": Decimal("0.0081")}),
        ]
        opportunities = await make_analyzer(config, clients, store).find_opportunities()

        assert [o.instrument for o in opportunities] == ["ETH", "BTC"]
        profits = [o.estimated_daily_profit for o in opportunities]
        assert profits == sorted(profits, reverse=True)

    @pytest.mark.asyncio
    async def test_opportunities_persisted_and_announced(self, config, store, notifier):
        clients = [build_client("A", {"BTC": Decimal("0.0001")}), build_client("B", {"BTC": Decimal("0.0051")})]
        analyzer = make_analyzer(config, clients, store, notifier)

        opportunities = await analyzer.find_opportunities()

        opp_id = opportunities[0].opportunity_id
        assert store.opportunity_status[opp_id] == OpportunityStatus.IDENTIFIED
        assert len(notifier.of(ArbEvent.OPPORTUNITY_FOUND)) == 1
        assert analyzer.last_analysis_time is not None

    @pytest.mark.asyncio
    async def test_persistence_failure_does_not_raise(self, config, store):
        store.fail_save_opportunity = True
        clients = [build_client("A", {"BTC": Decimal("0.0001")}), build_client("B", {"BTC": Decimal("0.0051")})]

        opportunities = await make_analyzer(config, clients, store).find_opportunities()

        assert len(opportunities) == 1

    @pytest.mark.asyncio
    async def test_stored_history_preferred_over_adapter(self, config, store):
        clients = [
            build_client("A", {"BTC": Decimal("0.0001")}),
            build_client("B", {"BTC": Decimal("0.0051")}),
        ]
        # store history says the venues barely diverged
        for rate in make_history("A", "BTC", Decimal("0.0010")):
            await store.save_funding_rate(rate)
        for rate in make_history("B", "BTC", Decimal("0.0010")):
            await store.save_funding_rate(rate)

        assert await make_analyzer(config, clients, store).find_opportunities() == []
