"""
Tests for database repositories.

The repositories are thin SQL wrappers, so these tests check the parameters
handed to ``databases.Database`` and the mapping of rows back to models.
"""

import json
import pytest
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock, MagicMock

from database.repositories import (
    FundingRateRepository,
    OpportunityRepository,
    PositionRepository,
    RiskSnapshotRepository,
    StrategyRepository,
    SystemEventRepository,
    TradeRepository,
)
from exchange_clients.base_models import FundingRate
from strategies.implementations.funding_arbitrage.models import (
    ArbitrageOpportunity,
    OpportunityStatus,
    Position,
    PositionSide,
    PositionStatus,
    RiskSnapshot,
    Strategy,
    StrategyStatus,
    TradeRecord,
)


NOW = datetime(2026, 1, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def mock_db():
    db = MagicMock()
    db.execute = AsyncMock()
    db.fetch_one = AsyncMock(return_value=None)
    db.fetch_all = AsyncMock(return_value=[])
    db.fetch_val = AsyncMock(return_value=None)
    return db


def last_params(mock):
    args, kwargs = mock.call_args
    return args[1]


class TestFundingRateRepository:

    @pytest.mark.asyncio
    async def test_insert(self, mock_db):
        rate = FundingRate(venue="bybit", instrument="BTC", rate=Decimal("0.0001"), observed_at=NOW)

        await FundingRateRepository(mock_db).insert(rate)

        params = last_params(mock_db.execute)
        assert params["venue"] == "bybit"
        assert params["rate"] == Decimal("0.0001")

    @pytest.mark.asyncio
    async def test_history_window_and_mapping(self, mock_db):
        mock_db.fetch_all.return_value = [
            {"venue": "bybit", "instrument": "BTC", "rate": Decimal("0.0002"), "observed_at": NOW,
             "next_funding_at": None},
        ]

        history = await FundingRateRepository(mock_db).get_history("BTC", "bybit", 24, now=NOW)

        params = last_params(mock_db.fetch_all)
        assert params["since"] == NOW - timedelta(hours=24)
        assert history == [FundingRate(venue="bybit", instrument="BTC", rate=Decimal("0.0002"), observed_at=NOW)]


class TestOpportunityRepository:

    @pytest.mark.asyncio
    async def test_insert_marks_identified(self, mock_db):
        opp = ArbitrageOpportunity(
            instrument="BTC", long_venue="A", short_venue="B",
            long_rate=Decimal("0.0001"), short_rate=Decimal("0.0015"), rate_spread=Decimal("0.0014"),
            spread_basis_points=Decimal("14"), estimated_daily_profit=Decimal("3"),
            optimal_notional_size=Decimal("1000"), confidence=Decimal("0.85"), risk_score=Decimal("0.3"),
        )

        await OpportunityRepository(mock_db).insert(opp)

        params = last_params(mock_db.execute)
        assert params["status"] == "identified"
        assert params["opportunity_id"] == opp.opportunity_id

    @pytest.mark.asyncio
    async def test_update_status(self, mock_db):
        await OpportunityRepository(mock_db).update_status("o1", OpportunityStatus.EXECUTED)
        assert last_params(mock_db.execute)["status"] == "executed"


class TestStrategyRepository:

    def _row(self, **overrides):
        row = {
            "strategy_id": "3f1c", "instrument": "BTC", "long_venue": "A", "short_venue": "B",
            "entry_time": NOW, "exit_time": None, "expected_profit_bps": Decimal("14"),
            "realized_pnl": None, "status": "active", "close_reason": None, "opportunity_id": None,
        }
        row.update(overrides)
        return row

    @pytest.mark.asyncio
    async def test_get_maps_row(self, mock_db):
        mock_db.fetch_one.return_value = self._row(status="closing", close_reason="manual")

        strategy = await StrategyRepository(mock_db).get("3f1c")

        assert strategy.status == StrategyStatus.CLOSING
        assert strategy.close_reason == "manual"
        assert strategy.opportunity_id is None

    @pytest.mark.asyncio
    async def test_get_missing(self, mock_db):
        assert await StrategyRepository(mock_db).get("nope") is None

    @pytest.mark.asyncio
    async def test_list_by_status(self, mock_db):
        mock_db.fetch_all.return_value = [self._row()]

        strategies = await StrategyRepository(mock_db).list_by_status([StrategyStatus.ACTIVE, StrategyStatus.CLOSING])

        assert last_params(mock_db.fetch_all)["statuses"] == ["active", "closing"]
        assert [s.strategy_id for s in strategies] == ["3f1c"]

    @pytest.mark.asyncio
    async def test_insert_and_update(self, mock_db):
        repo = StrategyRepository(mock_db)
        strategy = Strategy(instrument="BTC", long_venue="A", short_venue="B", expected_profit_bps=Decimal("14"))

        await repo.insert(strategy)
        assert last_params(mock_db.execute)["status"] == "active"

        await repo.update_status(strategy.strategy_id, StrategyStatus.KILLED, close_reason="near_liquidation")
        params = last_params(mock_db.execute)
        assert params["status"] == "killed"
        assert params["close_reason"] == "near_liquidation"
        assert params["exit_time"] is None


class TestPositionRepository:

    def _position(self):
        return Position(
            strategy_id="s1", venue="A", instrument="BTC", side=PositionSide.SHORT,
            entry_price=Decimal("100"), quantity=Decimal("10"), leverage=5,
        )

    @pytest.mark.asyncio
    async def test_insert_serialises_enums(self, mock_db):
        await PositionRepository(mock_db).insert(self._position())

        params = last_params(mock_db.execute)
        assert params["side"] == "short"
        assert params["status"] == "open"

    @pytest.mark.asyncio
    async def test_list_open_filters(self, mock_db):
        position = self._position()
        mock_db.fetch_all.return_value = [
            {
                "position_id": position.position_id, "strategy_id": "s1", "venue": "A", "instrument": "BTC",
                "side": "short", "entry_price": Decimal("100"), "quantity": Decimal("10"), "leverage": 5,
                "liquidation_price": Decimal("119"), "mark_price": Decimal("101"),
                "unrealized_pnl": Decimal("-10"), "status": "open", "opened_at": NOW, "updated_at": NOW,
            }
        ]

        legs = await PositionRepository(mock_db).list_open("s1")

        params = last_params(mock_db.fetch_all)
        assert params == {"status": "open", "strategy_id": "s1"}
        assert legs[0].side == PositionSide.SHORT
        assert legs[0].liquidation_price == Decimal("119")

    @pytest.mark.asyncio
    async def test_update(self, mock_db):
        position = self._position()
        position.status = PositionStatus.CLOSED

        await PositionRepository(mock_db).update(position)

        params = last_params(mock_db.execute)
        assert params["position_id"] == position.position_id
        assert params["status"] == "closed"


class TestAuditRepositories:

    @pytest.mark.asyncio
    async def test_trade_insert(self, mock_db):
        trade = TradeRecord(
            strategy_id="s1", venue="A", instrument="BTC", side="buy", quantity=Decimal("10"),
            price=Decimal("100"), fees=Decimal("0.6"), status="filled", order_id="A-1",
        )

        await TradeRepository(mock_db).insert(trade)

        assert last_params(mock_db.execute)["order_id"] == "A-1"

    @pytest.mark.asyncio
    async def test_risk_snapshot_insert(self, mock_db):
        snapshot = RiskSnapshot(
            total_exposure=Decimal("2000"), margin_utilization=Decimal("0.2"), unrealized_pnl=Decimal("5"),
            near_liquidation_count=0, max_drawdown_pct=Decimal("0"), active_strategy_count=1,
        )

        await RiskSnapshotRepository(mock_db).insert(snapshot)

        assert last_params(mock_db.execute)["total_exposure"] == Decimal("2000")

    @pytest.mark.asyncio
    async def test_event_metadata_is_json(self, mock_db):
        await SystemEventRepository(mock_db).insert(
            "critical", "kill_switch", "killed", metadata={"pnl": Decimal("-5")}, created_at=NOW
        )

        params = last_params(mock_db.execute)
        assert params["level"] == "CRITICAL"
        assert json.loads(params["metadata"]) == {"pnl": "-5"}
        assert params["created_at"] == NOW

    @pytest.mark.asyncio
    async def test_last_event_time(self, mock_db):
        mock_db.fetch_val.return_value = NOW

        assert await SystemEventRepository(mock_db).last_event_time("kill_switch") == NOW
        assert last_params(mock_db.fetch_val) == {"event_type": "kill_switch"}
