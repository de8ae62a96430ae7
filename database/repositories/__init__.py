"""
Database repositories
"""

from database.repositories.event_repository import SystemEventRepository
from database.repositories.funding_rate_repository import FundingRateRepository
from database.repositories.opportunity_repository import OpportunityRepository
from database.repositories.position_repository import PositionRepository
from database.repositories.risk_snapshot_repository import RiskSnapshotRepository
from database.repositories.strategy_repository import StrategyRepository
from database.repositories.trade_repository import TradeRepository

__all__ = [
    "FundingRateRepository",
    "OpportunityRepository",
    "PositionRepository",
    "RiskSnapshotRepository",
    "StrategyRepository",
    "SystemEventRepository",
    "TradeRepository",
]
