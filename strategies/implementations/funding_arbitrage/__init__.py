"""
Funding Arbitrage Strategy Implementation

Delta-neutral funding rate arbitrage across multiple venues.

Components:
- OpportunityAnalyzer: persistent divergence detection, liquidity sizing, scoring
- RiskLimitEngine: pre-trade limits
- ExecutionCoordinator: two-leg execution, compensating close, closure
- PositionSupervisor: live refresh and kill switch
- FundingArbEngine (engine.py): wiring and periodic loops

Only configuration and models are exported here; import the components
from their modules (the persistence layer depends on these models).
"""

from .config import (
    AnalysisConfig,
    ExecutionConfig,
    FundingArbConfig,
    KillSwitchConfig,
    RiskLimitsConfig,
    VenueConfig,
)
from .models import (
    ArbitrageOpportunity,
    OpportunityStatus,
    Position,
    PositionSide,
    PositionStatus,
    Strategy,
    StrategyStatus,
)

__all__ = [
    # Configuration
    'FundingArbConfig',
    'AnalysisConfig',
    'RiskLimitsConfig',
    'KillSwitchConfig',
    'ExecutionConfig',
    'VenueConfig',

    # Models
    'ArbitrageOpportunity',
    'OpportunityStatus',
    'Strategy',
    'StrategyStatus',
    'Position',
    'PositionSide',
    'PositionStatus',
]
