"""
Funding Arbitrage Configuration Models

Pydantic models for type-safe configuration with automatic validation.
Hierarchical config structure: analysis, risk limits, kill switch, execution
and per-venue adapter settings hang off ``FundingArbConfig``.
"""

from decimal import Decimal
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator


# ============================================================================
# Venue Configuration
# ============================================================================

class VenueConfig(BaseModel):
    """Adapter wiring and trading parameters for one venue."""

    client_class: str = Field(
        ...,
        description="Adapter import path, e.g. 'my_adapters.bybit:BybitClient'"
    )

    adapter_config: Dict[str, object] = Field(
        default_factory=dict,
        description="Keyword config passed to the adapter constructor"
    )

    taker_fee: Decimal = Field(
        default=Decimal("0.0006"),
        description="Taker fee as a fraction of notional (0.0006 = 6 bps)"
    )

    rate_limit_requests: int = Field(
        default=10,
        description="Requests allowed per rate-limit window"
    )

    rate_limit_window_seconds: float = Field(
        default=1.0,
        description="Rate-limit window length in seconds"
    )

    request_timeout_seconds: float = Field(
        default=10.0,
        description="Per-call timeout for adapter requests"
    )

    max_attempts: int = Field(
        default=3,
        description="Attempts for retryable (idempotent) adapter calls"
    )

    class Config:
        validate_assignment = True


# ============================================================================
# Analysis Configuration
# ============================================================================

class AnalysisConfig(BaseModel):
    """Opportunity detection thresholds."""

    min_spread_bps: Decimal = Field(
        default=Decimal("30"),
        description="Minimum funding spread in basis points"
    )

    min_funding_rate_threshold: Decimal = Field(
        default=Decimal("0.40"),
        description="Minimum |annualized| average funding differential (0.40 = 40%)"
    )

    persistence_window_hours: int = Field(
        default=72,
        description="Trailing window used by the persistence check"
    )

    min_samples_per_venue: int = Field(
        default=5,
        description="Minimum funding observations per venue inside the window"
    )

    funding_period_hours: int = Field(
        default=8,
        description="Funding settlement period in hours"
    )

    slippage_budget: Decimal = Field(
        default=Decimal("0.005"),
        description="Depth counted within this fraction of best price (0.005 = 0.5%)"
    )

    liquidity_utilization: Decimal = Field(
        default=Decimal("0.8"),
        description="Fraction of measured liquidity a position may consume"
    )

    capital_buffer: Decimal = Field(
        default=Decimal("0.9"),
        description="Fraction of the per-position capital allocation usable"
    )

    order_book_depth: int = Field(
        default=50,
        description="Order book levels requested per side"
    )

    low_risk_instruments: List[str] = Field(
        default_factory=lambda: ["BTC", "ETH"],
        description="Instruments exempt from the risk-score instrument penalty"
    )

    notify_top_n: int = Field(
        default=3,
        description="Announce the best N opportunities per cycle"
    )

    class Config:
        validate_assignment = True


# ============================================================================
# Risk Configuration
# ============================================================================

class RiskLimitsConfig(BaseModel):
    """Pre-trade limits applied by the risk limit engine."""

    total_capital: Decimal = Field(
        default=Decimal("5000"),
        description="Capital base (USD) for exposure ratios"
    )

    position_size_percent: Decimal = Field(
        default=Decimal("20"),
        description="Per-position capital allocation in percent of total capital"
    )

    max_position_size: Decimal = Field(
        default=Decimal("1000"),
        description="Max notional (USD) per leg"
    )

    minimum_position_size: Decimal = Field(
        default=Decimal("100"),
        description="Min notional (USD) per leg"
    )

    max_concurrent_positions: int = Field(
        default=3,
        description="Max concurrently active strategies"
    )

    max_total_exposure_ratio: Decimal = Field(
        default=Decimal("0.8"),
        description="Total open notional must stay within capital x ratio"
    )

    max_instrument_concentration_ratio: Decimal = Field(
        default=Decimal("0.3"),
        description="Per-instrument notional must stay within capital x ratio"
    )

    max_risk_score: Decimal = Field(
        default=Decimal("0.7"),
        description="Reject opportunities scoring above this"
    )

    min_confidence: Decimal = Field(
        default=Decimal("0.4"),
        description="Reject opportunities with confidence below this"
    )

    kill_switch_cooldown_minutes: int = Field(
        default=60,
        description="No new strategies for this long after a kill-switch activation"
    )

    emergency_exposure_ratio: Decimal = Field(
        default=Decimal("0.9"),
        description="Exposure/capital ratio that triggers emergency reduction"
    )

    target_exposure_ratio: Decimal = Field(
        default=Decimal("0.7"),
        description="Emergency reduction closes strategies until exposure is below capital x ratio"
    )

    oversize_warning_tolerance: Decimal = Field(
        default=Decimal("1.1"),
        description="Warn when a leg exceeds max_position_size x tolerance"
    )

    @property
    def capital_allocation(self) -> Decimal:
        return self.total_capital * self.position_size_percent / Decimal("100")

    class Config:
        validate_assignment = True


class KillSwitchConfig(BaseModel):
    """Thresholds evaluated by the position supervisor every cycle."""

    near_liquidation_percent: Decimal = Field(
        default=Decimal("15"),
        description="Kill when any leg is closer than this % to liquidation"
    )

    max_drawdown_percent: Decimal = Field(
        default=Decimal("10"),
        description="Kill when a leg's loss exceeds this % of entry notional"
    )

    max_size_mismatch_percent: Decimal = Field(
        default=Decimal("20"),
        description="Kill when leg notionals differ by more than this %"
    )

    oversize_tolerance: Decimal = Field(
        default=Decimal("1.2"),
        description="Kill when a leg exceeds max_position_size x tolerance"
    )

    @field_validator("near_liquidation_percent")
    @classmethod
    def _near_liq_range(cls, value: Decimal) -> Decimal:
        if not Decimal("0") < value <= Decimal("100"):
            raise ValueError("near_liquidation_percent must be within (0, 100]")
        return value

    @field_validator("oversize_tolerance")
    @classmethod
    def _oversize_range(cls, value: Decimal) -> Decimal:
        if value < Decimal("1"):
            raise ValueError("oversize_tolerance must be >= 1")
        return value

    class Config:
        validate_assignment = True


# ============================================================================
# Execution Configuration
# ============================================================================

class ExecutionConfig(BaseModel):
    leverage: int = Field(
        default=5,
        description="Leverage set on both venues before entry"
    )

    use_isolated_margin: bool = Field(
        default=True,
        description="Request isolated margin where the venue supports it"
    )

    max_quantity_mismatch: Decimal = Field(
        default=Decimal("0.01"),
        description="Max |long - short| / avg quantity accepted after fills"
    )

    opportunity_max_age_seconds: int = Field(
        default=120,
        description="Opportunities older than this are not executed"
    )

    maintenance_margin_rate: Decimal = Field(
        default=Decimal("0.01"),
        description="Used to estimate liquidation price when the venue reports none"
    )

    max_executions_per_cycle: int = Field(
        default=1,
        description="Max strategies opened per analysis cycle"
    )

    class Config:
        validate_assignment = True


# ============================================================================
# Main Configuration
# ============================================================================

class FundingArbConfig(BaseModel):
    """
    Main funding arbitrage configuration.

    All settings for the engine, loaded from YAML by
    ``trading_config.config_yaml.build_funding_arb_config``.
    """

    strategy_name: str = Field(
        default="funding_arbitrage",
        description="Engine identifier used in logs"
    )

    instruments: List[str] = Field(
        ...,
        description="Instrument symbols resolved across venues (e.g. ['BTC', 'ETH'])"
    )

    venues: Dict[str, VenueConfig] = Field(
        default_factory=dict,
        description="Venue name -> adapter settings"
    )

    analysis_interval_seconds: int = Field(
        default=60,
        description="Opportunity analysis cadence"
    )

    supervisor_interval_seconds: int = Field(
        default=5,
        description="Position supervision cadence"
    )

    risk_snapshot_interval_seconds: int = Field(
        default=60,
        description="Risk snapshot / exposure enforcement cadence"
    )

    auto_execute: bool = Field(
        default=True,
        description="Execute approved opportunities automatically"
    )

    fail_fast_market_data: bool = Field(
        default=False,
        description="Market-data calls fail instead of waiting for a rate-limit slot"
    )

    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    risk: RiskLimitsConfig = Field(default_factory=RiskLimitsConfig)
    kill_switch: KillSwitchConfig = Field(default_factory=KillSwitchConfig)
    execution: ExecutionConfig = Field(default_factory=ExecutionConfig)

    @field_validator("instruments")
    @classmethod
    def _normalize_instruments(cls, value: List[str]) -> List[str]:
        normalized = [symbol.strip().upper() for symbol in value if symbol and symbol.strip()]
        if not normalized:
            raise ValueError("at least one instrument is required")
        return normalized

    def taker_fee_for(self, venue: str, default: Optional[Decimal] = None) -> Decimal:
        venue_config = self.venues.get(venue)
        if venue_config is not None:
            return venue_config.taker_fee
        return default if default is not None else Decimal("0.0006")

    class Config:
        validate_assignment = True
