"""Base interface for venue adapters used by the arbitrage engine."""

from __future__ import annotations

from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Any, Dict, List, Optional

from .base_models import (
    AccountBalance,
    ExchangePositionSnapshot,
    FundingRate,
    OrderBookSnapshot,
    OrderRequest,
    TradeResult,
)


class BaseExchangeClient(ABC):
    """
    Capability contract every venue adapter implements.

    Adapters own the translation from venue payloads into the canonical
    types in ``base_models`` and raise the exceptions defined there:

    - ``TransientExchangeError`` (and subclasses) for retryable failures
    - ``AmbiguousOrderError`` when an order outcome is unknown
    - ``OrderRejectedError`` when the venue refuses an order

    Implementation Pattern:

        ```python
        class BybitClient(BaseExchangeClient):
            def _validate_config(self) -> None:
                validate_credentials("BYBIT_API_KEY", self.config.get("api_key"))

            def get_exchange_name(self) -> str:
                return "bybit"
        ```

    Adapters are built by ``exchange_clients.factory`` from a
    ``"module:Class"`` path and receive their ``config`` dict from YAML.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config or {}
        self._validate_config()

    def _validate_config(self) -> None:
        """Check credentials and required parameters. Override as needed."""

    @abstractmethod
    def get_exchange_name(self) -> str:
        """Venue identifier (e.g. ``"bybit"``)."""

    async def connect(self) -> None:
        """Open sessions or sockets. Default: nothing to do."""

    async def disconnect(self) -> None:
        """Release sessions or sockets. Default: nothing to do."""

    # ========================================================================
    # MARKET DATA
    # ========================================================================

    @abstractmethod
    async def get_current_funding_rate(self, instrument: str) -> FundingRate:
        """Latest funding rate for ``instrument`` (fraction per period)."""

    @abstractmethod
    async def get_funding_rate_history(self, instrument: str, hours: int) -> List[FundingRate]:
        """Funding rate observations over the trailing ``hours``, oldest first."""

    @abstractmethod
    async def get_order_book(self, instrument: str, depth: int = 50) -> OrderBookSnapshot:
        """Depth snapshot with up to ``depth`` levels per side."""

    # ========================================================================
    # TRADING
    # ========================================================================

    @abstractmethod
    async def execute_order(self, request: OrderRequest) -> TradeResult:
        """
        Submit an immediate-or-cancel order.

        Returns a ``TradeResult`` for every answer the venue gives (including
        rejections mapped to ``OrderStatus.FAILED``). Raises
        ``AmbiguousOrderError`` if the outcome cannot be determined.
        """

    @abstractmethod
    async def get_position(self, instrument: str) -> Optional[ExchangePositionSnapshot]:
        """Live position for ``instrument`` or ``None`` if flat."""

    @abstractmethod
    async def close_position(self, instrument: str) -> bool:
        """
        Flatten the position on ``instrument`` with a reduce-only market order.

        Returns True once the venue reports no position. Closing a flat
        position is a no-op returning True.
        """

    @abstractmethod
    async def set_leverage(self, instrument: str, leverage: int) -> bool:
        """Set leverage for ``instrument``. Returns True on success."""

    async def set_isolated_margin(self, instrument: str) -> bool:
        """
        Switch ``instrument`` to isolated margin.

        Returns False when the venue does not support margin-mode switching.
        """
        return False

    @abstractmethod
    async def get_balance(self) -> AccountBalance:
        """Available and used margin in quote currency."""

    def get_taker_fee(self) -> Optional[Decimal]:
        """Venue taker fee override, or None to use configured defaults."""
        return None
