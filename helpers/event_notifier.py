"""
Arbitrage event notifier.

Records every engine event locally as JSONL (``logs/arb_events.jsonl``) and
forwards selected events to Telegram. Notification is fire-and-forget:
a failing sink is logged and never propagates into the trading loop.
"""

from __future__ import annotations

import asyncio
import json
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Optional

from helpers.telegram_bot import TelegramBot
from helpers.unified_logger import get_core_logger


class ArbEvent(str, Enum):
    OPPORTUNITY_FOUND = "OpportunityFound"
    TRADE_EXECUTED = "TradeExecuted"
    POSITION_KILLED = "PositionKilled"
    RISK_WARNING = "RiskWarning"
    UNHEDGED_EXPOSURE = "UnhedgedExposure"
    DATA_INTEGRITY = "DataIntegrity"


# Forwarded to Telegram even when the event is not in the configured set
ALWAYS_FORWARD = frozenset(
    {ArbEvent.POSITION_KILLED, ArbEvent.UNHEDGED_EXPOSURE, ArbEvent.DATA_INTEGRITY}
)

_EVENT_ICONS = {
    ArbEvent.OPPORTUNITY_FOUND: "🔍",
    ArbEvent.TRADE_EXECUTED: "✅",
    ArbEvent.POSITION_KILLED: "⛔",
    ArbEvent.RISK_WARNING: "⚠️",
    ArbEvent.UNHEDGED_EXPOSURE: "🚨",
    ArbEvent.DATA_INTEGRITY: "🚨",
}


def _json_default(value: Any) -> Any:
    if isinstance(value, Decimal):
        return str(value)
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, Enum):
        return value.value
    return str(value)


class ArbEventNotifier:
    """
    Alert dispatcher for the arbitrage engine.

    Args:
        telegram_bot: Optional pre-built bot. When omitted, nothing is sent
            to Telegram and events are only recorded locally.
        forward_events: Event types forwarded to Telegram in addition to
            ``ALWAYS_FORWARD``.
        history_path: JSONL file receiving every event.
    """

    def __init__(
        self,
        *,
        telegram_bot: Optional[TelegramBot] = None,
        forward_events: Optional[Iterable[ArbEvent]] = None,
        history_path: Optional[Path] = None,
    ) -> None:
        self.logger = get_core_logger("event_notifier")
        self._telegram_bot = telegram_bot
        self._forward = set(ALWAYS_FORWARD) | {ArbEvent(e) for e in (forward_events or ())}

        if history_path is None:
            history_path = Path("logs") / "arb_events.jsonl"
        history_path.parent.mkdir(parents=True, exist_ok=True)
        self.history_path = history_path

        self._pending: set[asyncio.Future] = set()

    def notify(self, event: ArbEvent, payload: Dict[str, Any], *, message: str = "") -> None:
        """Record the event and, when configured, forward it to Telegram."""
        event = ArbEvent(event)
        record = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "event_type": event.value,
            "message": message,
            "payload": payload,
        }

        self._write_history(record)

        if self._telegram_bot is not None and event in self._forward:
            self._send_telegram(event, record)

    def _write_history(self, record: Dict[str, Any]) -> None:
        try:
            with self.history_path.open("a", encoding="utf-8") as handle:
                handle.write(json.dumps(record, ensure_ascii=False, default=_json_default))
                handle.write("\n")
        except OSError as exc:
            self.logger.warning(f"Failed to write event history: {exc}")

    def _format(self, event: ArbEvent, record: Dict[str, Any]) -> str:
        lines = [f"{_EVENT_ICONS.get(event, '')} <b>{event.value}</b>".strip()]
        if record.get("message"):
            lines.append(record["message"])
        payload = record.get("payload") or {}
        if payload:
            lines.append("")
            lines.extend(f"{key}: {_json_default(value) if not isinstance(value, (str, int)) else value}"
                         for key, value in sorted(payload.items()))
        return "\n".join(lines)

    def _send_telegram(self, event: ArbEvent, record: Dict[str, Any]) -> None:
        text = self._format(event, record)
        bot = self._telegram_bot

        def _send() -> None:
            try:
                bot.send_text(text)
            except Exception as exc:
                self.logger.warning(f"Telegram send failed for {event.value}: {exc}")

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            _send()
            return

        future = loop.run_in_executor(None, _send)
        self._pending.add(future)
        future.add_done_callback(self._pending.discard)

    async def drain(self) -> None:
        """Wait for in-flight Telegram sends (used on shutdown)."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)
