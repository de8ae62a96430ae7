"""
Unified logging for the funding arbitrage engine.

Every component logs through a loguru logger bound with a component id
(``TYPE:NAME[:key=value...]``) so that console output, the shared history
file and the per-session file all carry the same source tag:

- exchange adapters      -> get_exchange_logger("bybit", ticker="BTC")
- engine components      -> get_strategy_logger("funding_arbitrage")
- long-running services  -> get_service_logger("market_data")
- utilities              -> get_core_logger("rate_limiter")
"""

import os
import sys
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from loguru import logger as _logger


_CONSOLE_FLAG = "_arb_engine_console_setup"
_HISTORY_FLAG = "_arb_engine_history_setup"
_SESSION_FLAG = "_arb_engine_session_setup"

_SOURCE_WIDTH = 55
_FILE_FORMAT = (
    "{time:YYYY-MM-DD HH:mm:ss} | "
    "{level:<8} | "
    "{extra[component_id]:<35} | "
    "{message}"
)


def _logs_dir() -> Path:
    override = os.getenv("ARB_LOG_DIR")
    path = Path(override) if override else Path(__file__).parent.parent / "logs"
    path.mkdir(parents=True, exist_ok=True)
    return path


def _shorten_module(module: str, max_width: int) -> str:
    if len(module) <= max_width:
        return module

    parts = module.split(".")
    for idx in range(len(parts) - 2, -1, -1):
        candidate = ".".join(parts[idx:])
        if len(candidate) + 3 <= max_width:
            return f"...{candidate}"

    last = parts[-1]
    return f"...{last[-(max_width - 3):]}" if len(last) + 3 > max_width else f"...{last}"


def _console_filter(record) -> bool:
    if not record["extra"].get("component_id"):
        return False

    module_name = record.get("module") or record.get("name", "")
    function_name = record.get("function", "")
    suffix = f":{function_name}:{record.get('line', 0)}" if function_name else f":{record.get('line', 0)}"

    available = _SOURCE_WIDTH - len(suffix)
    module_display = "..." if available <= 3 else _shorten_module(module_name, available)

    # Right-aligned so every message starts at the same column
    source_location = f"{module_display}{suffix}"
    record["extra"]["short_name"] = f"{source_location:>{_SOURCE_WIDTH}}"
    return True


def _ensure_component(record) -> bool:
    record["extra"].setdefault("component_id", "UNKNOWN")
    return True


class UnifiedLogger:
    """
    Component-scoped wrapper around the shared loguru logger.

    Handlers are installed once per process (console, ``unified_history.log``
    and ``session_<ts>.log``); each instance only binds its component id.
    """

    def __init__(
        self,
        component_type: str,
        component_name: str,
        context: Optional[Dict[str, Any]] = None,
        log_to_console: bool = True,
        log_level: str = "INFO",
    ):
        self.component_type = component_type.upper()
        self.component_name = component_name.upper()
        self.context = context or {}
        self.log_level = log_level.upper()
        self.log_to_console = log_to_console

        self.component_id = f"{self.component_type}:{self.component_name}"
        if self.context:
            context_str = ":".join(f"{k}={v}" for k, v in self.context.items())
            self.component_id = f"{self.component_id}:{context_str}"

        self._setup_handlers()
        self._logger = _logger.bind(component_id=self.component_id)

    def _setup_handlers(self) -> None:
        if not hasattr(_logger, _CONSOLE_FLAG):
            _logger.remove()
            if self.log_to_console:
                _logger.add(
                    sys.stdout,
                    format=(
                        "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
                        "<level>{level: <8}</level> | "
                        "<cyan>{extra[short_name]}</cyan> | "
                        "<level>{message}</level>"
                    ),
                    level=self.log_level,
                    colorize=True,
                    filter=_console_filter,
                    backtrace=True,
                    diagnose=False,
                )
            setattr(_logger, _CONSOLE_FLAG, True)

        logs_dir = _logs_dir()

        if not hasattr(_logger, _HISTORY_FLAG):
            _logger.add(
                str(logs_dir / "unified_history.log"),
                format=_FILE_FORMAT,
                level="DEBUG",
                filter=_ensure_component,
                rotation="50 MB",
                retention=5,
                enqueue=True,
                catch=True,
            )
            setattr(_logger, _HISTORY_FLAG, True)

        if not hasattr(_logger, _SESSION_FLAG):
            session_ts = datetime.now().strftime("%Y%m%d_%H%M%S")
            _logger.add(
                str(logs_dir / f"session_{session_ts}.log"),
                format=_FILE_FORMAT,
                level="DEBUG",
                filter=_ensure_component,
                enqueue=True,
                catch=True,
            )
            setattr(_logger, _SESSION_FLAG, True)

    def debug(self, message: str, **kwargs):
        self._logger.opt(depth=1).debug(message, **kwargs)

    def info(self, message: str, **kwargs):
        self._logger.opt(depth=1).info(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self._logger.opt(depth=1).warning(message, **kwargs)

    def error(self, message: str, **kwargs):
        self._logger.opt(depth=1).error(message, **kwargs)

    def critical(self, message: str, **kwargs):
        self._logger.opt(depth=1).critical(message, **kwargs)

    def exception(self, message: str, **kwargs):
        """Log at ERROR level with the active traceback attached."""
        self._logger.opt(depth=1, exception=True).error(message, **kwargs)

    def log(self, message: str, level: str = "INFO", **kwargs):
        """Log at a level given by name (DEBUG/INFO/WARNING/ERROR/CRITICAL)."""
        level = level.upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            level = "INFO"
        self._logger.opt(depth=1).log(level, message, **kwargs)

    def log_order(self, venue: str, order_id: str, side: str, quantity: Any, price: Any, status: str):
        """Structured one-line record of an order outcome."""
        self._logger.opt(depth=1).info(
            f"ORDER [{venue}] {side.upper()} {quantity} @ {price} | Order: {order_id} | Status: {status}",
            order_id=order_id,
            side=side,
            quantity=str(quantity),
            price=str(price),
            status=status,
        )

    @staticmethod
    async def complete() -> None:
        """Wait for enqueued records to reach their sinks (call before exit)."""
        await _logger.complete()


def get_logger(
    component_type: str,
    component_name: str,
    context: Optional[Dict[str, Any]] = None,
    log_to_console: bool = True,
    log_level: Optional[str] = None,
) -> UnifiedLogger:
    """
    Create a component logger.

    ``log_level`` defaults to the ``LOG_LEVEL`` environment variable, then INFO.
    The level only applies to the console handler, which is created by the
    first logger of the process.
    """
    if log_level is None:
        log_level = os.getenv("LOG_LEVEL", "INFO")

    return UnifiedLogger(
        component_type=component_type,
        component_name=component_name,
        context=context,
        log_to_console=log_to_console,
        log_level=log_level,
    )


def get_exchange_logger(exchange_name: str, ticker: str = None, **context) -> UnifiedLogger:
    ctx = {"ticker": ticker} if ticker else {}
    ctx.update(context)
    return get_logger("exchange", exchange_name, ctx)


def get_strategy_logger(strategy_name: str, **context) -> UnifiedLogger:
    return get_logger("strategy", strategy_name, context)


def get_service_logger(service_name: str, **context) -> UnifiedLogger:
    return get_logger("service", service_name, context)


def get_core_logger(module_name: str, **context) -> UnifiedLogger:
    return get_logger("core", module_name, context)


def log_stage(
    logger_obj: UnifiedLogger,
    title: str,
    *,
    icon: Optional[str] = None,
    stage_id: Optional[str] = None,
    border: str = "=",
    width: int = 55,
    level: str = "INFO",
) -> None:
    """Emit a bordered banner to mark an execution phase in the logs."""
    label_parts = []
    if stage_id:
        label_parts.append(f"{stage_id}.")
    if icon:
        label_parts.append(icon)
    label_parts.append(title)

    border_line = border * width
    for line in (border_line, " ".join(label_parts), border_line):
        logger_obj.log(line, level=level)
