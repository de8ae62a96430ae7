#!/usr/bin/env python3
"""
Funding Arbitrage Engine - config-driven launcher.

Usage:
    python runbot.py --config configs/funding_arb.yml [--env-file .env] [--no-api]

Deployment settings (DATABASE_URL, TELEGRAM_*, CONTROL_API_*) come from the
environment / env file; engine behaviour comes from the YAML config.
"""

import argparse
import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

import dotenv


def parse_arguments():
    """Parse command line arguments (config-only workflow)."""
    parser = argparse.ArgumentParser(
        description="Run the cross-venue funding arbitrage engine from a YAML configuration."
    )

    parser.add_argument(
        "--config",
        "-c",
        type=str,
        required=True,
        help="Path to the YAML engine configuration.",
    )

    parser.add_argument(
        "--env-file",
        type=str,
        default=".env",
        help="Path to the environment file with database / Telegram settings (default: .env).",
    )

    parser.add_argument(
        "--log-level",
        "-l",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: LOG_LEVEL from settings).",
    )

    parser.add_argument(
        "--no-api",
        action="store_true",
        help="Do not start the control API server.",
    )

    return parser.parse_args()


def setup_logging(log_level: str):
    """Quieten standard-library loggers of third-party packages."""
    # UnifiedLogger (loguru) reads LOG_LEVEL when its handlers are installed
    os.environ['LOG_LEVEL'] = log_level

    logging.getLogger().setLevel(getattr(logging, log_level.upper(), logging.INFO))
    for noisy in ('urllib3', 'requests', 'asyncio', 'databases', 'uvicorn.access'):
        logging.getLogger(noisy).setLevel(logging.WARNING)


async def run(args) -> int:
    from database.connection import create_database
    from database.store import ArbitrageStore
    from exchange_clients.factory import ExchangeFactory
    from helpers.event_notifier import ArbEventNotifier
    from helpers.telegram_bot import TelegramBot
    from helpers.unified_logger import UnifiedLogger, get_core_logger
    from strategies.implementations.funding_arbitrage.engine import FundingArbEngine, build_guarded_clients
    from trading_config.config_yaml import load_funding_arb_config
    from trading_config.settings import load_settings

    logger = get_core_logger("runbot")

    settings = load_settings(args.env_file if Path(args.env_file).exists() else None)
    config = load_funding_arb_config(args.config)
    logger.info(f"✓ Loaded configuration from: {args.config} ({config.strategy_name})")

    database = create_database(settings)
    store = ArbitrageStore(database)
    await store.connect()

    telegram_bot = None
    if settings.telegram_enabled:
        telegram_bot = TelegramBot(settings.telegram_bot_token, settings.telegram_chat_id)
    notifier = ArbEventNotifier(
        telegram_bot=telegram_bot,
        forward_events=settings.forward_events,
    )

    raw_clients = ExchangeFactory.create_multiple_exchanges(config.venues)
    clients = build_guarded_clients(config, raw_clients)
    engine = FundingArbEngine(config, clients, store, notifier)

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, lambda: asyncio.ensure_future(engine.stop()))
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    server = None
    if settings.control_api_enabled and not args.no_api:
        import uvicorn

        from strategies.control.server import create_app

        app = create_app(engine, api_key=settings.control_api_key)
        server = uvicorn.Server(
            uvicorn.Config(
                app,
                host=settings.control_api_host,
                port=settings.control_api_port,
                log_level="warning",
            )
        )
        # the engine's signal handlers stop the loops; uvicorn is stopped below
        server.install_signal_handlers = lambda: None
        logger.info(f"Control API on http://{settings.control_api_host}:{settings.control_api_port}")

    server_task = asyncio.ensure_future(server.serve()) if server is not None else None
    try:
        await engine.start()
    finally:
        if server_task is not None:
            server.should_exit = True
            await server_task
        await engine.shutdown()
        await store.disconnect()
        logger.info("Engine stopped")
        await UnifiedLogger.complete()
    return 0


def main():
    """Main entry point."""
    args = parse_arguments()

    env_path = Path(args.env_file)
    if env_path.exists():
        dotenv.load_dotenv(env_path)
    elif args.env_file != ".env":
        print(f"Env file not found: {env_path.resolve()}")
        sys.exit(1)

    setup_logging(args.log_level or os.getenv("LOG_LEVEL", "INFO"))

    config_path = Path(args.config)
    if not config_path.exists():
        print(f"Error: Config file not found: {config_path}")
        sys.exit(1)

    try:
        sys.exit(asyncio.run(run(args)))
    except KeyboardInterrupt:
        sys.exit(0)


if __name__ == "__main__":
    main()
