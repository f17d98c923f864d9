#!/usr/bin/env python3
"""
Briefing Runner
===============

Command-line entry point: analyzes the watchlist and prints the
resulting recommendations.

Usage:
------
# Run continuously, one briefing every 30 minutes (default)
python -m tradepilot.run_briefing

# Run one briefing and exit
python -m tradepilot.run_briefing --once

# Specific symbols
python -m tradepilot.run_briefing --once --symbols AAPL,MSFT

# Backtest one symbol over its daily history
python -m tradepilot.run_briefing --backtest AAPL --step 5

Environment Variables:
---------------------
See tradepilot/config.py for the full list of configuration options.

Required:
- A market data key for MARKET_DATA_PROVIDER (or MARKET_DATA_PROVIDER=mock)
- A reasoning backend: OPENAI_API_KEY, ANTHROPIC_API_KEY, GROQ_API_KEY,
  or AI_PROVIDER=ollama with a reachable OLLAMA_URL
"""

import asyncio
import argparse
import json
import logging
import signal
import sys

from tradepilot.config import Config
from tradepilot.engine.backtest import BacktestEngine
from tradepilot.engine.briefing import run_briefing
from tradepilot.engine.orchestrator import build_engine
from tradepilot.providers import Interval

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    handlers=[
        logging.StreamHandler(sys.stdout),
    ]
)
logger = logging.getLogger(__name__)


async def run_once(config: Config) -> dict:
    """Run one briefing over the watchlist and return the report."""
    engine = build_engine(config)
    try:
        report = await run_briefing(engine, config.watchlist, delay_seconds=config.briefing_delay_seconds)
        print(report.summary())
        return report.to_dict()
    finally:
        await engine.close()


async def run_continuous(config: Config, interval_minutes: float):
    """
    Run a briefing every `interval_minutes` until interrupted.

    Runs until Ctrl+C or SIGTERM.
    """
    engine = build_engine(config)
    shutdown_event = asyncio.Event()

    def handle_shutdown(sig):
        logger.info(f"Received signal {sig}, shutting down...")
        shutdown_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        try:
            loop.add_signal_handler(sig, lambda s=sig: handle_shutdown(s))
        except NotImplementedError:
            # Windows doesn't support add_signal_handler
            pass

    try:
        while not shutdown_event.is_set():
            report = await run_briefing(engine, config.watchlist, delay_seconds=config.briefing_delay_seconds)
            print(report.summary())
            try:
                await asyncio.wait_for(shutdown_event.wait(), timeout=interval_minutes * 60)
            except asyncio.TimeoutError:
                pass
    finally:
        stats = engine.get_stats()
        await engine.close()
        logger.info("Final stats:")
        for key, value in stats.items():
            logger.info(f"  {key}: {value}")


async def run_backtest(config: Config, symbol: str, step: int) -> dict:
    """Backtest `symbol` over the provider's daily history."""
    engine = build_engine(config)
    try:
        candles = await engine.gateway.candles(symbol, Interval.DAILY, outputsize=500)
        backtest = BacktestEngine(engine.backend, engine.ai_budget, persona=engine.persona)
        result = await backtest.run(symbol, candles, step=step)
        print(json.dumps(result.metrics.to_dict(), indent=2))
        return result.to_dict()
    finally:
        await engine.close()


def main():
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="TradePilot Briefing Runner",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--once",
        action="store_true",
        help="Run one briefing and exit (default: run continuously)",
    )

    parser.add_argument(
        "--symbols",
        help="Comma-separated symbols overriding WATCHLIST",
    )

    parser.add_argument(
        "--interval",
        type=float,
        default=30.0,
        help="Minutes between briefings in continuous mode",
    )

    parser.add_argument(
        "--backtest",
        metavar="SYMBOL",
        help="Backtest one symbol over its daily history instead of briefing",
    )

    parser.add_argument(
        "--step",
        type=int,
        default=5,
        help="Bars between analyses while flat in --backtest mode",
    )

    parser.add_argument(
        "--show-config",
        action="store_true",
        help="Print configuration and exit",
    )

    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )

    args = parser.parse_args()

    # Set log level
    if args.debug:
        logging.getLogger().setLevel(logging.DEBUG)

    # Load configuration
    config = Config.from_env()
    if args.symbols:
        config.watchlist = [s.strip().upper() for s in args.symbols.split(",") if s.strip()]

    if args.show_config:
        config.print_summary()
        return

    logger.info("=" * 60)
    logger.info("TradePilot - Recommendation Briefing")
    logger.info("=" * 60)
    config.print_summary()

    if config.market_data_provider != "mock" and not config.market_data_api_key and not config.vault_addr:
        logger.warning(f"No API key configured for {config.market_data_provider}!")
        logger.warning("Set the provider key, configure Vault, or use MARKET_DATA_PROVIDER=mock.")

    try:
        if args.backtest:
            asyncio.run(run_backtest(config, args.backtest, args.step))
        elif args.once:
            asyncio.run(run_once(config))
        else:
            asyncio.run(run_continuous(config, args.interval))

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    except Exception as e:
        logger.exception(f"Briefing failed: {e}")
        sys.exit(1)

    logger.info("Briefing shutdown complete")


if __name__ == "__main__":
    main()
