#!/usr/bin/env python3
"""
Signal Engine - Prediction Market Arbitrage & Flash-Move Trader

Streams Polymarket order-book data, reports intra-market arbitrage, and
trades flash moves (paper by default).

Usage:
    python main.py                          # Run with default config
    python main.py --config my.yaml         # Run with custom config
    python main.py --preset conservative    # Use a flash-move preset
    python main.py --live                   # Submit real orders (needs PRIVATE_KEY)
"""

import asyncio
import argparse
import logging
import signal
import sys
from dataclasses import replace
from typing import Optional

from loguru import logger

from signal_engine.arbitrage import ArbitrageScanner, MarketStateStore
from signal_engine.config import AppConfig, ConfigError, flash_preset, load_config
from signal_engine.database import Database
from signal_engine.events import ConnectionExhausted, EventBus, FlashMoveExecuted, OpportunityDetected
from signal_engine.execution import ClobTradeExecutor, PaperTradeExecutor, TradeExecutor
from signal_engine.flash import FlashMoveOrchestrator, MarketMetadataResolver
from signal_engine.ingestion import ConnectionManager, MarketDataRouter, OrderBookPoller

STATUS_INTERVAL_SECONDS = 60


class SignalEngineApp:
    """
    Main application class for the signal engine.

    Orchestrates:
    - Market socket and polling fallback
    - Arbitrage scanner
    - Flash-move pipeline and its trade executor
    - Flash-move persistence
    """

    def __init__(self, config: AppConfig):
        self.config = config

        self.bus = EventBus()
        self.store = MarketStateStore()
        self.router = MarketDataRouter(self.bus)

        self.connection: Optional[ConnectionManager] = None
        self.poller: Optional[OrderBookPoller] = None
        self.scanner: Optional[ArbitrageScanner] = None
        self.flash: Optional[FlashMoveOrchestrator] = None
        self.metadata: Optional[MarketMetadataResolver] = None
        self.executor: Optional[TradeExecutor] = None
        self.db: Optional[Database] = None

        self._status_task: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()
        self._is_running = False

    def _setup_logging(self):
        """Configure loguru sinks and route stdlib loggers to stderr"""
        level = self.config.logging.level.upper()

        logger.remove()
        logger.add(
            sys.stderr,
            level=level,
            format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | <cyan>{name}</cyan>:<cyan>{function}</cyan>:<cyan>{line}</cyan> - <level>{message}</level>"
        )

        if self.config.logging.file:
            logger.add(
                self.config.logging.file,
                level=level,
                rotation="10 MB",
                retention="7 days"
            )

        logging.basicConfig(
            level=level,
            format="%(asctime)s | %(levelname)-8s | %(name)s - %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S",
        )
        logging.getLogger("aiohttp").setLevel(logging.WARNING)
        logging.getLogger("websockets").setLevel(logging.WARNING)

    def _create_executor(self) -> TradeExecutor:
        execution = self.config.execution
        if execution.live_trading:
            return ClobTradeExecutor(
                private_key=execution.private_key,
                funder=execution.funder,
                max_order_usd=execution.max_order_usd,
                dry_run=False,
            )
        return PaperTradeExecutor()

    async def initialize(self):
        """Initialize all components"""
        self._setup_logging()
        logger.info("Initializing Signal Engine...")

        self.connection = ConnectionManager(
            on_message=self.router.dispatch,
            bus=self.bus,
            config=self.config.connection,
        )
        self.bus.subscribe(ConnectionExhausted, self._on_connection_exhausted)

        if self.config.poller.enabled:
            self.poller = OrderBookPoller(
                self.bus,
                is_socket_connected=lambda: self.connection.is_connected,
                config=self.config.poller,
            )

        if self.config.arbitrage.enabled:
            self.scanner = ArbitrageScanner(
                self.bus,
                store=self.store,
                connection=self.connection,
                poller=self.poller,
                config=self.config.arbitrage,
            )
            self.bus.subscribe(OpportunityDetected, self._on_opportunity)

        if self.config.flash.enabled:
            if self.config.database.enabled:
                self.db = Database(self.config.database.path)
                await self.db.initialize()

            self.executor = self._create_executor()
            self.metadata = MarketMetadataResolver(store=self.store)
            self.flash = FlashMoveOrchestrator(
                self.bus,
                config=self.config.flash,
                trade_executor=self.executor,
                persistence=self.db,
                metadata=self.metadata,
            )
            self.bus.subscribe(FlashMoveExecuted, self._on_flash_executed)

            mode = "LIVE" if self.config.execution.live_trading else "PAPER"
            logger.info(
                f"Flash trading {mode} | base ${self.config.flash.base_trade_size:.2f} | "
                f"strategy {self.config.flash.preferred_strategy}"
            )

        logger.info("Initialization complete")

    async def _on_opportunity(self, event: OpportunityDetected):
        opp = event.opportunity
        logger.info(
            f"ARBITRAGE: {opp.question[:60]} | cost ${opp.combined_cost:.4f} | "
            f"profit ${opp.potential_profit:.4f} | ROI {opp.roi:.2f}%"
        )

    async def _on_flash_executed(self, event: FlashMoveExecuted):
        result = event.result
        logger.info(
            f"Flash trade filled: {event.event.question or event.event.token_id} | "
            f"{result.shares_filled or 0:.2f} @ {result.price_filled or 0:.4f} | order {result.order_id}"
        )

    def _on_connection_exhausted(self, event: ConnectionExhausted):
        logger.error(f"Market socket gave up after {event.attempts} reconnect attempts, shutting down")
        # Outside the bus: stop() drains pending handlers
        asyncio.create_task(self.stop())

    async def start(self):
        """Start the signal engine"""
        if self._is_running:
            return

        self._is_running = True
        logger.info("Starting Signal Engine...")

        if self.scanner:
            self.scanner.start()
        if self.flash:
            await self.flash.set_enabled(True)
        if self.poller:
            await self.poller.start()
        await self.connection.start()

        self._status_task = asyncio.create_task(self._status_loop())
        logger.info("Signal Engine started - streaming market data")

        await self._stopped.wait()

    async def _status_loop(self):
        while self._is_running:
            await asyncio.sleep(STATUS_INTERVAL_SECONDS)
            self._log_status()

    def _log_status(self):
        conn = self.connection.get_stats()
        parts = [f"socket {conn['state']}", f"{conn['messages_received']} msgs"]
        if self.scanner:
            parts.append(f"{len(self.scanner.get_latest_opportunities())} live arbs")
        if self.flash:
            status = self.flash.get_status()
            parts.append(
                f"{status['active_positions']} positions, "
                f"{status['total_executed']} executed ({status['success_rate']:.0f}% ok)"
            )
        logger.info("Status: " + " | ".join(parts))

    async def stop(self):
        """Stop the signal engine"""
        if not self._is_running:
            return

        logger.info("Stopping Signal Engine...")
        self._is_running = False

        if self._status_task:
            self._status_task.cancel()

        if self.flash:
            await self.flash.set_enabled(False)
        if self.scanner:
            self.scanner.stop()
        if self.poller:
            await self.poller.stop()
        if self.connection:
            await self.connection.stop()

        await self.bus.drain()

        if self.metadata:
            await self.metadata.close()
        if self.executor:
            self.executor.shutdown()
        if self.db:
            await self.db.close()

        logger.info("Signal Engine stopped")
        self._stopped.set()


def build_config(args) -> AppConfig:
    config = load_config(args.config)

    if args.preset:
        # Preset replaces the flash section; explicit enable/disable still applies below
        config.flash = replace(flash_preset(args.preset), enabled=config.flash.enabled)
    if args.live:
        config.execution.live_trading = True
    if args.no_flash:
        config.flash.enabled = False
    if args.no_arbitrage:
        config.arbitrage.enabled = False

    config.flash.validate()
    return config


async def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Signal Engine - Prediction Market Arbitrage & Flash-Move Trader"
    )
    parser.add_argument(
        '--config', '-c',
        default='config.yaml',
        help='Path to configuration file'
    )
    parser.add_argument(
        '--preset',
        choices=['default', 'conservative', 'aggressive'],
        help='Flash-move preset (overrides the flash section of the config)'
    )
    parser.add_argument(
        '--live',
        action='store_true',
        help='Submit real orders to the CLOB (default: paper trading)'
    )
    parser.add_argument(
        '--no-flash',
        action='store_true',
        help='Disable flash-move detection and trading'
    )
    parser.add_argument(
        '--no-arbitrage',
        action='store_true',
        help='Disable the arbitrage scanner'
    )

    args = parser.parse_args()

    try:
        config = build_config(args)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)

    if config.execution.live_trading and not config.execution.private_key:
        logger.error("Live trading requires PRIVATE_KEY to be set in .env")
        sys.exit(2)

    app = SignalEngineApp(config)

    # Setup signal handlers
    loop = asyncio.get_running_loop()

    def signal_handler():
        logger.info("Received shutdown signal")
        asyncio.create_task(app.stop())

    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, signal_handler)

    try:
        await app.initialize()
        await app.start()
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        await app.stop()


if __name__ == "__main__":
    asyncio.run(main())
