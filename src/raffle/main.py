#!/usr/bin/env python3
"""
Raffle Application

Main entry point: builds the engine and its collaborators from configuration,
then runs the upkeep operator and the FastAPI web server until signalled.
"""

import asyncio
import signal
import sys
from pathlib import Path
from typing import Any, Dict, Optional

from dotenv import load_dotenv

from raffle.coordinator import RandomnessCoordinator
from raffle.engine import RaffleEngine
from raffle.event_manager import ActivityStore
from raffle.operator import UpkeepOperator
from raffle.payments import PaymentLedger
from raffle.utils.common import format_eth
from raffle.utils.config import get_config_value, load_config, resolve_raffle_settings
from raffle.utils.logger import get_logger
from raffle.web_server import RaffleWebServer

logger = get_logger(__name__)


def build_components(config: Dict[str, Any]):
    """Construct engine, store, operator and web server from a config dict."""
    settings = resolve_raffle_settings(config)

    engine = RaffleEngine(
        settings.entrance_fee,
        settings.interval,
        coordinator=RandomnessCoordinator(),
        payment_sink=PaymentLedger(),
    )

    store = ActivityStore(
        feed_capacity=int(get_config_value(config, "event_manager.live_feed_max_entries", 100)),
        history_capacity=int(get_config_value(config, "event_manager.round_history_max", 20)),
    )
    store.attach(engine)

    operator: Optional[UpkeepOperator] = None
    if get_config_value(config, "operator.enabled", True):
        operator = UpkeepOperator(engine, config, auto_fulfill=settings.auto_fulfill)

    web_server = RaffleWebServer(config, engine, store, operator)
    return settings, engine, store, operator, web_server


class RaffleApp:
    """Raffle application.

    Responsible for initializing and orchestrating the engine, upkeep operator
    and web server. Handles graceful shutdown on SIGINT/SIGTERM.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None):
        self.config = config if config is not None else load_config()
        self.settings = None
        self.engine: Optional[RaffleEngine] = None
        self.store: Optional[ActivityStore] = None
        self.operator: Optional[UpkeepOperator] = None
        self.web_server: Optional[RaffleWebServer] = None
        self.running = True

        logger.info("Raffle application initialized")

    def _handle_signal(self, signum, frame):
        logger.info(f"Received signal {signum}, initiating graceful shutdown...")
        self.running = False

    def _display_config_summary(self):
        logger.info("=" * 60)
        logger.info("CONFIGURATION SUMMARY")
        logger.info("=" * 60)
        logger.info(f"Network: {self.settings.network} (chain id {self.settings.chain_id})")
        logger.info(f"Entrance fee: {format_eth(self.settings.entrance_fee)}")
        logger.info(f"Interval: {self.settings.interval}s")
        logger.info(f"Auto-fulfil randomness: {self.settings.auto_fulfill}")
        server_config = self.config.get('server', {})
        logger.info(f"Server: {server_config.get('host', '0.0.0.0')}:{server_config.get('port', 6080)}")
        logger.info("=" * 60)

    async def initialize(self):
        """Build all components from configuration."""
        self.settings, self.engine, self.store, self.operator, self.web_server = build_components(self.config)
        self._display_config_summary()
        if self.operator:
            await self.operator.initialize()

    async def start(self):
        """Start services and run until a shutdown signal is received."""
        try:
            await self.initialize()

            if self.operator:
                await self.operator.start()

            host = self.config.get('server', {}).get('host', '0.0.0.0')
            port = int(self.config.get('server', {}).get('port', 6080))
            server_task = asyncio.create_task(self.web_server.start(host=host, port=port))
            # Give the server a moment to bind; a bind failure finishes the task
            await asyncio.sleep(0.2)
            if server_task.done() and server_task.exception():
                raise server_task.exception()

            logger.info(f"Raffle API: http://{host}:{port}/api/  WebSocket: ws://{host}:{port}/ws/raffle")

            while self.running and not server_task.done():
                await asyncio.sleep(1)

            logger.info("Shutdown signal received, stopping application...")
        finally:
            await self.stop()

    async def stop(self):
        """Stop all services."""
        self.running = False

        if self.operator:
            try:
                await self.operator.stop()
            except Exception as e:
                logger.error(f"Error stopping upkeep operator: {e}")

        if self.web_server:
            try:
                await self.web_server.stop()
            except Exception as e:
                logger.error(f"Error stopping web server: {e}")

        if self.store:
            self.store.clear_all_data()

        logger.info("Raffle application stopped")


async def main():
    # Load .env from the working directory or the project root
    load_dotenv()
    load_dotenv(Path(__file__).parent.parent.parent / '.env')

    app = RaffleApp()

    signal.signal(signal.SIGINT, app._handle_signal)
    signal.signal(signal.SIGTERM, app._handle_signal)

    try:
        await app.start()
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
    except Exception as e:
        logger.exception(f"Application failed: {e}")
        sys.exit(1)


def run():
    asyncio.run(main())


if __name__ == "__main__":
    run()
