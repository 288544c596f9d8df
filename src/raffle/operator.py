"""
Upkeep operator.

Polls the engine on a fixed interval:
- If upkeep is eligible: perform upkeep, which closes the round and requests randomness
- If auto-fulfil is enabled (development networks): deliver a random value for the
  pending request through the coordinator right away
"""

from __future__ import annotations

import asyncio
import secrets
from typing import Any, Dict, Optional

from raffle.engine import RaffleEngine
from raffle.models import OperatorStatus, RaffleState
from raffle.utils.config import get_config_value
from raffle.utils.logger import get_logger

logger = get_logger(__name__)


class UpkeepOperator:
    """Background loop that keeps the raffle moving."""

    def __init__(self, engine: RaffleEngine, config: Dict[str, Any], *, auto_fulfill: bool = False) -> None:
        self._engine = engine
        self._config = config
        self._check_interval = float(get_config_value(config, "operator.check_interval_sec", 5.0))
        self._auto_fulfill = auto_fulfill
        self._status = OperatorStatus()
        self._task: Optional[asyncio.Task] = None
        self._stop_event: Optional[asyncio.Event] = None

    async def initialize(self) -> None:
        logger.info(
            "Initializing upkeep operator (check every %.1fs, auto-fulfil %s)",
            self._check_interval,
            "on" if self._auto_fulfill else "off",
        )

    async def start(self) -> None:
        if self._status.is_running:
            logger.warning("Upkeep operator already running")
            return
        self._status.is_running = True
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._run_loop(), name="raffle-upkeep-operator")
        logger.info("Upkeep operator started")

    async def stop(self) -> None:
        if not self._status.is_running:
            return
        logger.info("Stopping upkeep operator")
        self._status.is_running = False
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Upkeep operator stopped")

    def get_status(self) -> Dict[str, Any]:
        status = self._status
        return {
            "status": "running" if status.is_running else "stopped",
            "auto_fulfill": self._auto_fulfill,
            "check_interval_sec": self._check_interval,
            "round_id": self._engine.round_id,
            "last_check": status.last_check.isoformat() if status.last_check else None,
            "last_upkeep_request_id": status.last_upkeep_request_id,
            "upkeeps_performed": status.upkeeps_performed,
            "requests_fulfilled": status.requests_fulfilled,
            "consecutive_failures": status.consecutive_failures,
            "last_error": status.last_error,
        }

    async def _run_loop(self) -> None:
        assert self._stop_event is not None
        while not self._stop_event.is_set():
            self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self._check_interval)
                break
            except asyncio.TimeoutError:
                continue

    def run_once(self, now: Optional[int] = None) -> Optional[int]:
        """One polling tick. Returns the request id if upkeep was performed."""
        self._status.record_check()
        request_id: Optional[int] = None
        try:
            if self._engine.check_upkeep_eligible(now):
                request_id = self._engine.perform_upkeep(now)
                self._status.upkeeps_performed += 1
                self._status.last_upkeep_request_id = request_id
                logger.info(f"Upkeep performed, request {request_id}")

            pending = self._engine.pending_request_id
            if self._auto_fulfill and pending is not None and self._engine.state == RaffleState.CALCULATING:
                self._engine.coordinator.fulfill_random_words(pending, [secrets.randbits(256)], now)
                self._status.requests_fulfilled += 1
                logger.info(f"Auto-fulfilled request {pending}")
            self._status.reset_failures()
        except Exception as exc:
            self._status.record_failure(exc)
            logger.error(f"Upkeep tick failed: {exc}")
        return request_id
