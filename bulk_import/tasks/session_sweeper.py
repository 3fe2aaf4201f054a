import asyncio
import logging
from datetime import datetime
from typing import Dict, Optional, Sequence

from ..services.session_store import SessionStore

logger = logging.getLogger(__name__)


class SessionSweeper:
    """Periodically evicts expired sessions from a set of stores."""

    def __init__(self, stores: Sequence[SessionStore], interval_seconds: float = 300):
        self.stores = list(stores)
        self.interval_seconds = interval_seconds
        self.running = False
        self._task: Optional[asyncio.Task] = None

    def start(self):
        """Start the sweeper loop in the background."""
        if self.running:
            logger.warning("Session sweeper is already running")
            return

        self.running = True
        self._task = asyncio.create_task(self._run())
        logger.info(f"Session sweeper started (interval {self.interval_seconds}s)")

    async def stop(self):
        """Stop the sweeper loop and wait for it to exit."""
        self.running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Session sweeper stopped")

    async def _run(self):
        while self.running:
            await asyncio.sleep(self.interval_seconds)
            try:
                await self.run_sweep_cycle()
            except Exception as e:
                logger.error(f"Error in session sweeper: {e}")

    async def run_sweep_cycle(self) -> Dict[str, int]:
        """Sweep every store once."""
        start_time = datetime.now()
        results = {}
        for store in self.stores:
            results[store.name] = await store.sweep()

        removed = sum(results.values())
        if removed:
            duration = (datetime.now() - start_time).total_seconds()
            logger.info(f"Session sweep removed {removed} expired sessions in {duration:.2f} seconds")
        return results
