"""
Queue reset service: empties the waiting queue once per venue day.

Background worker that polls every few minutes. After the configured local
hour it resets the queue and rolls today's game counts into history. The
last reset date is stored as a setting so several API instances reset only
once.
"""

import asyncio
import logging
import os
from datetime import datetime
from typing import Optional

from rallygogo.database import db
from rallygogo.services import data_service, queue_service
from rallygogo.services.errors import ConflictError
from rallygogo.utils.datetime_utils import venue_now

logger = logging.getLogger(__name__)

# Local hour after which the previous day's queue is cleared
QUEUE_RESET_HOUR = int(os.getenv("QUEUE_RESET_HOUR", "4"))

# How often the worker checks whether a reset is due (seconds)
POLL_INTERVAL_SECONDS = int(os.getenv("QUEUE_RESET_POLL_SECONDS", "300"))

LAST_RESET_SETTING = "last_queue_reset_date"


class QueueResetService:
    """Background service that resets the waiting queue once a day."""

    def __init__(self, reset_hour: int = QUEUE_RESET_HOUR):
        self.reset_hour = reset_hour
        self._worker_task: Optional[asyncio.Task] = None
        self._stop_event = asyncio.Event()

    def start(self) -> None:
        """Start the background reset worker."""
        if self._worker_task is None or self._worker_task.done():
            self._stop_event.clear()
            self._worker_task = asyncio.create_task(self._poll_loop())
            logger.info("Queue reset worker started")

    def stop(self) -> None:
        """Stop the background reset worker."""
        self._stop_event.set()
        if self._worker_task and not self._worker_task.done():
            self._worker_task.cancel()
            logger.info("Queue reset worker stopped")

    async def _poll_loop(self) -> None:
        """Main loop: check, then sleep. Repeats until stopped."""
        while not self._stop_event.is_set():
            try:
                await self.run_if_due()
            except Exception as e:
                logger.error(f"Error in queue reset worker: {e}", exc_info=True)

            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=POLL_INTERVAL_SECONDS)
                break
            except asyncio.TimeoutError:
                pass

    async def run_if_due(self, now: Optional[datetime] = None) -> bool:
        """
        Reset the queue if today's reset hour has passed and no reset ran today.

        Args:
            now: Evaluation instant (defaults to the current time)

        Returns:
            True if a reset was performed
        """
        local_now = venue_now(now)
        if local_now.hour < self.reset_hour:
            return False
        today = local_now.date().isoformat()

        async with db.AsyncSessionLocal() as session:
            # Claim the day and reset in one transaction; losers see the marker
            try:
                if not await data_service.claim_setting(session, LAST_RESET_SETTING, today):
                    return False
                result = await queue_service.reset_queue(session, commit=False)
                await data_service.commit_or_raise(session)
            except ConflictError:
                logger.info(f"Queue reset for {today} already claimed by another instance")
                return False
            logger.info(f"Daily queue reset for {today}: {result['removed']} entries removed")
            return True


# Global singleton
_reset_service = QueueResetService()


def get_queue_reset_service() -> QueueResetService:
    """Get the global queue reset service instance."""
    return _reset_service
