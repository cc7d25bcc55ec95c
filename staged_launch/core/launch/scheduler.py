"""Cancellable per-feature advancement timers."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Dict, Optional

from staged_launch.core.launch.models import utcnow

logger = logging.getLogger(__name__)

AdvanceCallback = Callable[[str], Awaitable[object]]


@dataclass
class PendingAdvancement:
    """Handle for one scheduled advancement attempt."""

    feature_key: str
    fires_at: datetime
    task: asyncio.Task


class AdvancementScheduler:
    """Owns at most one pending advancement timer per feature.

    Scheduling a new timer cancels the previous one for the same feature.
    """

    def __init__(self, callback: AdvanceCallback):
        self._callback = callback
        self._pending: Dict[str, PendingAdvancement] = {}

    def schedule(self, feature_key: str, delay_seconds: float) -> PendingAdvancement:
        """Schedule an advancement attempt, replacing any pending one."""
        self.cancel(feature_key)
        fires_at = utcnow() + timedelta(seconds=delay_seconds)
        task = asyncio.create_task(
            self._fire(feature_key, delay_seconds),
            name=f"advance:{feature_key}",
        )
        pending = PendingAdvancement(feature_key=feature_key, fires_at=fires_at, task=task)
        self._pending[feature_key] = pending
        logger.info(f"Scheduled advancement for {feature_key} at {fires_at.isoformat()}")
        return pending

    def cancel(self, feature_key: str) -> bool:
        """Cancel the pending timer for a feature. Returns True if one existed."""
        pending = self._pending.pop(feature_key, None)
        if pending is None:
            return False
        # A timer that is currently firing is only detached, never cancelled
        # from inside its own callback.
        if pending.task is not asyncio.current_task() and not pending.task.done():
            pending.task.cancel()
        return True

    def cancel_all(self) -> None:
        for feature_key in list(self._pending):
            self.cancel(feature_key)

    def pending(self, feature_key: str) -> Optional[PendingAdvancement]:
        return self._pending.get(feature_key)

    def next_fire_time(self, feature_key: str) -> Optional[datetime]:
        pending = self._pending.get(feature_key)
        return pending.fires_at if pending else None

    async def _fire(self, feature_key: str, delay_seconds: float) -> None:
        await asyncio.sleep(delay_seconds)
        # The entry stays registered until the callback finishes so that a
        # concurrent cancel() can still reach a callback waiting on a lock.
        try:
            await self._callback(feature_key)
        except Exception as e:
            logger.error(f"Scheduled advancement for {feature_key} failed: {e}")
        finally:
            pending = self._pending.get(feature_key)
            if pending is not None and pending.task is asyncio.current_task():
                del self._pending[feature_key]
