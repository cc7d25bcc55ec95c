"""Rollback Hook Registry.

Per-feature cleanup callbacks executed during rollback (e.g. invalidate a
cache, fall back to static pages), and optional rollback-sanity checks the
Launch Validator runs before a transition. Hooks may be plain functions
(run in a worker thread) or coroutine functions and must be idempotent;
rollback may run many times.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Dict, Optional, Union

from staged_launch.core.errors import HookFailure
from staged_launch.core.launch.calls import call_maybe_async
from staged_launch.core.observability.metrics import launch_rollback_hook_failures_total

logger = logging.getLogger(__name__)

RollbackHook = Callable[[str], Union[None, Awaitable[None]]]
SanityCheck = Callable[[str], bool]


class RollbackHookRegistry:
    """Registry of rollback hooks and rollback-sanity checks."""

    def __init__(self, timeout_seconds: Optional[float] = 30.0):
        self.timeout_seconds = timeout_seconds
        self._hooks: Dict[str, RollbackHook] = {}
        self._sanity_checks: Dict[str, SanityCheck] = {}

    def register(self, feature_key: str, hook: RollbackHook) -> None:
        """Register (or replace) the rollback hook for a feature."""
        self._hooks[feature_key] = hook
        logger.info(f"Registered rollback hook for {feature_key}")

    def register_sanity_check(self, feature_key: str, check: SanityCheck) -> None:
        """Register a check that the feature's rollback path is usable."""
        self._sanity_checks[feature_key] = check

    def has_hook(self, feature_key: str) -> bool:
        return feature_key in self._hooks

    def get_sanity_check(self, feature_key: str) -> Optional[SanityCheck]:
        return self._sanity_checks.get(feature_key)

    async def invoke(self, feature_key: str) -> bool:
        """Run the feature's rollback hook, if any.

        Returns False when the hook raised or timed out. Failures are logged
        and never propagated.
        """
        hook = self._hooks.get(feature_key)
        if hook is None:
            logger.info(f"No rollback hook registered for {feature_key}")
            return True

        try:
            await asyncio.wait_for(call_maybe_async(hook, feature_key), self.timeout_seconds)
        except Exception as e:
            failure = HookFailure(feature_key, e)
            launch_rollback_hook_failures_total.labels(feature=feature_key).inc()
            logger.error(failure.message)
            return False

        logger.info(f"Rollback hook completed for {feature_key}")
        return True
