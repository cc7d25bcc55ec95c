"""Stage Controller.

Advances a feature through its launch plan, watches live health samples,
rolls back on the first unsafe sample and advances only on sustained
evidence over the current stage's monitoring window.
"""

from __future__ import annotations

import asyncio
import logging
import math
from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable, Dict, List, Optional, Tuple, Union

from staged_launch.core.feature_flags.client import FlagStore
from staged_launch.core.launch.calls import call_maybe_async
from staged_launch.core.launch.checks import EnvironmentProber
from staged_launch.core.launch.hooks import RollbackHookRegistry
from staged_launch.core.launch.metrics_store import MetricsStore
from staged_launch.core.launch.models import (
    FeatureLaunchState,
    LaunchConfig,
    LaunchMetrics,
    LaunchStage,
    LaunchStatus,
    StageDefinition,
)
from staged_launch.core.launch.registry import StageRegistry
from staged_launch.core.launch.scheduler import AdvancementScheduler
from staged_launch.core.launch.validation import (
    LaunchValidator,
    TestResults,
    ValidationContext,
    ValidationResult,
)
from staged_launch.core.logging.structured import feature_context
from staged_launch.core.notifications.client import AlertEmitter, AlertSeverity
from staged_launch.core.observability.metrics import (
    launch_advancement_refused_total,
    launch_current_stage_index,
    launch_health_check_failures_total,
    launch_stage_transitions_total,
)

logger = logging.getLogger(__name__)

HealthCheckFn = Callable[[str], Union[LaunchMetrics, Awaitable[LaunchMetrics]]]


class StagedLaunchController:
    """Owns the current stage of every launched feature.

    All operations on one feature are serialized by a per-feature lock;
    different features never wait on each other. The flag store write is
    the commit point of every transition; alerts and rollback hooks follow.
    """

    def __init__(
        self,
        registry: StageRegistry,
        flag_store: FlagStore,
        alerts: Optional[AlertEmitter] = None,
        hooks: Optional[RollbackHookRegistry] = None,
        metrics_store: Optional[MetricsStore] = None,
        validator: Optional[LaunchValidator] = None,
        prober: Optional[EnvironmentProber] = None,
        health_check: Optional[HealthCheckFn] = None,
        health_check_interval: float = 60.0,
        health_check_timeout: float = 10.0,
        advance_retry_minutes: float = 0,
        seconds_per_minute: float = 60.0,
    ):
        """Initialize the controller.

        Args:
            registry: Launch plans by feature
            flag_store: Boolean flag store updated on every transition
            alerts: Alert emitter for transition notifications
            hooks: Rollback hooks and rollback sanity checks
            metrics_store: Health sample store
            validator: Pre-flight gate run before each advancement
            prober: Produces environment checks for the validator
            health_check: Source of health samples, polled periodically
            health_check_interval: Seconds between health checks
            health_check_timeout: Upper bound on a single health check
            advance_retry_minutes: Retry delay after a refused scheduled
                advancement (0 disables retries)
            seconds_per_minute: Length of a stage-duration minute in seconds
        """
        self.registry = registry
        self.flag_store = flag_store
        self.alerts = alerts or AlertEmitter()
        self.hooks = hooks or RollbackHookRegistry()
        self.metrics_store = metrics_store or MetricsStore()
        self.validator = validator
        self.prober = prober
        self.health_check = health_check
        self.health_check_interval = health_check_interval
        self.health_check_timeout = health_check_timeout
        self.advance_retry_minutes = advance_retry_minutes
        self.seconds_per_minute = seconds_per_minute

        self._states: Dict[str, FeatureLaunchState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._lock_users: Dict[str, int] = {}
        self._monitors: Dict[str, asyncio.Task] = {}
        self._scheduler = AdvancementScheduler(self._scheduled_advance)

    @asynccontextmanager
    async def _feature_lock(self, feature_key: str) -> AsyncIterator[None]:
        """Serialize operations on one feature.

        The lock is dropped once no coroutine holds or awaits it and the
        feature has no state, so stopped launches leave nothing behind.
        """
        lock = self._locks.get(feature_key)
        if lock is None:
            lock = self._locks[feature_key] = asyncio.Lock()
        self._lock_users[feature_key] = self._lock_users.get(feature_key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            users = self._lock_users.pop(feature_key) - 1
            if users:
                self._lock_users[feature_key] = users
            elif feature_key not in self._states:
                self._locks.pop(feature_key, None)

    # ------------------------------------------------------------------ start

    async def start(
        self, feature_key: str, start_stage: LaunchStage = LaunchStage.DEV
    ) -> LaunchStatus:
        """Start (or restart) a launch at the given stage.

        Raises:
            UnknownFeatureError: if no launch config is registered
            ValueError: if the stage is not part of the launch plan
        """
        config = self.registry.get_config(feature_key)
        definition = config.stage_definition(start_stage)
        if definition is None and start_stage != LaunchStage.OFF:
            raise ValueError(
                f"Stage {start_stage.value} is not part of the launch plan for {feature_key}"
            )

        async with self._feature_lock(feature_key):
            with feature_context(feature_key):
                self._scheduler.cancel(feature_key)
                self._stop_monitoring(feature_key)

                state = FeatureLaunchState(feature_key=feature_key, current_stage=start_stage)
                self._states[feature_key] = state
                self.metrics_store.reset(feature_key)

                self._schedule_if_auto(feature_key, definition)
                self._commit_flag(feature_key, start_stage)
                launch_stage_transitions_total.labels(feature=feature_key, kind="start").inc()
                logger.info(f"Started launch for {feature_key} at stage: {start_stage.value}")

                if config.monitoring_enabled:
                    self._start_monitoring(feature_key)
                self._alert(config, state, f"Launch started at stage: {start_stage.value}")

        return self.get_launch_status(feature_key)

    # ---------------------------------------------------------------- metrics

    async def record_metrics(self, feature_key: str, sample: LaunchMetrics) -> bool:
        """Record a health sample and evaluate it for rollback.

        Returns True if the sample triggered a rollback.

        Raises:
            UnknownFeatureError: if no launch config is registered
        """
        config = self.registry.get_config(feature_key)
        async with self._feature_lock(feature_key):
            with feature_context(feature_key):
                self.metrics_store.record(feature_key, sample)
                state = self._states.get(feature_key)
                if state is None:
                    return False

                definition = config.stage_definition(state.current_stage)
                if definition is None or not definition.rollback_on_failure:
                    return False

                issues = definition.criteria.violations(
                    sample.success_rate,
                    sample.error_count,
                    sample.response_time_ms,
                    sample.user_engagement,
                )
                if not issues:
                    return False

                reason = ", ".join(issues)
                logger.warning(f"Triggering rollback for {feature_key}: {reason}")
                await self._rollback_locked(config, state, reason)
                return True

    # -------------------------------------------------------------- advancing

    async def advance_stage(
        self, feature_key: str, test_results: Optional[TestResults] = None
    ) -> bool:
        """Move to the next stage if the current one has proven healthy.

        Returns False (never raises) when the feature is unknown, not
        started, already terminal, lacks healthy samples in the monitoring
        window, or fails pre-flight validation.
        """
        if not self.registry.is_registered(feature_key):
            logger.warning(f"Cannot advance unknown feature: {feature_key}")
            return False
        config = self.registry.get_config(feature_key)
        async with self._feature_lock(feature_key):
            with feature_context(feature_key):
                return await self._advance_locked(config, test_results)

    async def _advance_locked(
        self, config: LaunchConfig, test_results: Optional[TestResults] = None
    ) -> bool:
        feature_key = config.feature_key
        state = self._states.get(feature_key)
        if state is None:
            logger.warning(f"Cannot advance {feature_key}: launch not started")
            return False

        index = config.index_of(state.current_stage)
        if index is None:
            logger.warning(
                f"Cannot advance {feature_key}: stage {state.current_stage.value} "
                "is not part of the launch plan"
            )
            launch_advancement_refused_total.labels(feature=feature_key, reason="off_plan").inc()
            return False
        if index >= len(config.stages) - 1:
            logger.info(f"{feature_key} already at final stage ({state.current_stage.value})")
            launch_advancement_refused_total.labels(feature=feature_key, reason="terminal").inc()
            return False

        current = config.stages[index]
        target = config.stages[index + 1]
        window = self.metrics_store.windowed(feature_key, current.criteria.monitoring_window_minutes)

        issues = self._advancement_issues(current, window)
        if issues:
            logger.warning(f"Cannot advance {feature_key}: {'; '.join(issues)}")
            launch_advancement_refused_total.labels(feature=feature_key, reason="criteria").inc()
            return False

        if self.validator is not None:
            context = ValidationContext(
                feature_key=feature_key,
                target_stage=target.stage,
                current_metrics=window,
                environment_checks=await self._probe_environment(feature_key, target.stage),
                test_results=test_results,
            )
            result = self.validator.validate(context)
            state.last_validation = result.to_dict()
            if not result.passed:
                logger.warning(
                    f"Cannot advance {feature_key}: validation failed: {'; '.join(result.errors)}"
                )
                launch_advancement_refused_total.labels(
                    feature=feature_key, reason="validation"
                ).inc()
                return False

        self._scheduler.cancel(feature_key)
        state.enter(target.stage)
        self._schedule_if_auto(feature_key, target)
        self._commit_flag(feature_key, target.stage)
        launch_stage_transitions_total.labels(feature=feature_key, kind="advance").inc()
        logger.info(f"Advanced {feature_key} to stage: {target.stage.value}")

        self._alert(config, state, f"Advanced to stage: {target.stage.value}")
        return True

    @staticmethod
    def _advancement_issues(
        definition: StageDefinition, window: List[LaunchMetrics]
    ) -> List[str]:
        """Check windowed means against the current stage's own criteria."""
        criteria = definition.criteria
        if not window:
            return [f"no metrics in the last {criteria.monitoring_window_minutes} minutes"]

        count = len(window)
        means = (
            sum(m.success_rate for m in window) / count,
            sum(m.error_count for m in window) / count,
            sum(m.response_time_ms for m in window) / count,
            sum(m.user_engagement for m in window) / count,
        )
        if not all(math.isfinite(value) for value in means):
            return ["non-finite metric average over the monitoring window"]
        return criteria.violations(*means)

    async def _probe_environment(self, feature_key: str, stage: LaunchStage):
        if self.prober is None:
            return None
        try:
            return await self.prober.probe(feature_key, stage)
        except Exception as e:
            logger.error(f"Environment probe failed for {feature_key}: {e}")
            return None

    async def _scheduled_advance(self, feature_key: str) -> None:
        config = self.registry.get_config(feature_key)
        async with self._feature_lock(feature_key):
            with feature_context(feature_key):
                if await self._advance_locked(config):
                    return
                state = self._states.get(feature_key)
                if state is None or not self.advance_retry_minutes:
                    return
                definition = config.stage_definition(state.current_stage)
                if definition is not None and definition.auto_advance and not definition.is_terminal:
                    self._scheduler.schedule(
                        feature_key, self.advance_retry_minutes * self.seconds_per_minute
                    )

    async def validate_launch(
        self,
        feature_key: str,
        target_stage: Optional[LaunchStage] = None,
        test_results: Optional[TestResults] = None,
        environment_checks: Optional[Dict[str, Optional[bool]]] = None,
    ) -> Tuple[ValidationResult, ValidationContext]:
        """Dry-run the pre-flight validation without changing any state.

        The target defaults to the stage after the current one (the first
        stage of the plan for a launch that has not started). Environment
        checks are probed when not supplied.

        Raises:
            UnknownFeatureError: if no launch config is registered
        """
        config = self.registry.get_config(feature_key)
        state = self._states.get(feature_key)
        current = config.stage_definition(state.current_stage) if state else None

        if target_stage is None:
            if current is None:
                target_stage = config.stages[0].stage
            else:
                index = config.index_of(current.stage)
                target_stage = config.stages[min(index + 1, len(config.stages) - 1)].stage

        criteria = current.criteria if current else config.global_criteria
        if environment_checks is None:
            environment_checks = await self._probe_environment(feature_key, target_stage)

        context = ValidationContext(
            feature_key=feature_key,
            target_stage=target_stage,
            current_metrics=self.metrics_store.windowed(
                feature_key, criteria.monitoring_window_minutes
            ),
            environment_checks=environment_checks,
            test_results=test_results,
        )
        validator = self.validator or LaunchValidator(self.registry, self.hooks)
        return validator.validate(context), context

    # -------------------------------------------------------------- rollback

    async def rollback(self, feature_key: str, reason: str) -> LaunchStage:
        """Step back one stage, or to off from the first stage.

        Idempotent at off: the stage stays off and the alert is still sent.

        Raises:
            UnknownFeatureError: if no launch config is registered
        """
        config = self.registry.get_config(feature_key)
        async with self._feature_lock(feature_key):
            with feature_context(feature_key):
                state = self._states.get(feature_key)
                if state is None:
                    logger.warning(f"Rollback requested for {feature_key} before launch: {reason}")
                    self.alerts.send(
                        feature_key,
                        f"ROLLBACK: {reason}",
                        AlertSeverity.CRITICAL,
                        current_stage=LaunchStage.OFF,
                        endpoints=config.alert_endpoints,
                    )
                    return LaunchStage.OFF
                return await self._rollback_locked(config, state, reason)

    async def _rollback_locked(
        self, config: LaunchConfig, state: FeatureLaunchState, reason: str
    ) -> LaunchStage:
        feature_key = config.feature_key
        self._scheduler.cancel(feature_key)

        index = config.index_of(state.current_stage)
        target = config.stages[index - 1].stage if index else LaunchStage.OFF

        previous = state.current_stage
        if target != previous:
            state.enter(target)
        self._commit_flag(feature_key, target)
        launch_stage_transitions_total.labels(feature=feature_key, kind="rollback").inc()
        logger.error(
            f"Rolled back {feature_key} from {previous.value} to stage: {target.value}. "
            f"Reason: {reason}"
        )

        self._alert(config, state, f"ROLLBACK: {reason}", AlertSeverity.CRITICAL)
        await self.hooks.invoke(feature_key)
        return target

    # ----------------------------------------------------------------- force

    async def force_stage(self, feature_key: str, stage: LaunchStage, reason: str) -> LaunchStatus:
        """Unconditionally move a feature to a stage. For emergencies.

        Raises:
            UnknownFeatureError: if no launch config is registered
        """
        config = self.registry.get_config(feature_key)
        async with self._feature_lock(feature_key):
            with feature_context(feature_key):
                logger.warning(
                    f"Force override {feature_key} to stage: {stage.value}. Reason: {reason}"
                )
                self._scheduler.cancel(feature_key)
                state = self._states.get(feature_key)
                if state is None:
                    state = self._states[feature_key] = FeatureLaunchState(
                        feature_key=feature_key, current_stage=stage
                    )
                else:
                    state.enter(stage)
                self._commit_flag(feature_key, stage)
                launch_stage_transitions_total.labels(feature=feature_key, kind="force").inc()

                self._alert(
                    config, state, f"Manual override to {stage.value}: {reason}", AlertSeverity.WARNING
                )
        return self.get_launch_status(feature_key)

    # ------------------------------------------------------------ lifecycle

    async def stop(self, feature_key: str) -> bool:
        """Deregister a launch: cancel its timer and monitor, drop its state.

        The flag is left as it is. Returns False if the feature was not active.
        """
        async with self._feature_lock(feature_key):
            self._scheduler.cancel(feature_key)
            self._stop_monitoring(feature_key)
            state = self._states.pop(feature_key, None)
            self.metrics_store.discard(feature_key)
        if state is not None:
            logger.info(f"Stopped launch for {feature_key} at stage: {state.current_stage.value}")
        return state is not None

    async def shutdown(self) -> None:
        """Stop every launch and wait for pending alert deliveries."""
        for feature_key in list(self._states):
            await self.stop(feature_key)
        self._scheduler.cancel_all()
        await self.alerts.flush()

    # ---------------------------------------------------------------- status

    def get_launch_status(self, feature_key: str) -> LaunchStatus:
        """Current status. Never raises; unknown features get an empty status."""
        state = self._states.get(feature_key)
        if state is None:
            return LaunchStatus(feature_key=feature_key)

        exposure = None
        if self.registry.is_registered(feature_key):
            definition = self.registry.get_config(feature_key).stage_definition(state.current_stage)
            exposure = definition.exposure_percentage if definition else 0

        return LaunchStatus(
            feature_key=feature_key,
            current_stage=state.current_stage,
            exposure_percentage=exposure,
            recent_metrics=self.metrics_store.recent(feature_key),
            next_scheduled_advancement=self._scheduler.next_fire_time(feature_key),
            started_at=state.started_at,
            stage_entered_at=state.stage_entered_at,
            last_validation=state.last_validation,
        )

    def list_launches(self) -> List[LaunchStatus]:
        return [self.get_launch_status(key) for key in sorted(self._states)]

    # -------------------------------------------------------------- monitor

    def _start_monitoring(self, feature_key: str) -> None:
        if self.health_check is None:
            return
        self._stop_monitoring(feature_key)
        self._monitors[feature_key] = asyncio.create_task(
            self._monitor_loop(feature_key), name=f"monitor:{feature_key}"
        )

    def _stop_monitoring(self, feature_key: str) -> None:
        task = self._monitors.pop(feature_key, None)
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()

    async def _monitor_loop(self, feature_key: str) -> None:
        """Background health sampling loop for one feature."""
        while feature_key in self._states:
            await asyncio.sleep(self.health_check_interval)
            await self.perform_health_check(feature_key)

    async def perform_health_check(self, feature_key: str) -> Optional[LaunchMetrics]:
        """Take one health sample and record it. Failures are logged, not raised."""
        if self.health_check is None:
            return None
        try:
            sample = await asyncio.wait_for(
                self._call_health_check(feature_key), self.health_check_timeout
            )
        except asyncio.TimeoutError:
            logger.error(
                f"Health check for {feature_key} timed out after {self.health_check_timeout}s"
            )
            launch_health_check_failures_total.labels(feature=feature_key).inc()
            return None
        except Exception as e:
            logger.error(f"Health check failed for {feature_key}: {e}")
            launch_health_check_failures_total.labels(feature=feature_key).inc()
            return None

        await self.record_metrics(feature_key, sample)
        return sample

    async def _call_health_check(self, feature_key: str) -> LaunchMetrics:
        return await call_maybe_async(self.health_check, feature_key)

    # -------------------------------------------------------------- helpers

    def _schedule_if_auto(self, feature_key: str, definition: Optional[StageDefinition]) -> None:
        if definition is None or not definition.auto_advance or definition.duration_minutes <= 0:
            return
        self._scheduler.schedule(feature_key, definition.duration_minutes * self.seconds_per_minute)

    def _commit_flag(self, feature_key: str, stage: LaunchStage) -> None:
        launch_current_stage_index.labels(feature=feature_key).set(stage.order)
        try:
            self.flag_store.set_flag(feature_key, stage != LaunchStage.OFF)
        except Exception as e:
            logger.error(f"Flag store update failed for {feature_key}: {e}")

    def _alert(
        self,
        config: LaunchConfig,
        state: FeatureLaunchState,
        message: str,
        severity: AlertSeverity = AlertSeverity.INFO,
    ) -> None:
        self.alerts.send(
            config.feature_key,
            message,
            severity,
            current_stage=state.current_stage,
            recent_metrics=self.metrics_store.recent(config.feature_key, 5),
            endpoints=config.alert_endpoints,
        )


__all__ = ["HealthCheckFn", "StagedLaunchController"]
