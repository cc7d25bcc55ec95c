import os
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Tuple

import pytest
import pytest_asyncio

from staged_launch.core.launch.controller import StagedLaunchController
from staged_launch.core.launch.hooks import RollbackHookRegistry
from staged_launch.core.launch.metrics_store import MetricsStore
from staged_launch.core.launch.models import (
    LaunchConfig,
    LaunchCriteria,
    LaunchMetrics,
    LaunchStage,
    StageDefinition,
)
from staged_launch.core.launch.registry import StageRegistry
from staged_launch.core.notifications.client import AlertChannel, AlertEmitter, LaunchAlert

FEATURE = "ENABLE_WIDGET_PROFILE_SYSTEM"

_ENV_VARS_TO_ISOLATE = [
    "LAUNCH_API_KEY",
    "SLACK_WEBHOOK_URL",
    "SLACK_CHANNEL",
]


@pytest.fixture(autouse=True)
def env_isolation():
    """Isolate environment variables between tests."""
    backup = {k: os.environ.get(k) for k in _ENV_VARS_TO_ISOLATE}
    for k in _ENV_VARS_TO_ISOLATE:
        os.environ.pop(k, None)
    try:
        yield
    finally:
        for k, v in backup.items():
            if v is None:
                os.environ.pop(k, None)
            else:
                os.environ[k] = v


def make_criteria(
    min_success_rate: float = 0.95,
    max_error_count: float = 5,
    max_response_time_ms: float = 2000,
    min_user_engagement: float = 0.7,
    monitoring_window_minutes: int = 30,
) -> LaunchCriteria:
    return LaunchCriteria(
        min_success_rate=min_success_rate,
        max_error_count=max_error_count,
        max_response_time_ms=max_response_time_ms,
        min_user_engagement=min_user_engagement,
        monitoring_window_minutes=monitoring_window_minutes,
    )


def make_stages(auto_advance: bool = True) -> Tuple[StageDefinition, ...]:
    """Four-stage widget profile rollout: dev 0% / beta 5% / gradual 25% / full 100%."""
    return (
        StageDefinition(
            stage=LaunchStage.DEV,
            exposure_percentage=0,
            criteria=make_criteria(0.95, 5, 2000, 0.7, 30),
            duration_minutes=60,
            auto_advance=auto_advance,
        ),
        StageDefinition(
            stage=LaunchStage.BETA,
            exposure_percentage=5,
            criteria=make_criteria(0.98, 3, 1500, 0.8, 60),
            duration_minutes=180,
            auto_advance=auto_advance,
        ),
        StageDefinition(
            stage=LaunchStage.GRADUAL,
            exposure_percentage=25,
            criteria=make_criteria(0.99, 2, 1000, 0.85, 120),
            duration_minutes=360,
            auto_advance=auto_advance,
        ),
        StageDefinition(
            stage=LaunchStage.FULL,
            exposure_percentage=100,
            criteria=make_criteria(0.995, 1, 800, 0.9, 180),
            duration_minutes=-1,
            auto_advance=False,
        ),
    )


def make_config(
    feature_key: str = FEATURE,
    stages: Optional[Tuple[StageDefinition, ...]] = None,
    **kwargs,
) -> LaunchConfig:
    kwargs.setdefault("global_criteria", make_criteria(0.95, 10, 2000, 0.7, 60))
    kwargs.setdefault(
        "rollback_plan",
        "Disable the flag and serve the static profile page.",
    )
    return LaunchConfig(
        feature_key=feature_key,
        stages=stages if stages is not None else make_stages(),
        **kwargs,
    )


def make_sample(
    success_rate: float = 0.99,
    error_count: int = 1,
    response_time_ms: float = 900,
    user_engagement: float = 0.9,
    timestamp: Optional[datetime] = None,
) -> LaunchMetrics:
    return LaunchMetrics(
        success_rate=success_rate,
        error_count=error_count,
        response_time_ms=response_time_ms,
        user_engagement=user_engagement,
        timestamp=timestamp or datetime.now(timezone.utc),
    )


class RecordingFlagStore:
    """Flag store double that remembers every write."""

    def __init__(self, fail: bool = False):
        self.calls: List[Tuple[str, bool]] = []
        self.flags: Dict[str, bool] = {}
        self.fail = fail

    def set_flag(self, key: str, enabled: bool) -> None:
        if self.fail:
            raise RuntimeError("flag store unavailable")
        self.calls.append((key, enabled))
        self.flags[key] = enabled


class RecordingChannel(AlertChannel):
    """Alert channel double that keeps delivered alerts in memory."""

    name = "recording"

    def __init__(self, fail: bool = False):
        self.alerts: List[LaunchAlert] = []
        self.fail = fail

    async def send(self, alert: LaunchAlert) -> bool:
        if self.fail:
            raise ConnectionError("alert endpoint unreachable")
        self.alerts.append(alert)
        return True


class FakeClock:
    """Settable clock for the metrics store."""

    def __init__(self, now: Optional[datetime] = None):
        self.now = now or datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


@pytest.fixture
def registry():
    reg = StageRegistry()
    reg.register_launch_config(FEATURE, make_config())
    return reg


@pytest.fixture
def flag_store():
    return RecordingFlagStore()


@pytest.fixture
def channel():
    return RecordingChannel()


@pytest.fixture
def hooks():
    return RollbackHookRegistry(timeout_seconds=1.0)


@pytest_asyncio.fixture
async def controller(registry, flag_store, channel, hooks):
    ctrl = StagedLaunchController(
        registry=registry,
        flag_store=flag_store,
        alerts=AlertEmitter(channels=[channel]),
        hooks=hooks,
        metrics_store=MetricsStore(),
    )
    yield ctrl
    await ctrl.shutdown()
