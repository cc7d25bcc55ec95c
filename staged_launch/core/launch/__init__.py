"""Staged launch management.

Provides:
- Stage registry with validated, write-once launch plans
- Time-bounded health metrics per feature
- Pre-flight launch validation
- Cancellable delayed advancement and rollback hooks

The state machine itself lives in `staged_launch.core.launch.controller`.
"""

from staged_launch.core.launch.hooks import RollbackHookRegistry
from staged_launch.core.launch.metrics_store import MetricsStore
from staged_launch.core.launch.models import (
    FeatureLaunchState,
    LaunchConfig,
    LaunchCriteria,
    LaunchMetrics,
    LaunchStage,
    LaunchStatus,
    StageDefinition,
)
from staged_launch.core.launch.registry import StageRegistry, load_launch_configs
from staged_launch.core.launch.scheduler import AdvancementScheduler
from staged_launch.core.launch.validation import (
    LaunchValidator,
    TestResults,
    ValidationContext,
    ValidationResult,
    generate_validation_report,
)

__all__ = [
    # Models
    "FeatureLaunchState",
    "LaunchConfig",
    "LaunchCriteria",
    "LaunchMetrics",
    "LaunchStage",
    "LaunchStatus",
    "StageDefinition",
    # Components
    "AdvancementScheduler",
    "MetricsStore",
    "RollbackHookRegistry",
    "StageRegistry",
    "load_launch_configs",
    # Validation
    "LaunchValidator",
    "TestResults",
    "ValidationContext",
    "ValidationResult",
    "generate_validation_report",
]
