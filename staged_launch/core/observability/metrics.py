"""Prometheus metrics for the launch controller."""

from __future__ import annotations

from prometheus_client import Counter, Gauge

launch_stage_transitions_total = Counter(
    "launch_stage_transitions_total",
    "Stage transitions by feature and kind",
    ["feature", "kind"],
)
launch_advancement_refused_total = Counter(
    "launch_advancement_refused_total",
    "Advancement attempts refused",
    ["feature", "reason"],
)
launch_health_check_failures_total = Counter(
    "launch_health_check_failures_total",
    "Health checks that raised or timed out",
    ["feature"],
)
launch_alerts_total = Counter(
    "launch_alerts_total",
    "Alert deliveries by severity and outcome",
    ["severity", "status"],
)
launch_rollback_hook_failures_total = Counter(
    "launch_rollback_hook_failures_total",
    "Rollback hooks that raised or timed out",
    ["feature"],
)
launch_current_stage_index = Gauge(
    "launch_current_stage_index",
    "Current stage of each feature (0=off)",
    ["feature"],
)
