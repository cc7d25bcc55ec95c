"""Data model for staged feature launches."""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Mapping, Optional, Sequence, Tuple


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class LaunchStage(str, Enum):
    """Exposure stages, in rollout order."""

    OFF = "off"
    DEV = "dev"
    BETA = "beta"
    GRADUAL = "gradual"
    FULL = "full"

    @property
    def order(self) -> int:
        return STAGE_ORDER.index(self)


STAGE_ORDER: Tuple[LaunchStage, ...] = tuple(LaunchStage)


@dataclass(frozen=True)
class LaunchCriteria:
    """Health thresholds a stage must satisfy.

    Success rate and engagement are lower bounds, error count and response
    time are upper bounds; all bounds are inclusive.
    """

    min_success_rate: float
    max_error_count: float
    max_response_time_ms: float
    min_user_engagement: float
    monitoring_window_minutes: int = 60

    def violations(
        self,
        success_rate: float,
        error_count: float,
        response_time_ms: float,
        user_engagement: float,
    ) -> List[str]:
        """Describe every threshold the given values break."""
        issues: List[str] = []
        if success_rate < self.min_success_rate:
            issues.append(
                f"Success rate {success_rate} below threshold {self.min_success_rate}"
            )
        if error_count > self.max_error_count:
            issues.append(
                f"Error count {error_count} exceeds threshold {self.max_error_count}"
            )
        if response_time_ms > self.max_response_time_ms:
            issues.append(
                f"Response time {response_time_ms}ms exceeds threshold "
                f"{self.max_response_time_ms}ms"
            )
        if user_engagement < self.min_user_engagement:
            issues.append(
                f"User engagement {user_engagement} below threshold {self.min_user_engagement}"
            )
        return issues

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "min_success_rate": self.min_success_rate,
            "max_error_count": self.max_error_count,
            "max_response_time_ms": self.max_response_time_ms,
            "min_user_engagement": self.min_user_engagement,
            "monitoring_window_minutes": self.monitoring_window_minutes,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LaunchCriteria":
        """Create from dictionary."""
        return cls(
            min_success_rate=float(data["min_success_rate"]),
            max_error_count=float(data["max_error_count"]),
            max_response_time_ms=float(data["max_response_time_ms"]),
            min_user_engagement=float(data["min_user_engagement"]),
            monitoring_window_minutes=int(data.get("monitoring_window_minutes", 60)),
        )


@dataclass(frozen=True)
class StageDefinition:
    """One stage of a feature's rollout."""

    stage: LaunchStage
    exposure_percentage: int
    criteria: LaunchCriteria
    duration_minutes: int = 60  # -1 means indefinite (terminal stage)
    auto_advance: bool = True
    rollback_on_failure: bool = True

    @property
    def is_terminal(self) -> bool:
        return self.duration_minutes == -1

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "stage": self.stage.value,
            "exposure_percentage": self.exposure_percentage,
            "criteria": self.criteria.to_dict(),
            "duration_minutes": self.duration_minutes,
            "auto_advance": self.auto_advance,
            "rollback_on_failure": self.rollback_on_failure,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "StageDefinition":
        """Create from dictionary."""
        return cls(
            stage=LaunchStage(data["stage"]),
            exposure_percentage=int(data["exposure_percentage"]),
            criteria=LaunchCriteria.from_dict(data["criteria"]),
            duration_minutes=int(data.get("duration_minutes", 60)),
            auto_advance=bool(data.get("auto_advance", True)),
            rollback_on_failure=bool(data.get("rollback_on_failure", True)),
        )


@dataclass(frozen=True)
class LaunchConfig:
    """Ordered stage plan for one feature. Read-only once registered."""

    feature_key: str
    stages: Tuple[StageDefinition, ...]
    global_criteria: LaunchCriteria
    alert_endpoints: Tuple[str, ...] = ()
    description: str = ""
    rollback_plan: str = ""
    monitoring_enabled: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "stages", tuple(self.stages))
        object.__setattr__(self, "alert_endpoints", tuple(self.alert_endpoints))

    def index_of(self, stage: LaunchStage) -> Optional[int]:
        """Position of a stage in the rollout, or None if not part of it."""
        for index, definition in enumerate(self.stages):
            if definition.stage == stage:
                return index
        return None

    def stage_definition(self, stage: Optional[LaunchStage]) -> Optional[StageDefinition]:
        if stage is None:
            return None
        index = self.index_of(stage)
        return self.stages[index] if index is not None else None

    @property
    def terminal_stage(self) -> LaunchStage:
        return self.stages[-1].stage

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "feature_key": self.feature_key,
            "description": self.description,
            "stages": [s.to_dict() for s in self.stages],
            "global_criteria": self.global_criteria.to_dict(),
            "alert_endpoints": list(self.alert_endpoints),
            "rollback_plan": self.rollback_plan,
            "monitoring_enabled": self.monitoring_enabled,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LaunchConfig":
        """Create from dictionary."""
        return cls(
            feature_key=str(data["feature_key"]),
            stages=tuple(StageDefinition.from_dict(s) for s in data.get("stages", [])),
            global_criteria=LaunchCriteria.from_dict(data["global_criteria"]),
            alert_endpoints=tuple(data.get("alert_endpoints", [])),
            description=data.get("description", ""),
            rollback_plan=data.get("rollback_plan", "") or "",
            monitoring_enabled=bool(data.get("monitoring_enabled", True)),
        )


@dataclass(frozen=True)
class LaunchMetrics:
    """A single health sample. Immutable once recorded."""

    success_rate: float
    error_count: int
    response_time_ms: float
    user_engagement: float
    timestamp: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        for name in ("success_rate", "error_count", "response_time_ms", "user_engagement"):
            if not math.isfinite(getattr(self, name)):
                raise ValueError(f"{name} must be a finite number, got {getattr(self, name)}")
        if not 0.0 <= self.success_rate <= 1.0:
            raise ValueError(f"success_rate must be within 0..1, got {self.success_rate}")
        if not 0.0 <= self.user_engagement <= 1.0:
            raise ValueError(f"user_engagement must be within 0..1, got {self.user_engagement}")
        if self.error_count < 0:
            raise ValueError(f"error_count must be non-negative, got {self.error_count}")
        if self.response_time_ms < 0:
            raise ValueError(f"response_time_ms must be non-negative, got {self.response_time_ms}")
        object.__setattr__(self, "timestamp", ensure_utc(self.timestamp))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "success_rate": self.success_rate,
            "error_count": self.error_count,
            "response_time_ms": self.response_time_ms,
            "user_engagement": self.user_engagement,
            "timestamp": self.timestamp.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "LaunchMetrics":
        """Create from dictionary."""
        timestamp = data.get("timestamp")
        if isinstance(timestamp, str):
            timestamp = datetime.fromisoformat(timestamp)
        return cls(
            success_rate=float(data["success_rate"]),
            error_count=int(data["error_count"]),
            response_time_ms=float(data["response_time_ms"]),
            user_engagement=float(data["user_engagement"]),
            timestamp=timestamp or utcnow(),
        )


@dataclass
class FeatureLaunchState:
    """Mutable per-feature record owned by the controller.

    Samples live in the MetricsStore and the pending timer in the
    AdvancementScheduler, both keyed by the same feature.
    """

    feature_key: str
    current_stage: LaunchStage
    started_at: datetime = field(default_factory=utcnow)
    stage_entered_at: datetime = field(default_factory=utcnow)
    last_validation: Optional[Dict[str, Any]] = None

    def enter(self, stage: LaunchStage) -> None:
        self.current_stage = stage
        self.stage_entered_at = utcnow()


@dataclass
class LaunchStatus:
    """Monitoring view of a feature's rollout."""

    feature_key: str
    current_stage: Optional[LaunchStage] = None
    exposure_percentage: Optional[int] = None
    recent_metrics: Sequence[LaunchMetrics] = field(default_factory=list)
    next_scheduled_advancement: Optional[datetime] = None
    started_at: Optional[datetime] = None
    stage_entered_at: Optional[datetime] = None
    last_validation: Optional[Dict[str, Any]] = None

    @property
    def is_active(self) -> bool:
        return self.current_stage is not None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "feature_key": self.feature_key,
            "current_stage": self.current_stage.value if self.current_stage else None,
            "exposure_percentage": self.exposure_percentage,
            "recent_metrics": [m.to_dict() for m in self.recent_metrics],
            "next_scheduled_advancement": (
                self.next_scheduled_advancement.isoformat()
                if self.next_scheduled_advancement
                else None
            ),
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "stage_entered_at": (
                self.stage_entered_at.isoformat() if self.stage_entered_at else None
            ),
            "last_validation": self.last_validation,
        }
