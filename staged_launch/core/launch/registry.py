"""Stage Registry.

Holds the per-feature launch configuration. Configurations are validated
when registered and are write-once; reads need no coordination.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any, Dict, List, Mapping, Union

import yaml

from staged_launch.core.errors import ConfigError, UnknownFeatureError
from staged_launch.core.launch.models import LaunchConfig, LaunchCriteria

logger = logging.getLogger(__name__)


def _check_criteria(feature_key: str, label: str, criteria: LaunchCriteria) -> None:
    for name in ("min_success_rate", "min_user_engagement"):
        value = getattr(criteria, name)
        if not 0.0 <= value <= 1.0:
            raise ConfigError(f"{label}: {name} must be within 0..1, got {value}", feature_key)
    for name in ("max_error_count", "max_response_time_ms"):
        value = getattr(criteria, name)
        if value < 0:
            raise ConfigError(f"{label}: {name} must be non-negative, got {value}", feature_key)
    if criteria.monitoring_window_minutes <= 0:
        raise ConfigError(
            f"{label}: monitoring_window_minutes must be positive, "
            f"got {criteria.monitoring_window_minutes}",
            feature_key,
        )


def validate_launch_config(config: LaunchConfig) -> None:
    """Raise ConfigError if the stage plan is malformed."""
    key = config.feature_key
    if not key:
        raise ConfigError("Launch config requires a feature_key")
    if not config.stages:
        raise ConfigError("Launch config declares no stages", key)

    _check_criteria(key, "global_criteria", config.global_criteria)

    seen = set()
    previous = None
    for index, definition in enumerate(config.stages):
        label = f"stage {definition.stage.value}"
        if definition.stage in seen:
            raise ConfigError(f"Duplicate {label}", key)
        seen.add(definition.stage)

        if not 0 <= definition.exposure_percentage <= 100:
            raise ConfigError(
                f"{label}: exposure_percentage must be within 0..100, "
                f"got {definition.exposure_percentage}",
                key,
            )
        if previous is not None:
            if definition.stage.order <= previous.stage.order:
                raise ConfigError(
                    f"{label} is out of order after stage {previous.stage.value}", key
                )
            if definition.exposure_percentage <= previous.exposure_percentage:
                raise ConfigError(
                    f"{label}: exposure must strictly increase "
                    f"({previous.exposure_percentage}% -> {definition.exposure_percentage}%)",
                    key,
                )

        is_last = index == len(config.stages) - 1
        if is_last and not definition.is_terminal:
            raise ConfigError(
                f"Last {label} must be terminal (duration_minutes == -1)", key
            )
        if not is_last:
            if definition.is_terminal:
                raise ConfigError(f"Only the last stage may be terminal, not {label}", key)
            if definition.auto_advance and definition.duration_minutes <= 0:
                raise ConfigError(
                    f"{label}: auto_advance requires a positive duration_minutes", key
                )

        _check_criteria(key, label, definition.criteria)
        previous = definition


class StageRegistry:
    """Registry of launch configurations keyed by feature."""

    def __init__(self) -> None:
        self._configs: Dict[str, LaunchConfig] = {}
        self._lock = threading.Lock()

    def register_launch_config(self, feature_key: str, config: LaunchConfig) -> None:
        """Validate and register a launch config. Registration is write-once."""
        if config.feature_key != feature_key:
            raise ConfigError(
                f"Config feature_key {config.feature_key!r} does not match {feature_key!r}",
                feature_key,
            )
        validate_launch_config(config)
        with self._lock:
            if feature_key in self._configs:
                raise ConfigError(f"Launch config already registered for {feature_key}", feature_key)
            self._configs[feature_key] = config
        logger.info(f"Registered launch config: {feature_key} ({len(config.stages)} stages)")

    def get_config(self, feature_key: str) -> LaunchConfig:
        config = self._configs.get(feature_key)
        if config is None:
            raise UnknownFeatureError(feature_key)
        return config

    def is_registered(self, feature_key: str) -> bool:
        return feature_key in self._configs

    def list_features(self) -> List[str]:
        return sorted(self._configs)

    def __contains__(self, feature_key: object) -> bool:
        return feature_key in self._configs

    def __len__(self) -> int:
        return len(self._configs)


def parse_launch_configs(document: Mapping[str, Any]) -> List[LaunchConfig]:
    """Parse the `launches` list of a configuration document."""
    if not isinstance(document, Mapping):
        raise ConfigError("Launch configuration document must be a mapping")
    launches = document.get("launches", [])
    if not isinstance(launches, list):
        raise ConfigError("'launches' must be a list")

    configs = []
    for item in launches:
        try:
            configs.append(LaunchConfig.from_dict(item))
        except (KeyError, TypeError, ValueError) as e:
            feature_key = item.get("feature_key") if isinstance(item, Mapping) else None
            raise ConfigError(f"Malformed launch config: {e!r}", feature_key) from e
    return configs


def load_launch_configs(
    registry: StageRegistry, path: Union[str, Path]
) -> List[LaunchConfig]:
    """Register every launch config declared in a YAML file."""
    path = Path(path)
    try:
        document = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigError(f"Cannot read launch configuration {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}") from e

    configs = parse_launch_configs(document)
    for config in configs:
        registry.register_launch_config(config.feature_key, config)
    logger.info(f"Loaded {len(configs)} launch configs from {path}")
    return configs
