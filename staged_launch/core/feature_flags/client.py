"""Feature flag store used as the launch commit point.

The controller flips one boolean per feature on every stage transition;
readers only ever see the last write. Backends differ only in where the
initial values come from:

- ``memory``: start empty
- ``env``: seed from ``FF_<NAME>`` environment variables
- ``config``: seed from a JSON or YAML file with a top-level ``flags`` list
"""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, runtime_checkable

import yaml

logger = logging.getLogger(__name__)

_TRUTHY = frozenset({"1", "true", "yes", "on"})


@runtime_checkable
class FlagStore(Protocol):
    """Anything the controller can commit a flag value to."""

    def set_flag(self, key: str, enabled: bool) -> None: ...


@dataclass
class FeatureFlag:
    """Current value of one flag."""

    name: str
    enabled: bool = False
    description: str = ""
    updated_at: float = field(default_factory=time.time)
    writes: int = 0

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "enabled": self.enabled,
            "description": self.description,
            "updated_at": self.updated_at,
            "writes": self.writes,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeatureFlag":
        return cls(
            name=data["name"],
            enabled=bool(data.get("enabled", False)),
            description=data.get("description", ""),
            updated_at=float(data.get("updated_at") or time.time()),
            writes=int(data.get("writes", 0)),
        )


def _seed_from_env(prefix: str) -> List[FeatureFlag]:
    seeded = []
    for var, raw in os.environ.items():
        if var.startswith(prefix) and len(var) > len(prefix):
            seeded.append(
                FeatureFlag(name=var[len(prefix) :], enabled=raw.strip().lower() in _TRUTHY)
            )
    return seeded


def _seed_from_file(path: Optional[str]) -> List[FeatureFlag]:
    if not path:
        return []
    source = Path(path)
    if not source.is_file():
        logger.warning(f"Feature flag seed file not found: {source}")
        return []

    try:
        text = source.read_text()
        if source.suffix in (".yaml", ".yml"):
            document = yaml.safe_load(text) or {}
        else:
            document = json.loads(text)
        return [FeatureFlag.from_dict(entry) for entry in document.get("flags", [])]
    except (OSError, ValueError, KeyError, yaml.YAMLError, AttributeError) as e:
        logger.error(f"Ignoring unreadable feature flag seed file {source}: {e}")
        return []


class FeatureFlagClient:
    """Thread-safe in-process flag store."""

    def __init__(
        self,
        backend: str = "memory",
        config_path: Optional[str] = None,
        prefix: str = "FF_",
    ):
        seeders: Dict[str, Callable[[], List[FeatureFlag]]] = {
            "memory": list,
            "env": lambda: _seed_from_env(prefix),
            "config": lambda: _seed_from_file(config_path),
        }
        if backend not in seeders:
            raise ValueError(f"Unknown feature flag backend: {backend}")

        self.backend = backend
        self._lock = threading.Lock()
        self._flags: Dict[str, FeatureFlag] = {
            flag.name: flag for flag in seeders[backend]()
        }
        if self._flags:
            logger.info(f"Seeded {len(self._flags)} feature flag(s) from {backend} backend")

    def set_flag(self, key: str, enabled: bool) -> None:
        with self._lock:
            flag = self._flags.setdefault(key, FeatureFlag(name=key))
            previous = flag.enabled
            flag.enabled = enabled
            flag.updated_at = time.time()
            flag.writes += 1
        if previous != enabled:
            logger.info(f"Feature flag {key}: {previous} -> {enabled}")
        else:
            logger.debug(f"Feature flag {key} rewritten as {enabled}")

    def is_enabled(self, key: str, default: bool = False) -> bool:
        flag = self._flags.get(key)
        if flag is None:
            return default
        return flag.enabled

    def get_flag(self, key: str) -> Optional[FeatureFlag]:
        return self._flags.get(key)

    def list_flags(self) -> List[FeatureFlag]:
        with self._lock:
            return list(self._flags.values())

