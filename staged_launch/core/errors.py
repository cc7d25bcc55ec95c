"""Error taxonomy for the staged launch controller.

Configuration errors are fatal and raised at registration time. Per-feature
operational failures are surfaced as typed results or booleans so that one
feature's bad state never takes the host process down.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, Optional


class ErrorCode(str, Enum):
    CONFIG_ERROR = "CONFIG_ERROR"
    UNKNOWN_FEATURE = "UNKNOWN_FEATURE"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    HOOK_FAILED = "HOOK_FAILED"
    HEALTH_CHECK_FAILED = "HEALTH_CHECK_FAILED"
    ALERT_FAILED = "ALERT_FAILED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class LaunchError(Exception):
    """Base error for launch operations."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR

    def __init__(self, message: str, feature_key: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.feature_key = feature_key

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result: Dict[str, Any] = {"code": self.code.value, "message": self.message}
        if self.feature_key:
            result["feature_key"] = self.feature_key
        return result


class ConfigError(LaunchError):
    """Raised when a launch configuration is malformed."""

    code = ErrorCode.CONFIG_ERROR


class UnknownFeatureError(LaunchError):
    """Raised when an operation references an unregistered feature."""

    code = ErrorCode.UNKNOWN_FEATURE

    def __init__(self, feature_key: str):
        super().__init__(f"No launch config registered for feature: {feature_key}", feature_key)


class HookFailure(LaunchError):
    """A rollback hook or sanity check failed. Logged, never propagated."""

    code = ErrorCode.HOOK_FAILED

    def __init__(self, feature_key: str, cause: BaseException):
        super().__init__(f"Rollback hook for {feature_key} failed: {cause!r}", feature_key)
        self.cause = cause


def build_error(code: ErrorCode, message: str, **context: Any) -> Dict[str, Any]:
    """Build an error payload for API responses."""
    payload: Dict[str, Any] = {"code": code.value, "message": message}
    if context:
        payload["context"] = context
    return payload


__all__ = [
    "ConfigError",
    "ErrorCode",
    "HookFailure",
    "LaunchError",
    "UnknownFeatureError",
    "build_error",
]
