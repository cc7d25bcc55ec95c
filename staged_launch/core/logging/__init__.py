"""Structured logging for the launch controller."""

from staged_launch.core.logging.structured import (
    StructuredFormatter,
    feature_context,
    feature_key_var,
    setup_structured_logging,
)

__all__ = [
    "StructuredFormatter",
    "feature_context",
    "feature_key_var",
    "setup_structured_logging",
]
