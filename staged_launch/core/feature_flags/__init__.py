"""Feature flag store.

Boolean flags keyed by feature name. The launch controller is the only
writer; everything else reads.
"""

from staged_launch.core.feature_flags.client import (
    FeatureFlag,
    FeatureFlagClient,
    FlagStore,
)

__all__ = [
    "FeatureFlag",
    "FeatureFlagClient",
    "FlagStore",
]
