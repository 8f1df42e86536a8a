"""Feature gating utilities enforcing subscription capabilities and seat caps."""
from .enforcement import (
    FeatureGateError,
    require_active_subscription,
    require_feature,
    require_seat_available,
)

__all__ = [
    "FeatureGateError",
    "require_active_subscription",
    "require_feature",
    "require_seat_available",
]
