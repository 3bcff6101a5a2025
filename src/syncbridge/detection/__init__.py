"""Change detection for the canonical store.

Components:
- **ChangeDetector**: Polling, subscriptions and webhooks unified behind
  one listener fan-out
- **PollingScheduler**: APScheduler job running polling ticks
"""

from syncbridge.detection.change_detector import (
    DEFAULT_POLLING_INTERVAL_MS,
    ChangeDetector,
    ChangeListener,
    Subscription,
    SubscriptionStatus,
    observation_key,
)
from syncbridge.detection.scheduler import PollingScheduler

__all__ = [
    "DEFAULT_POLLING_INTERVAL_MS",
    "ChangeDetector",
    "ChangeListener",
    "PollingScheduler",
    "Subscription",
    "SubscriptionStatus",
    "observation_key",
]
