"""Change detection for the canonical resource store.

This module provides:
- ChangeDetector: Polling, subscription and webhook inputs feeding one
  listener fan-out
- Subscription, SubscriptionStatus: Tracked push subscriptions

Input paths:
- **Polling**: per key, remembers the highest meta.lastUpdated seen (epoch
  0 initially) and asks the store for anything newer on each tick
- **Subscriptions**: rest-hook Subscription resources managed remotely and
  mirrored in memory while active
- **Webhook**: Bundle or single-resource notifications pushed by the store

All three call notify(), which runs every listener registered for the
resource type, for every resource, in registration order. A failing
listener is logged and skipped.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any

from syncbridge.core.models import EPOCH, CanonicalResource

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime

    from syncbridge.clients.base import CanonicalClient

logger = logging.getLogger(__name__)

DEFAULT_POLLING_INTERVAL_MS = 30000
SUBSCRIPTION_PAYLOAD = "application/fhir+json"

# Type alias for change listeners
ChangeListener = Callable[[CanonicalResource], None]


class SubscriptionStatus(str, Enum):
    """FHIR Subscription status codes."""

    REQUESTED = "requested"
    ACTIVE = "active"
    ERROR = "error"
    OFF = "off"


@dataclass
class Subscription:
    """A rest-hook Subscription in the canonical store."""

    id: str | None
    criteria: str
    endpoint: str
    reason: str
    status: SubscriptionStatus = SubscriptionStatus.REQUESTED

    def to_resource(self) -> dict[str, Any]:
        """Convert to a FHIR Subscription resource."""
        resource: dict[str, Any] = {
            "resourceType": "Subscription",
            "status": self.status.value,
            "reason": self.reason,
            "criteria": self.criteria,
            "channel": {
                "type": "rest-hook",
                "endpoint": self.endpoint,
                "payload": SUBSCRIPTION_PAYLOAD,
            },
        }
        if self.id:
            resource["id"] = self.id
        return resource

    @classmethod
    def from_resource(cls, resource: dict[str, Any]) -> Subscription:
        """Create from a FHIR Subscription resource."""
        channel = resource.get("channel") or {}
        return cls(
            id=resource.get("id"),
            criteria=resource.get("criteria", ""),
            endpoint=channel.get("endpoint", ""),
            reason=resource.get("reason", ""),
            status=SubscriptionStatus(resource.get("status", SubscriptionStatus.REQUESTED.value)),
        )


def observation_key(patient_id: str) -> str:
    """Polling key for the observations of one patient."""
    return f"Observation_{patient_id}"


class ChangeDetector:
    """Detects canonical-side changes and fans them out to listeners.

    Usage:
        detector = ChangeDetector(client)
        detector.register_listener("Patient", on_patient_changed)
        detector.enable_polling(interval_ms=10000)
        detector.poll_all()  # called by PollingScheduler
    """

    def __init__(self, client: CanonicalClient) -> None:
        """Initialize the detector.

        Args:
            client: Canonical store client (normally the resilient wrapper).
        """
        self._client = client
        self._lock = threading.RLock()
        self._listeners: dict[str, list[ChangeListener]] = {}
        self._last_seen: dict[str, datetime] = {}
        self._poll_locks: dict[str, threading.Lock] = {}
        self._subscriptions: dict[str, Subscription] = {}
        self._polling_enabled = False
        self._polling_interval_ms = DEFAULT_POLLING_INTERVAL_MS
        self._accepting = True

    # === Listeners ===

    def register_listener(self, resource_type: str, listener: ChangeListener) -> None:
        """Register a listener for a resource type (appended in order)."""
        with self._lock:
            self._listeners.setdefault(resource_type, []).append(listener)
        logger.info("Registered change listener for resource type: %s", resource_type)

    def unregister_listeners(self, resource_type: str) -> int:
        """Remove every listener for a resource type.

        Returns:
            Number of listeners removed.
        """
        with self._lock:
            removed = len(self._listeners.pop(resource_type, []))
        logger.info("Unregistered %d change listeners for: %s", removed, resource_type)
        return removed

    def listener_count(self, resource_type: str) -> int:
        with self._lock:
            return len(self._listeners.get(resource_type, []))

    def notify(self, resource_type: str, resources: Iterable[CanonicalResource] | None) -> int:
        """Run every listener for the type on every resource.

        Args:
            resource_type: Resource type whose listeners run.
            resources: Changed resources (None or empty is a no-op).

        Returns:
            Number of resources dispatched.
        """
        if not resources:
            return 0
        if not self._accepting:
            logger.debug("Change detector stopped, dropping %s notification", resource_type)
            return 0

        with self._lock:
            listeners = list(self._listeners.get(resource_type, []))
        if not listeners:
            logger.debug("No listeners registered for resource type: %s", resource_type)

        count = 0
        for resource in resources:
            count += 1
            for listener in listeners:
                try:
                    listener(resource)
                except Exception:
                    logger.exception(
                        "Error notifying listener for %s/%s", resource_type, resource.id
                    )
        return count

    # === Polling ===

    def enable_polling(self, interval_ms: int = DEFAULT_POLLING_INTERVAL_MS) -> None:
        """Enable polling with the given interval."""
        if interval_ms <= 0:
            raise ValueError(f"Polling interval must be positive, got {interval_ms}")
        with self._lock:
            self._polling_enabled = True
            self._polling_interval_ms = interval_ms
        logger.info("Enabled polling with interval: %dms", interval_ms)

    def disable_polling(self) -> None:
        """Disable polling; later ticks issue no queries."""
        with self._lock:
            self._polling_enabled = False
        logger.info("Disabled polling")

    @property
    def is_polling_enabled(self) -> bool:
        with self._lock:
            return self._polling_enabled

    @property
    def polling_interval_ms(self) -> int:
        with self._lock:
            return self._polling_interval_ms

    @property
    def tracked_resource_types(self) -> list[str]:
        """Get resource types that have listeners (polled by poll_all)."""
        with self._lock:
            return [rtype for rtype, listeners in self._listeners.items() if listeners]

    def get_last_seen(self, key: str) -> datetime:
        """Get the polling high-water mark for a key (epoch 0 if never polled)."""
        with self._lock:
            return self._last_seen.get(key, EPOCH)

    def reset_last_seen(self, key: str | None = None) -> None:
        """Reset one polling high-water mark, or all of them."""
        with self._lock:
            if key is None:
                self._last_seen.clear()
            else:
                self._last_seen.pop(key, None)
        logger.info("Reset polling timestamp for: %s", key or "all resource types")

    def poll(self, resource_type: str) -> int:
        """Run one polling tick for a resource type.

        Returns:
            Number of changed resources dispatched.
        """
        return self._poll_key(resource_type, resource_type, None)

    def poll_observations(self, patient_id: str) -> int:
        """Run one polling tick for the observations of a patient.

        Returns:
            Number of changed observations dispatched.
        """
        return self._poll_key(
            observation_key(patient_id),
            "Observation",
            {"subject": f"Patient/{patient_id}"},
        )

    def poll_all(self) -> int:
        """Run one polling tick for every tracked resource type.

        Returns:
            Total number of resources dispatched.
        """
        total = 0
        for resource_type in self.tracked_resource_types:
            try:
                total += self.poll(resource_type)
            except Exception:
                logger.exception("Error polling for %s changes", resource_type)
        return total

    def _poll_key(
        self,
        key: str,
        resource_type: str,
        params: dict[str, str] | None,
    ) -> int:
        if not self.is_polling_enabled or not self._accepting:
            return 0

        with self._lock:
            poll_lock = self._poll_locks.setdefault(key, threading.Lock())
        if not poll_lock.acquire(blocking=False):
            logger.debug("Polling tick for %s already running, skipping", key)
            return 0

        try:
            since = self.get_last_seen(key)
            logger.debug("Polling for %s changes since: %s", key, since)
            resources = self._client.search_updated_after(resource_type, since, params)
            if not resources:
                return 0

            logger.info("Detected %d changed %s resources", len(resources), resource_type)
            count = self.notify(resource_type, resources)

            newest = max(
                (r.last_updated for r in resources if r.last_updated is not None),
                default=None,
            )
            if newest is not None:
                with self._lock:
                    if newest > self._last_seen.get(key, EPOCH):
                        self._last_seen[key] = newest
            return count
        finally:
            poll_lock.release()

    # === Subscriptions ===

    def create_subscription(self, criteria: str, endpoint: str, reason: str) -> Subscription:
        """Create a rest-hook subscription in the canonical store.

        Args:
            criteria: Search criteria (e.g., "Patient?").
            endpoint: Webhook URL the store should call.
            reason: Human-readable purpose.

        Returns:
            The created subscription (status requested).
        """
        logger.info("Creating subscription for criteria: %s", criteria)
        requested = Subscription(id=None, criteria=criteria, endpoint=endpoint, reason=reason)
        created = Subscription.from_resource(
            self._client.create_subscription(requested.to_resource())
        )
        if created.id:
            with self._lock:
                self._subscriptions[created.id] = created
            logger.info("Created subscription: %s", created.id)
        return created

    def activate_subscription(self, subscription_id: str) -> Subscription:
        """Set a subscription active in the store and track it."""
        subscription = Subscription.from_resource(self._client.get_subscription(subscription_id))
        subscription.status = SubscriptionStatus.ACTIVE
        self._client.update_subscription(subscription.to_resource())
        with self._lock:
            self._subscriptions[subscription_id] = subscription
        logger.info("Activated subscription: %s", subscription_id)
        return subscription

    def deactivate_subscription(self, subscription_id: str) -> Subscription:
        """Switch a subscription off in the store and stop tracking it."""
        subscription = Subscription.from_resource(self._client.get_subscription(subscription_id))
        subscription.status = SubscriptionStatus.OFF
        self._client.update_subscription(subscription.to_resource())
        with self._lock:
            self._subscriptions.pop(subscription_id, None)
        logger.info("Deactivated subscription: %s", subscription_id)
        return subscription

    def delete_subscription(self, subscription_id: str) -> None:
        """Delete a subscription from the store and stop tracking it."""
        self._client.delete_subscription(subscription_id)
        with self._lock:
            self._subscriptions.pop(subscription_id, None)
        logger.info("Deleted subscription: %s", subscription_id)

    def get_active_subscriptions(self) -> dict[str, Subscription]:
        """Get a copy of the tracked subscriptions."""
        with self._lock:
            return dict(self._subscriptions)

    # === Webhook ===

    def handle_webhook(self, payload: dict[str, Any] | None) -> int:
        """Route a pushed notification through the listener fan-out.

        Args:
            payload: A Bundle (each entry.resource is dispatched) or a single
                resource. None is ignored.

        Returns:
            Number of resources dispatched.
        """
        if payload is None:
            logger.warning("Received null webhook notification")
            return 0

        if payload.get("resourceType") == "Bundle":
            entries = payload.get("entry") or []
            logger.info("Processing webhook bundle with %d entries", len(entries))
            count = 0
            for entry in entries:
                body = entry.get("resource")
                if body and body.get("resourceType"):
                    resource = CanonicalResource.from_body(body)
                    count += self.notify(resource.resource_type, [resource])
            return count

        if not payload.get("resourceType"):
            logger.warning("Webhook payload without resourceType ignored")
            return 0

        resource = CanonicalResource.from_body(payload)
        logger.info("Processing webhook for %s/%s", resource.resource_type, resource.id)
        return self.notify(resource.resource_type, [resource])

    # === Lifecycle ===

    @property
    def is_accepting(self) -> bool:
        return self._accepting

    def stop(self) -> None:
        """Stop accepting change events from every input path."""
        self._accepting = False
        with self._lock:
            self._polling_enabled = False
        logger.info("Change detector stopped accepting events")
