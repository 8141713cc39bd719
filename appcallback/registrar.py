"""Lookup of topic registrations keyed by pub/sub name and topic."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Iterator, Optional

from appcallback.common import Subscription, TopicEventHandler
from appcallback.subscription import TopicSubscription


@dataclass
class TopicRegistration:
    """A subscription together with its default and per-route handlers."""

    subscription: TopicSubscription
    default_handler: Optional[TopicEventHandler] = None
    route_handlers: dict[str, TopicEventHandler] = field(default_factory=dict)


class TopicRegistrar:
    """Registrations keyed by ``<pubsub>-<topic>``, or ``<pubsub>`` alone when
    topic validation is disabled."""

    def __init__(self) -> None:
        self._registrations: dict[str, TopicRegistration] = {}

    def add_subscription(
        self, sub: Subscription, fn: Optional[TopicEventHandler]
    ) -> None:
        """Register ``fn`` for ``sub``; raises ``ValueError`` on invalid input."""
        if not sub.topic:
            raise ValueError("topic name required")
        if not sub.pubsub_name:
            raise ValueError("pub/sub name required")
        if fn is None:
            raise ValueError("topic handler required")

        if sub.disable_topic_validation:
            key = sub.pubsub_name
        else:
            key = f"{sub.pubsub_name}-{sub.topic}"

        registration = self._registrations.get(key)
        if registration is None:
            subscription = TopicSubscription(sub.pubsub_name, sub.topic)
            subscription.set_metadata(sub.metadata)
            registration = TopicRegistration(subscription=subscription)
            self._registrations[key] = registration

        if sub.match:
            registration.subscription.add_routing_rule(
                sub.route, sub.match, sub.priority
            )
        else:
            registration.subscription.set_default_route(sub.route)
            registration.default_handler = fn
        registration.route_handlers[sub.route] = fn

    def get(self, key: str) -> Optional[TopicRegistration]:
        """Return the registration stored under ``key``, or ``None``."""
        return self._registrations.get(key)

    def registrations(self) -> list[TopicRegistration]:
        """Return all registrations in insertion order."""
        return list(self._registrations.values())

    def __len__(self) -> int:
        return len(self._registrations)

    def __contains__(self, key: object) -> bool:
        return key in self._registrations

    def __iter__(self) -> Iterator[str]:
        return iter(self._registrations)