"""Shared event types, subscription model and the callback service interface."""

from __future__ import annotations

import abc
import enum
import json
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

APP_API_TOKEN_ENV_VAR = "APP_API_TOKEN"
"""Environment variable holding the token the sidecar must present."""

API_TOKEN_KEY = "dapr-api-token"
"""Header / metadata key carrying the app API token."""


@dataclass
class TopicEvent:
    """Content of an inbound topic message (a CloudEvents envelope)."""

    id: str = ""
    spec_version: str = ""
    type: str = ""
    source: str = ""
    data_content_type: str = ""
    data: Any = None
    raw_data: Optional[bytes] = None
    data_base64: str = ""
    subject: str = ""
    topic: str = ""
    pubsub_name: str = ""

    def decode(self) -> Any:
        """Deserialize the raw event payload as JSON.

        Raises ``ValueError`` when the payload is missing or not valid JSON.
        """
        return json.loads(self.raw_data or b"")


@dataclass
class InvocationEvent:
    """Input of a service invocation."""

    data: Optional[bytes] = None
    content_type: str = ""
    data_type_url: str = ""
    verb: str = ""
    query_string: str = ""


@dataclass
class Content:
    """Generic data content returned by an invocation handler."""

    data: Optional[bytes] = None
    content_type: str = ""
    data_type_url: str = ""


@dataclass
class BindingEvent:
    """Input of a binding event handler."""

    data: Optional[bytes] = None
    metadata: Optional[dict[str, str]] = None


@dataclass
class Subscription:
    """A single topic subscription as requested by the application."""

    pubsub_name: str = ""
    topic: str = ""
    metadata: Optional[dict[str, str]] = None
    route: str = ""
    match: str = ""
    priority: int = 0
    disable_topic_validation: bool = False


class SubscriptionStatus(str, enum.Enum):
    """Handling hint returned from a subscriber to the sidecar."""

    SUCCESS = "SUCCESS"
    RETRY = "RETRY"
    DROP = "DROP"


@dataclass
class SubscriptionResponse:
    """Response body telling the sidecar how a message was handled."""

    status: SubscriptionStatus = SubscriptionStatus.SUCCESS

    def to_dict(self) -> dict[str, str]:
        """Return the JSON-ready form of the response."""
        return {"status": SubscriptionStatus(self.status).value}


# Handler signatures.
#
# A topic event handler returns normally on success. If it raises, the event
# is retried when the exception carries a truthy ``retry`` attribute and is
# dropped otherwise.
ServiceInvocationHandler = Callable[[InvocationEvent], Optional[Content]]
TopicEventHandler = Callable[[TopicEvent], None]
BindingInvocationHandler = Callable[[BindingEvent], Optional[bytes]]
HealthCheckHandler = Callable[[], None]


class Service(abc.ABC):
    """A callback service the sidecar talks to."""

    @abc.abstractmethod
    def add_health_check_handler(self, name: str, fn: HealthCheckHandler) -> None:
        """Set the health check handler."""

    @abc.abstractmethod
    def add_service_invocation_handler(
        self, name: str, fn: ServiceInvocationHandler
    ) -> None:
        """Register a service invocation handler under ``name``."""

    @abc.abstractmethod
    def add_topic_event_handler(
        self, sub: Optional[Subscription], fn: Optional[TopicEventHandler]
    ) -> None:
        """Register a handler for a topic subscription."""

    @abc.abstractmethod
    def add_binding_invocation_handler(
        self, name: str, fn: BindingInvocationHandler
    ) -> None:
        """Register an input binding handler under ``name``."""

    @abc.abstractmethod
    def start(self) -> None:
        """Start serving."""

    @abc.abstractmethod
    def stop(self) -> None:
        """Stop the previously started service."""

    @abc.abstractmethod
    def graceful_stop(self) -> None:
        """Stop the previously started service gracefully."""