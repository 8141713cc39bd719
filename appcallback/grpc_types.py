"""Message types exchanged with the sidecar over the gRPC callback protocol."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class AnyData:
    """A serialized payload together with the URL identifying its type."""

    value: bytes = b""
    type_url: str = ""


@dataclass
class HTTPExtension:
    """HTTP details of a service invocation forwarded over gRPC."""

    verb: str = "NONE"
    querystring: str = ""


@dataclass
class InvokeRequest:
    """A service invocation request."""

    method: str = ""
    data: Optional[AnyData] = None
    content_type: str = ""
    http_extension: Optional[HTTPExtension] = None


@dataclass
class InvokeResponse:
    """The reply to a service invocation."""

    data: Optional[AnyData] = None
    content_type: str = ""


@dataclass
class BindingEventRequest:
    """An event fired by an input binding."""

    name: str = ""
    data: bytes = b""
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class BindingEventResponse:
    """The reply to an input binding event."""

    data: Optional[bytes] = None


@dataclass
class ListInputBindingsResponse:
    """Names of the input bindings the application handles."""

    bindings: list[str] = field(default_factory=list)


@dataclass
class HealthCheckResponse:
    """The (empty) reply to a health check."""


class TopicEventStatus(enum.IntEnum):
    """How the sidecar should treat a delivered topic event."""

    SUCCESS = 0
    RETRY = 1
    DROP = 2


@dataclass
class TopicEventRequest:
    """A topic message delivered in a CloudEvents envelope."""

    id: str = ""
    source: str = ""
    type: str = ""
    spec_version: str = ""
    data_content_type: str = ""
    data: bytes = b""
    topic: str = ""
    pubsub_name: str = ""
    path: str = ""


@dataclass
class TopicEventResponse:
    """The handling status reported back for a topic event."""

    status: TopicEventStatus = TopicEventStatus.SUCCESS


class TopicEventError(Exception):
    """A topic event failed; ``response`` holds the status to report."""

    def __init__(self, message: str, response: TopicEventResponse) -> None:
        super().__init__(message)
        self.response = response

    @property
    def status(self) -> TopicEventStatus:
        """The status carried by the response."""
        return self.response.status


@dataclass
class TopicRuleMessage:
    """A routing rule as reported to the sidecar."""

    match: str = ""
    path: str = ""


@dataclass
class TopicRoutesMessage:
    """Routing rules and the default path as reported to the sidecar."""

    rules: list[TopicRuleMessage] = field(default_factory=list)
    default: str = ""


@dataclass
class TopicSubscriptionMessage:
    """A topic subscription as reported to the sidecar."""

    pubsub_name: str = ""
    topic: str = ""
    metadata: Optional[dict[str, str]] = None
    routes: Optional[TopicRoutesMessage] = None


@dataclass
class ListTopicSubscriptionsResponse:
    """All topic subscriptions of the application."""

    subscriptions: list[TopicSubscriptionMessage] = field(default_factory=list)