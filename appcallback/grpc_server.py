"""Callback service answering the sidecar's gRPC calls."""

from __future__ import annotations

import json
import os
import re
import threading
from collections.abc import Mapping, Sequence
from typing import Any, Optional, Union

from appcallback.common import (
    API_TOKEN_KEY,
    APP_API_TOKEN_ENV_VAR,
    BindingEvent,
    BindingInvocationHandler,
    HealthCheckHandler,
    InvocationEvent,
    Service,
    ServiceInvocationHandler,
    Subscription,
    TopicEvent,
    TopicEventHandler,
)
from appcallback.grpc_types import (
    AnyData,
    BindingEventRequest,
    BindingEventResponse,
    HealthCheckResponse,
    InvokeRequest,
    InvokeResponse,
    ListInputBindingsResponse,
    ListTopicSubscriptionsResponse,
    TopicEventError,
    TopicEventRequest,
    TopicEventResponse,
    TopicEventStatus,
    TopicRoutesMessage,
    TopicRuleMessage,
    TopicSubscriptionMessage,
)
from appcallback.registrar import TopicRegistrar
from appcallback.subscription import TopicRoutes

Metadata = Mapping[str, Union[str, Sequence[str]]]

_MEDIA_PART = r"[!#$%&'*+.^_`|~0-9a-z-]+"
_MEDIA_TYPE = re.compile(rf"^{_MEDIA_PART}/{_MEDIA_PART}$")


def _media_type(content_type: str) -> Optional[str]:
    """Return the lower-cased media type, or ``None`` if it cannot be parsed."""
    media_type = content_type.split(";", 1)[0].strip().lower()
    return media_type if _MEDIA_TYPE.match(media_type) else None


def _decode_data(data: bytes, content_type: str) -> Any:
    if not data:
        return data
    media_type = _media_type(content_type)
    if media_type is None:
        return data
    if media_type == "text/plain":
        return data.decode("utf-8", errors="replace")
    is_json = media_type == "application/json" or (
        media_type.startswith("application/") and media_type.endswith("+json")
    )
    if is_json:
        try:
            return json.loads(data)
        except ValueError:
            return data
    return data


def _convert_routes(routes: Optional[TopicRoutes]) -> Optional[TopicRoutesMessage]:
    if routes is None:
        return None
    return TopicRoutesMessage(
        rules=[TopicRuleMessage(match=r.match, path=r.path) for r in routes.rules],
        default=routes.default,
    )


def _first_value(metadata: Metadata, key: str) -> Optional[str]:
    values = metadata.get(key)
    if values is None:
        return None
    if isinstance(values, str):
        return values
    return values[0] if len(values) > 0 else None


class GrpcServer(Service):
    """Dispatches the sidecar's gRPC callbacks to registered handlers."""

    def __init__(self, address: str = "localhost:50001") -> None:
        if not address:
            raise ValueError("empty address")
        self.address = address
        self._invoke_handlers: dict[str, ServiceInvocationHandler] = {}
        self._binding_handlers: dict[str, BindingInvocationHandler] = {}
        self._registrar = TopicRegistrar()
        self._health_check_handler: Optional[HealthCheckHandler] = None
        self._expected_credential = os.environ.get(APP_API_TOKEN_ENV_VAR) or None
        self._lock = threading.Lock()
        self._started = False
        self._stopped = threading.Event()

    # Health check

    def add_health_check_handler(self, name: str, fn: HealthCheckHandler) -> None:
        """Set the health check handler; ``name`` is ignored."""
        if fn is None:
            raise ValueError("health check handler required")
        self._health_check_handler = fn

    def health_check(self) -> HealthCheckResponse:
        """Run the health check handler; its exceptions propagate."""
        if self._health_check_handler is None:
            raise LookupError("health check handler not implemented")
        self._health_check_handler()
        return HealthCheckResponse()

    # Service invocation

    def add_service_invocation_handler(
        self, method: str, fn: ServiceInvocationHandler
    ) -> None:
        """Register an invocation handler; a leading slash is stripped."""
        if not method or method == "/":
            raise ValueError("service name required")
        method = method.removeprefix("/")
        if fn is None:
            raise ValueError("invocation handler required")
        self._invoke_handlers[method] = fn

    def _authenticate(self, metadata: Optional[Metadata]) -> None:
        if not self._expected_credential:
            return
        if metadata is None:
            raise PermissionError("authentication failed")
        presented = _first_value(metadata, API_TOKEN_KEY)
        if presented is None:
            raise PermissionError("authentication failed. app token key not exist")
        if presented != self._expected_credential:
            raise PermissionError("authentication failed: app token mismatch")

    def on_invoke(
        self, request: Optional[InvokeRequest], metadata: Optional[Metadata] = None
    ) -> InvokeResponse:
        """Handle a service invocation, checking the app token if one is set."""
        if request is None:
            raise ValueError("nil invoke request")
        self._authenticate(metadata)
        fn = self._invoke_handlers.get(request.method)
        if fn is None:
            raise LookupError(f"method not implemented: {request.method}")

        event = InvocationEvent(content_type=request.content_type)
        if request.data is not None:
            event.data = request.data.value
            event.data_type_url = request.data.type_url
        if request.http_extension is not None:
            event.verb = request.http_extension.verb
            event.query_string = request.http_extension.querystring

        content = fn(event)
        if content is None:
            return InvokeResponse()
        return InvokeResponse(
            content_type=content.content_type,
            data=AnyData(value=content.data or b"", type_url=content.data_type_url),
        )

    # Bindings

    def add_binding_invocation_handler(
        self, name: str, fn: BindingInvocationHandler
    ) -> None:
        """Register an input binding handler."""
        if not name:
            raise ValueError("binding name required")
        if fn is None:
            raise ValueError("binding handler required")
        self._binding_handlers[name] = fn

    def list_input_bindings(self) -> ListInputBindingsResponse:
        """Return the names of all registered input bindings."""
        return ListInputBindingsResponse(bindings=list(self._binding_handlers))

    def on_binding_event(
        self, request: Optional[BindingEventRequest]
    ) -> BindingEventResponse:
        """Dispatch an input binding event to its handler."""
        if request is None:
            raise ValueError("nil binding event request")
        fn = self._binding_handlers.get(request.name)
        if fn is None:
            raise LookupError(f"binding not implemented: {request.name}")
        event = BindingEvent(data=request.data, metadata=request.metadata)
        try:
            data = fn(event)
        except Exception as err:
            raise RuntimeError(
                f"error executing {request.name} binding: {err}"
            ) from err
        return BindingEventResponse(data=data)

    # Topics

    def add_topic_event_handler(
        self, sub: Optional[Subscription], fn: Optional[TopicEventHandler]
    ) -> None:
        """Register a topic event handler for ``sub``."""
        if sub is None:
            raise ValueError("subscription required")
        self._registrar.add_subscription(sub, fn)

    def list_topic_subscriptions(self) -> ListTopicSubscriptionsResponse:
        """Return every topic subscription with its routing rules."""
        return ListTopicSubscriptionsResponse(
            subscriptions=[
                TopicSubscriptionMessage(
                    pubsub_name=reg.subscription.pubsub_name,
                    topic=reg.subscription.topic,
                    metadata=reg.subscription.metadata,
                    routes=_convert_routes(reg.subscription.routes),
                )
                for reg in self._registrar.registrations()
            ]
        )

    def on_topic_event(
        self, request: Optional[TopicEventRequest]
    ) -> TopicEventResponse:
        """Dispatch a topic event.

        Returns SUCCESS, or DROP when the handler fails without asking for a
        retry. Raises ``TopicEventError`` carrying the status otherwise.
        """
        if request is None or not request.topic or not request.pubsub_name:
            raise TopicEventError(
                "pub/sub and topic names required",
                TopicEventResponse(TopicEventStatus.DROP),
            )
        registration = self._registrar.get(
            f"{request.pubsub_name}-{request.topic}"
        ) or self._registrar.get(request.pubsub_name)
        if registration is None:
            raise TopicEventError(
                "pub/sub and topic combination not configured: "
                f"{request.pubsub_name}/{request.topic}",
                TopicEventResponse(TopicEventStatus.RETRY),
            )

        event = TopicEvent(
            id=request.id,
            source=request.source,
            type=request.type,
            spec_version=request.spec_version,
            data_content_type=request.data_content_type,
            data=_decode_data(request.data, request.data_content_type),
            raw_data=request.data,
            topic=request.topic,
            pubsub_name=request.pubsub_name,
        )

        handler = registration.default_handler
        if request.path and request.path in registration.route_handlers:
            handler = registration.route_handlers[request.path]
        if handler is None:
            raise TopicEventError(
                f"route {request.path} for pub/sub and topic combination not "
                f"configured: {request.pubsub_name}/{request.topic}",
                TopicEventResponse(TopicEventStatus.RETRY),
            )

        try:
            handler(event)
        except Exception as err:
            if getattr(err, "retry", False):
                raise TopicEventError(
                    str(err), TopicEventResponse(TopicEventStatus.RETRY)
                ) from err
            return TopicEventResponse(TopicEventStatus.DROP)
        return TopicEventResponse(TopicEventStatus.SUCCESS)

    # Lifecycle

    def start(self) -> None:
        """Mark the service started and block until it is stopped."""
        with self._lock:
            if self._started:
                raise RuntimeError("a gRPC server can only be started once")
            self._started = True
        self._stopped.wait()

    def stop(self) -> None:
        """Stop the service; does nothing if it was never started."""
        with self._lock:
            if not self._started:
                return
        self._stopped.set()

    def graceful_stop(self) -> None:
        """Stop the service once in-flight work is done."""
        self.stop()