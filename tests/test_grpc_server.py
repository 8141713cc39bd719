import threading

import pytest

from appcallback.common import (
    API_TOKEN_KEY,
    APP_API_TOKEN_ENV_VAR,
    Content,
    Subscription,
)
from appcallback.grpc_server import GrpcServer
from appcallback.grpc_types import (
    AnyData,
    BindingEventRequest,
    HealthCheckResponse,
    HTTPExtension,
    InvokeRequest,
    TopicEventError,
    TopicEventRequest,
    TopicEventStatus,
)


class _RetryError(Exception):
    retry = True


@pytest.fixture
def server(monkeypatch):
    monkeypatch.delenv(APP_API_TOKEN_ENV_VAR, raising=False)
    return GrpcServer()


def binding_handler(event):
    return event.data


def invoke_handler(event):
    return Content(content_type=event.content_type, data=event.data)


def invoke_handler_with_error(event):
    raise RuntimeError("test error")


def event_handler(event):
    return None


def event_handler_with_retry_error(event):
    raise _RetryError("nil event")


def event_handler_with_error(event):
    raise RuntimeError("nil event")


def _event(topic, pubsub, content_type="text/plain", data=b"test"):
    return TopicEventRequest(
        id="a123",
        source="test",
        type="test",
        spec_version="v1.0",
        data_content_type=content_type,
        data=data,
        topic=topic,
        pubsub_name=pubsub,
    )


# Service


def test_empty_address():
    with pytest.raises(ValueError, match="empty address"):
        GrpcServer("")


def test_start_stop(server):
    server.stop()
    thread = threading.Thread(target=server.start)
    thread.start()
    server.stop()
    thread.join(timeout=5)
    assert not thread.is_alive()
    with pytest.raises(RuntimeError, match="only be started once"):
        server.start()


# Bindings


def test_list_input_bindings(server):
    server.add_binding_invocation_handler("test1", binding_handler)
    server.add_binding_invocation_handler("test2", binding_handler)
    resp = server.list_input_bindings()
    assert sorted(resp.bindings) == ["test1", "test2"]


def test_binding_for_errors(server):
    with pytest.raises(ValueError):
        server.add_binding_invocation_handler("", None)
    with pytest.raises(ValueError, match="binding handler required"):
        server.add_binding_invocation_handler("test", None)


def test_binding_without_event(server):
    server.add_binding_invocation_handler("test", binding_handler)
    with pytest.raises(ValueError):
        server.on_binding_event(None)


def test_binding_wrong_method(server):
    server.add_binding_invocation_handler("test", binding_handler)
    with pytest.raises(LookupError, match="binding not implemented: invalid"):
        server.on_binding_event(BindingEventRequest(name="invalid"))


def test_binding_without_data(server):
    server.add_binding_invocation_handler("test", binding_handler)
    out = server.on_binding_event(BindingEventRequest(name="test"))
    assert out.data == b""


def test_binding_with_data(server):
    server.add_binding_invocation_handler("test", binding_handler)
    out = server.on_binding_event(BindingEventRequest(name="test", data=b"hello there"))
    assert out.data == b"hello there"


def test_binding_with_metadata(server):
    seen = []

    def handler(event):
        seen.append(event.metadata)
        return b"ok"

    server.add_binding_invocation_handler("test", handler)
    out = server.on_binding_event(
        BindingEventRequest(name="test", metadata={"k1": "v1", "k2": "v2"})
    )
    assert out.data == b"ok"
    assert seen == [{"k1": "v1", "k2": "v2"}]


def test_binding_handler_error_is_wrapped(server):
    def handler(event):
        raise ValueError("boom")

    server.add_binding_invocation_handler("test", handler)
    with pytest.raises(RuntimeError, match="error executing test binding: boom"):
        server.on_binding_event(BindingEventRequest(name="test"))


# Health check


def test_health_check_handler_for_errors(server):
    with pytest.raises(ValueError, match="health check handler required"):
        server.add_health_check_handler("", None)


def test_health_check(server):
    with pytest.raises(LookupError):
        server.health_check()

    server.add_health_check_handler("", lambda: None)
    assert server.health_check() == HealthCheckResponse()

    def unhealthy():
        raise RuntimeError("app is unhealthy")

    server.add_health_check_handler("", unhealthy)
    with pytest.raises(RuntimeError, match="app is unhealthy"):
        server.health_check()


# Invocation


def test_invoke_errors(server):
    with pytest.raises(ValueError):
        server.add_service_invocation_handler("", None)
    with pytest.raises(ValueError):
        server.add_service_invocation_handler("/", None)
    with pytest.raises(ValueError, match="invocation handler required"):
        server.add_service_invocation_handler("test", None)


def test_invoke_with_token(monkeypatch):
    monkeypatch.setenv(APP_API_TOKEN_ENV_VAR, "token")
    server = GrpcServer()
    server.add_service_invocation_handler("test", invoke_handler)
    request = InvokeRequest(method="test")

    out = server.on_invoke(request, {API_TOKEN_KEY: ["token"]})
    assert out.content_type == ""

    with pytest.raises(PermissionError, match="authentication failed"):
        server.on_invoke(request)
    with pytest.raises(PermissionError, match="token mismatch"):
        server.on_invoke(request, {API_TOKEN_KEY: "mismatch"})
    with pytest.raises(PermissionError, match="key not exist"):
        server.on_invoke(request, {})


def test_invoke(server):
    server.add_service_invocation_handler("/test", invoke_handler)
    server.add_service_invocation_handler("error", invoke_handler_with_error)

    with pytest.raises(ValueError):
        server.on_invoke(None)
    with pytest.raises(LookupError, match="method not implemented: invalid"):
        server.on_invoke(InvokeRequest(method="invalid"))

    out = server.on_invoke(InvokeRequest(method="test"))
    assert out.data.value == b""

    request = InvokeRequest(
        method="test", data=AnyData(value=b"hello there"), content_type="text/plain"
    )
    out = server.on_invoke(request)
    assert out.content_type == "text/plain"
    assert out.data.value == b"hello there"

    request.method = "error"
    with pytest.raises(RuntimeError, match="test error"):
        server.on_invoke(request)


def test_invoke_passes_http_extension(server):
    seen = []
    server.add_service_invocation_handler("test", lambda e: seen.append(e))
    out = server.on_invoke(
        InvokeRequest(
            method="test",
            http_extension=HTTPExtension(verb="POST", querystring="a=1&b=2"),
        )
    )
    assert out.data is None
    assert (seen[0].verb, seen[0].query_string) == ("POST", "a=1&b=2")


# Topics


def test_topic_errors(server):
    with pytest.raises(ValueError, match="subscription required"):
        server.add_topic_event_handler(None, None)
    sub = Subscription()
    with pytest.raises(ValueError):
        server.add_topic_event_handler(sub, None)
    sub.pubsub_name = "messages"
    with pytest.raises(ValueError, match="topic name required"):
        server.add_topic_event_handler(sub, None)
    sub.topic = "test"
    with pytest.raises(ValueError, match="topic handler required"):
        server.add_topic_event_handler(sub, None)


def test_topic_subscription_list(server):
    server.add_topic_event_handler(
        Subscription(pubsub_name="messages", topic="test", route="/test"),
        event_handler,
    )
    resp = server.list_topic_subscriptions()
    assert len(resp.subscriptions) == 1
    sub = resp.subscriptions[0]
    assert (sub.pubsub_name, sub.topic) == ("messages", "test")
    assert sub.routes is None

    server.add_topic_event_handler(
        Subscription(
            pubsub_name="messages",
            topic="test",
            route="/other",
            match='event.type == "other"',
        ),
        event_handler,
    )
    resp = server.list_topic_subscriptions()
    assert len(resp.subscriptions) == 1
    routes = resp.subscriptions[0].routes
    assert routes.default == "/test"
    assert len(routes.rules) == 1
    assert routes.rules[0].path == "/other"
    assert routes.rules[0].match == 'event.type == "other"'


def test_topic(server):
    server.add_topic_event_handler(
        Subscription(pubsub_name="messages", topic="test"), event_handler
    )
    with pytest.raises(TopicEventError) as info:
        server.on_topic_event(None)
    assert info.value.status is TopicEventStatus.DROP

    with pytest.raises(TopicEventError):
        server.on_topic_event(TopicEventRequest(topic="invalid"))

    with pytest.raises(TopicEventError) as info:
        server.on_topic_event(_event("other", "messages"))
    assert info.value.status is TopicEventStatus.RETRY

    resp = server.on_topic_event(_event("test", "messages"))
    assert resp.status is TopicEventStatus.SUCCESS


def test_topic_with_validation_disabled(server):
    server.add_topic_event_handler(
        Subscription(pubsub_name="messages", topic="*", disable_topic_validation=True),
        event_handler,
    )
    resp = server.on_topic_event(_event("test", "messages"))
    assert resp.status is TopicEventStatus.SUCCESS


def test_topic_with_errors(server):
    server.add_topic_event_handler(
        Subscription(pubsub_name="messages", topic="test1"),
        event_handler_with_retry_error,
    )
    server.add_topic_event_handler(
        Subscription(pubsub_name="messages", topic="test2"), event_handler_with_error
    )

    with pytest.raises(TopicEventError) as info:
        server.on_topic_event(_event("test1", "messages"))
    assert info.value.status is TopicEventStatus.RETRY

    resp = server.on_topic_event(_event("test2", "messages"))
    assert resp.status is TopicEventStatus.DROP


def test_topic_route_without_default_handler(server):
    server.add_topic_event_handler(
        Subscription(
            pubsub_name="messages", topic="test", route="/other", match="x"
        ),
        event_handler,
    )
    with pytest.raises(TopicEventError, match="route  for pub/sub") as info:
        server.on_topic_event(_event("test", "messages"))
    assert info.value.status is TopicEventStatus.RETRY

    request = _event("test", "messages")
    request.path = "/other"
    assert server.on_topic_event(request).status is TopicEventStatus.SUCCESS


@pytest.mark.parametrize(
    "content_type, data, value",
    [
        ("application/json", b'{"message":"hello"}', {"message": "hello"}),
        ("application/extension+json", b'{"message":"hello"}', {"message": "hello"}),
        ("text/plain", b"message = hello", "message = hello"),
        ("application/octet-stream", b"message = hello", b"message = hello"),
    ],
)
def test_event_data_handling(server, content_type, data, value):
    received = []
    server.add_topic_event_handler(
        Subscription(pubsub_name="messages", topic="test", route="/test", metadata={}),
        received.append,
    )
    server.on_topic_event(_event("test", "messages", content_type, data))
    assert received[0].data == value
    assert received[0].raw_data == data