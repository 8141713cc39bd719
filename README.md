# appcallback

`appcallback` is the application side of a sidecar runtime. The sidecar calls
into your application to deliver pub/sub topic events, input binding events,
service invocations and health checks; this package receives those calls,
routes them to the handlers you register and turns the handlers' results into
the replies the sidecar expects.

Two front ends share the same model (`appcallback.common`):

- `appcallback.http_server.HttpServer` answers HTTP callbacks, including the
  `/dapr/subscribe` listing and `/healthz`, and can serve them with the
  standard library's threading HTTP server.
- `appcallback.grpc_server.GrpcServer` answers the callback calls in the shape
  of the gRPC protocol (`on_invoke`, `on_topic_event`, `on_binding_event`,
  `health_check`, `list_input_bindings`, `list_topic_subscriptions`), taking
  and returning the plain message objects of `appcallback.grpc_types`.

The package uses only the standard library.

## Subscribing to a topic

A `Subscription` names the pub/sub component, the topic and the route events
are delivered to. Several subscriptions to the same topic can add routing
rules with a `match` expression and a `priority`; rules are kept ordered by
priority, lowest first, and two rules may not share a positive priority. A
subscription without a match becomes the default route. With
`disable_topic_validation=True` a subscription receives events for any topic
of its pub/sub component.

```python
from appcallback.common import Subscription
from appcallback.http_server import HttpServer


def on_order(event):
    print(event.topic, event.data)


server = HttpServer(":8080")
server.add_topic_event_handler(
    Subscription(pubsub_name="messages", topic="orders", route="/orders"),
    on_order,
)
```

A topic handler that returns normally has its event acknowledged with
`SUCCESS`. If it raises, the event is answered with `RETRY` when the exception
has a truthy `retry` attribute, and with `DROP` otherwise:

```python
class RetryLater(Exception):
    retry = True
```

Over HTTP the status is written as the JSON body `{"status": ...}` with
status code 200; an empty or undecodable body is answered with 303 (drop).
`GrpcServer.on_topic_event` returns a `TopicEventResponse` for `SUCCESS` and
`DROP`, and raises `TopicEventError` (whose `status` is `RETRY` or `DROP`) for
a retry, an unknown pub/sub and topic, a missing route, or a request without
pub/sub or topic name.

Event payloads are decoded as CloudEvents carry them
(`appcallback.cloudevent.parse_cloud_event` and `decode_event_data`): JSON
data is parsed, JSON sent as an escaped or base64-encoded string is unwrapped,
and `data_base64` content is decoded to bytes and parsed further when the
content type is `application/json`. The original bytes stay on the event as
`raw_data`, and `TopicEvent.decode()` parses them as JSON. Over gRPC, data is
parsed for `application/json` and `application/*+json`, turned into text for
`text/plain`, and left as bytes otherwise.

## Service invocation, bindings and health checks

```python
from appcallback.common import Content


def echo(event):
    return Content(data=event.data, content_type=event.content_type)


def store(event):
    return b'{"stored": true}'


def healthy():
    return None


server.add_service_invocation_handler("/echo", echo)
server.add_binding_invocation_handler("/storage", store)
server.add_health_check_handler("/health", healthy)
```

- An invocation handler receives an `InvocationEvent` (data, content type,
  verb, query string) and returns a `Content` or `None`.
- A binding handler receives a `BindingEvent` (data and, over HTTP, the request
  headers as metadata) and returns bytes; over HTTP `None` becomes `{}`.
- A health check handler takes no arguments and signals an unhealthy app by
  raising. Over HTTP a healthy check answers 204 and a failing one 500.

Routes without a leading slash get one. Handler exceptions are answered with
500 over HTTP and propagate from the `GrpcServer` methods.

When the environment variable `APP_API_TOKEN` is set, service invocations
must carry the same value in the `dapr-api-token` header (HTTP, otherwise
answered with 203) or metadata entry (gRPC, otherwise `PermissionError`).

## Serving requests

`HttpServer.start()` registers the built-in routes and serves until `stop()`
or `graceful_stop()` is called. A stopped server cannot be started again and
raises `ServerClosedError`.

Requests can also be dispatched without a network socket, which is handy in
tests:

```python
server.register_base_handler()
response = server.handle("POST", "/echo", {"Content-Type": "text/plain"}, b"hi")
print(response.status, response.body)
```

The routes added by the `add_*` methods answer `OPTIONS` with CORS headers;
see `appcallback.http_server.set_options`.

## What this package does not do

- `GrpcServer` does not open a network port or speak the gRPC wire protocol.
  Its `start()` only marks it started and blocks until `stop()`; you call its
  methods from whatever transport you provide.
- There is no actor support: neither server offers actor registration, the
  `/dapr/config` route or the actor method, reminder, timer and deactivation
  routes.
- There is no client for calling the sidecar, and no command-line program.