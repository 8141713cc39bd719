"""Callback service answering the sidecar over HTTP."""

from __future__ import annotations

import json
import logging
import os
import threading
from collections.abc import Callable, Mapping, MutableMapping
from dataclasses import dataclass, field
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Optional

from appcallback.cloudevent import parse_cloud_event
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
    SubscriptionResponse,
    SubscriptionStatus,
    TopicEventHandler,
)
from appcallback.registrar import TopicRegistrar

_log = logging.getLogger(__name__)

PUB_SUB_HANDLER_SUCCESS_STATUS_CODE = 200
"""Acknowledges a pub/sub event."""

PUB_SUB_HANDLER_RETRY_STATUS_CODE = 500
"""Negative acknowledgement: the sidecar retries the event."""

PUB_SUB_HANDLER_DROP_STATUS_CODE = 303
"""Tells the sidecar to drop the event."""


@dataclass
class HttpResponse:
    """Status, headers and body produced for one request."""

    status: int = 200
    headers: dict[str, str] = field(default_factory=dict)
    body: bytes = b""


class ServerClosedError(Exception):
    """The server was stopped and cannot be started again."""


def _canonical(key: str) -> str:
    return "-".join(part[:1].upper() + part[1:].lower() for part in key.split("-"))


@dataclass
class _Request:
    method: str
    path: str
    query: str
    headers: dict[str, str]
    body: bytes

    def header(self, name: str) -> str:
        return self.headers.get(_canonical(name), "")


_Handler = Callable[[_Request], HttpResponse]


def _error(message: str, status: int) -> HttpResponse:
    return HttpResponse(
        status=status,
        headers={
            "Content-Type": "text/plain; charset=utf-8",
            "X-Content-Type-Options": "nosniff",
        },
        body=(message + "\n").encode("utf-8"),
    )


def set_options(headers: MutableMapping[str, str]) -> MutableMapping[str, str]:
    """Set the CORS and Allow headers answering an OPTIONS request."""
    headers["Access-Control-Allow-Origin"] = "*"
    headers["Access-Control-Allow-Methods"] = "POST,OPTIONS"
    headers["Access-Control-Allow-Headers"] = "authorization, origin, content-type, accept"
    headers["Allow"] = "POST,OPTIONS"
    return headers


def _with_options(handler: _Handler) -> _Handler:
    def wrapped(request: _Request) -> HttpResponse:
        if request.method == "OPTIONS":
            return HttpResponse(status=200, headers=dict(set_options({})))
        return handler(request)

    return wrapped


def _parse_address(address: str) -> tuple[str, int]:
    host, sep, port = address.rpartition(":")
    if not sep:
        host, port = address, ""
    host = host.strip("[]")
    return host, int(port) if port else 80


def _status_body(status: SubscriptionStatus) -> bytes:
    return (json.dumps(SubscriptionResponse(status).to_dict()) + "\n").encode("utf-8")


class HttpServer(Service):
    """Routes the sidecar's HTTP callbacks to registered handlers."""

    def __init__(self, address: str = "") -> None:
        self.address = address
        self._routes: dict[str, dict[Optional[str], _Handler]] = {}
        self._registrar = TopicRegistrar()
        self._auth_token = os.environ.get(APP_API_TOKEN_ENV_VAR, "")
        self._lock = threading.Lock()
        self._httpd: Optional[ThreadingHTTPServer] = None
        self._closed = False

    def _mount(self, route: str, handler: _Handler, method: Optional[str] = None) -> None:
        self._routes.setdefault(route, {})[method] = handler

    # Health check

    def add_health_check_handler(self, route: str, fn: HealthCheckHandler) -> None:
        """Serve ``fn`` at ``route``: 204 when healthy, 500 when it raises."""
        if fn is None:
            raise ValueError("health check handler required")
        if not route.startswith("/"):
            route = "/" + route

        def handler(request: _Request) -> HttpResponse:
            try:
                fn()
            except Exception as err:
                return _error(str(err), 500)
            return HttpResponse(status=204)

        self._mount(route, _with_options(handler))

    # Service invocation

    def add_service_invocation_handler(
        self, route: str, fn: ServiceInvocationHandler
    ) -> None:
        """Serve a service invocation handler at ``route``."""
        if not route or route == "/":
            raise ValueError("service route required")
        if fn is None:
            raise ValueError("invocation handler required")
        if not route.startswith("/"):
            route = "/" + route

        def handler(request: _Request) -> HttpResponse:
            if self._auth_token:
                token = request.header(API_TOKEN_KEY)
                if not token or token != self._auth_token:
                    return _error("authentication failed.", 203)
            event = InvocationEvent(
                verb=request.method,
                query_string=request.query,
                content_type=request.header("Content-Type"),
            )
            if request.body:
                event.data = request.body
            try:
                content = fn(event)
            except Exception as err:
                return _error(str(err), 500)
            response = HttpResponse(status=200)
            if content is not None and content.data is not None:
                if content.content_type:
                    response.headers["Content-Type"] = content.content_type
                response.body = bytes(content.data)
            return response

        self._mount(route, _with_options(handler))

    # Bindings

    def add_binding_invocation_handler(
        self, route: str, fn: BindingInvocationHandler
    ) -> None:
        """Serve an input binding handler at ``route``."""
        if not route:
            raise ValueError("binding route required")
        if fn is None:
            raise ValueError("binding handler required")
        if not route.startswith("/"):
            route = "/" + route

        def handler(request: _Request) -> HttpResponse:
            event = BindingEvent(
                data=request.body if request.body else None,
                metadata=dict(request.headers),
            )
            try:
                out = fn(event)
            except Exception as err:
                return _error(str(err), 500)
            if out is None:
                out = b"{}"
            return HttpResponse(
                status=200,
                headers={"Content-Type": "application/json"},
                body=bytes(out),
            )

        self._mount(route, _with_options(handler))

    # Topics

    def add_topic_event_handler(
        self, sub: Optional[Subscription], fn: Optional[TopicEventHandler]
    ) -> None:
        """Register a topic subscription and serve its handler at ``sub.route``."""
        if sub is None:
            raise ValueError("subscription required")
        if not sub.route:
            raise ValueError("handler route name")
        if not sub.route.startswith("/"):
            raise ValueError(f"routing pattern must begin with '/' in '{sub.route}'")
        self._registrar.add_subscription(sub, fn)
        assert fn is not None

        def handler(request: _Request) -> HttpResponse:
            if not request.body:
                return _error("nil content", PUB_SUB_HANDLER_DROP_STATUS_CODE)
            try:
                event = parse_cloud_event(request.body, sub.pubsub_name, sub.topic)
            except ValueError as err:
                return _error(str(err), PUB_SUB_HANDLER_DROP_STATUS_CODE)

            response = HttpResponse(
                status=200, headers={"Content-Type": "application/json"}
            )
            try:
                fn(event)
            except Exception as err:
                status = (
                    SubscriptionStatus.RETRY
                    if getattr(err, "retry", False)
                    else SubscriptionStatus.DROP
                )
                response.body = _status_body(status)
                return response
            response.body = _status_body(SubscriptionStatus.SUCCESS)
            return response

        self._mount(sub.route, _with_options(handler))

    def register_base_handler(self) -> None:
        """Serve the subscription list at /dapr/subscribe and /healthz."""

        def subscribe(request: _Request) -> HttpResponse:
            subs = [reg.subscription.to_dict() for reg in self._registrar.registrations()]
            return HttpResponse(
                status=200,
                headers={"Content-Type": "application/json"},
                body=(json.dumps(subs) + "\n").encode("utf-8"),
            )

        def healthz(request: _Request) -> HttpResponse:
            return HttpResponse(status=200)

        self._mount("/dapr/subscribe", subscribe)
        self._mount("/healthz", healthz, "GET")

    # Dispatch

    def handle(
        self,
        method: str,
        path: str,
        headers: Optional[Mapping[str, str]] = None,
        body: bytes = b"",
    ) -> HttpResponse:
        """Route one request to its handler and return the response."""
        route, _, query = path.partition("?")
        request = _Request(
            method=method.upper(),
            path=route,
            query=query,
            headers={_canonical(k): v for k, v in (headers or {}).items()},
            body=body or b"",
        )
        handlers = self._routes.get(route)
        if handlers is None:
            return _error("404 page not found", 404)
        handler = handlers.get(request.method) or handlers.get(None)
        if handler is None:
            return HttpResponse(status=405)
        return handler(request)

    def _request_handler_class(self) -> type[BaseHTTPRequestHandler]:
        server = self

        class _RequestHandler(BaseHTTPRequestHandler):
            protocol_version = "HTTP/1.1"

            def _dispatch(self) -> None:
                try:
                    length = int(self.headers.get("Content-Length") or 0)
                except ValueError:
                    length = 0
                body = self.rfile.read(length) if length > 0 else b""
                response = server.handle(
                    self.command, self.path, dict(self.headers.items()), body
                )
                self.send_response(response.status)
                for key, value in response.headers.items():
                    self.send_header(key, value)
                self.send_header("Content-Length", str(len(response.body)))
                self.end_headers()
                if self.command != "HEAD":
                    self.wfile.write(response.body)

            do_GET = do_POST = do_PUT = do_DELETE = _dispatch
            do_PATCH = do_OPTIONS = do_HEAD = _dispatch

            def log_message(self, format: str, *args: object) -> None:
                _log.debug("%s - " + format, self.address_string(), *args)

        return _RequestHandler

    # Lifecycle

    def start(self) -> None:
        """Register base routes and serve until stopped.

        Raises ``ServerClosedError`` if the server was already stopped.
        """
        with self._lock:
            self.register_base_handler()
            if self._closed:
                raise ServerClosedError("http: Server closed")
            httpd = ThreadingHTTPServer(
                _parse_address(self.address), self._request_handler_class()
            )
            self._httpd = httpd
        try:
            httpd.serve_forever()
        finally:
            httpd.server_close()

    def stop(self) -> None:
        """Stop serving; a stopped server cannot be started again."""
        with self._lock:
            self._closed = True
            httpd, self._httpd = self._httpd, None
        if httpd is not None:
            httpd.shutdown()

    def graceful_stop(self) -> None:
        """Stop serving once in-flight requests are done."""
        self.stop()