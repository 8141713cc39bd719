"""Application callback service: topic events, bindings, invocation and health checks."""

__version__ = "1.0.0"

__all__ = [
    "cloudevent",
    "common",
    "grpc_server",
    "grpc_types",
    "http_server",
    "registrar",
    "subscription",
]