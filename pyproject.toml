[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "appcallback"
version = "1.0.0"
description = "Application callback service for a sidecar runtime: service invocation, pub/sub topic events, input bindings and health checks over HTTP or gRPC-style calls."
requires-python = ">=3.10"
dependencies = []
keywords = [
    "sidecar",
    "pubsub",
    "cloudevents",
    "service-invocation",
    "bindings",
    "microservices",
]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: Developers",
    "Operating System :: OS Independent",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Distributed Computing",
    "Topic :: Software Development :: Libraries :: Python Modules",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["appcallback"]

[tool.pytest.ini_options]
addopts = "-ra"

[tool.ruff]
line-length = 100
target-version = "py310"

[tool.mypy]
python_version = "3.10"
warn_unused_ignores = true
