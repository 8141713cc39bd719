"""Internal representation of topic subscriptions and their routing rules."""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Optional


@dataclass
class TopicRule:
    """A single routing rule: a CEL match expression and the path to post to."""

    match: str
    path: str
    priority: int = 0

    def to_dict(self) -> dict[str, str]:
        """Return the JSON-ready form of the rule."""
        return {"match": self.match, "path": self.path}


@dataclass
class TopicRoutes:
    """The default route together with ordered routing rules."""

    rules: list[TopicRule] = field(default_factory=list)
    default: str = ""
    _priorities: set[int] = field(default_factory=set, repr=False, compare=False)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form, leaving out empty fields."""
        out: dict[str, Any] = {}
        if self.rules:
            out["rules"] = [rule.to_dict() for rule in self.rules]
        if self.default:
            out["default"] = self.default
        return out


@dataclass
class TopicSubscription:
    """One topic subscription as reported to the sidecar."""

    pubsub_name: str
    topic: str
    route: str = ""
    routes: Optional[TopicRoutes] = None
    metadata: Optional[dict[str, str]] = None

    def _describe(self) -> str:
        return f"subscription for topic {self.topic} on pubsub {self.pubsub_name}"

    def set_metadata(self, metadata: Optional[dict[str, str]]) -> None:
        """Set the metadata; raises ``ValueError`` if it is already set."""
        if self.metadata is not None:
            raise ValueError(f"{self._describe()} already has metadata set")
        self.metadata = metadata

    def set_default_route(self, path: str) -> None:
        """Set the default route; raises ``ValueError`` if it is already set."""
        if self.routes is None:
            if self.route:
                raise ValueError(f"{self._describe()} already has route {self.route}")
            self.route = path
        else:
            if self.routes.default:
                raise ValueError(
                    f"{self._describe()} already has route {self.routes.default}"
                )
            self.routes.default = path

    def add_routing_rule(self, path: str, match: str, priority: int) -> None:
        """Add a routing rule, keeping rules ordered by priority.

        Raises ``ValueError`` for an empty path or a duplicate positive priority.
        """
        if not path:
            raise ValueError("path is required for routing rules")
        if self.routes is None:
            self.routes = TopicRoutes(default=self.route)
            self.route = ""
        if priority > 0 and priority in self.routes._priorities:
            raise ValueError(
                f"{self._describe()} already has a routing rule with priority {priority}"
            )
        self.routes.rules.append(TopicRule(match=match, path=path, priority=priority))
        self.routes.rules.sort(key=lambda rule: rule.priority)
        if priority > 0:
            self.routes._priorities.add(priority)

    def to_dict(self) -> dict[str, Any]:
        """Return the JSON-ready form, leaving out empty optional fields."""
        out: dict[str, Any] = {"pubsubname": self.pubsub_name, "topic": self.topic}
        if self.route:
            out["route"] = self.route
        if self.routes is not None:
            out["routes"] = self.routes.to_dict()
        if self.metadata:
            out["metadata"] = dict(self.metadata)
        return out