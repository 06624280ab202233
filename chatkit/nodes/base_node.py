from abc import ABC
from collections.abc import Callable
from typing import Any, TypedDict


def subscribe_to(topic_name: str) -> Callable[[Any], Any]:
    def decorator(fn: Any) -> Any:
        fn._subscribe_to_topic_name = topic_name
        return fn

    return decorator


def publish_to(topic_name: str) -> Callable[[Any], Any]:
    def decorator(fn: Any) -> Any:
        fn._publish_to_topic_name = topic_name
        return fn

    return decorator


class TopicsDict(TypedDict, total=False):
    """Describes the pub/sub wiring for a single handler method."""

    publish_topic: str
    subscribe_topic: str


class BaseNode(ABC):
    """A node declares which broker topics its handler methods consume and produce.
    When provided to a NodesService, the handlers are wired onto a broker."""

    _handler_registry: dict[Callable[..., Any], TopicsDict] = {}

    def __init__(self, *, topic_prefix: str | None = None) -> None:
        self.topic_prefix = topic_prefix
        self.bound_registry: dict[Callable[..., Any], TopicsDict] = {
            fn.__get__(self, type(self)): self._prefixed(topics_dict)
            for fn, topics_dict in self._handler_registry.items()
        }

    def __init_subclass__(cls) -> None:
        super().__init_subclass__()

        cls._handler_registry = {}

        for attr in cls.__dict__.values():
            publish_to_topic_name = getattr(attr, "_publish_to_topic_name", None)
            subscribe_to_topic_name = getattr(attr, "_subscribe_to_topic_name", None)
            if publish_to_topic_name:
                cls._handler_registry[attr] = {"publish_topic": publish_to_topic_name}
            if subscribe_to_topic_name:
                cls._handler_registry[attr] = cls._handler_registry.get(attr, {})
                cls._handler_registry[attr]["subscribe_topic"] = subscribe_to_topic_name

    def _prefixed(self, topics: TopicsDict) -> TopicsDict:
        # Copy to avoid mutating the class-level _handler_registry dicts
        updated: TopicsDict = {**topics}
        if self.topic_prefix:
            for key in ("publish_topic", "subscribe_topic"):
                topic = updated.get(key)
                if isinstance(topic, str):
                    updated[key] = self.topic(topic)
        return updated

    def topic(self, name: str) -> str:
        """Resolve a topic name against this node's prefix."""
        return f"{self.topic_prefix}.{name}" if self.topic_prefix else name

    @property
    def subscribed_topics(self) -> list[str]:
        return [
            t["subscribe_topic"] for t in self.bound_registry.values() if "subscribe_topic" in t
        ]

    @property
    def published_topics(self) -> list[str]:
        return [t["publish_topic"] for t in self.bound_registry.values() if "publish_topic" in t]
