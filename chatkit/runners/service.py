import logging
from typing import Any

from chatkit.broker.broker import BrokerClient
from chatkit.nodes.base_node import BaseNode

logger = logging.getLogger(__name__)


class NodesService:
    """Wires node handlers onto a broker and runs them."""

    def __init__(self, broker: BrokerClient):
        self._broker = broker
        self._subscribers: list[Any] = []
        self.nodes: list[BaseNode] = []

    def register_node(
        self,
        node: BaseNode,
        *,
        # group_id explicitly set as to avoid duplicated processing for separate deployments
        group_id: str = "chatkit",
        extra_publish_kwargs: dict[str, Any] | None = None,
        extra_subscribe_kwargs: dict[str, Any] | None = None,
    ) -> None:
        publish_kwargs = extra_publish_kwargs or {}
        subscribe_kwargs = extra_subscribe_kwargs or {}
        for handler_fn, topics_dict in node.bound_registry.items():
            name = f"{type(node).__name__}.{handler_fn.__name__}"
            sub = topics_dict.get("subscribe_topic")
            pub = topics_dict.get("publish_topic")
            if sub is None:
                # publish-only handlers are invoked directly, nothing to wire
                continue
            # reply publisher goes on first so the subscriber picks it up
            if pub is not None:
                handler_fn = self._broker.publisher(pub, **publish_kwargs)(handler_fn)
            subscriber = self._broker.subscriber(sub, group_id=group_id, **subscribe_kwargs)
            subscriber(handler_fn)
            self._subscribers.append(subscriber)
            logger.debug("Wired %s: %s -> %s", name, sub, pub or "-")
        self.nodes.append(node)

    @property
    def subscribed_topics(self) -> list[str]:
        return [topic for node in self.nodes for topic in node.subscribed_topics]

    async def start_subscribers(self) -> None:
        """Start all registered subscribers.

        Use this to start consumers that were registered after the broker
        has already been started.
        """
        for sub in self._subscribers:
            await sub.start()

    async def run(self) -> None:
        """Blocking function to run registered nodes as services."""
        await self._broker.run_app()
