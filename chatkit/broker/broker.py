import os
from collections.abc import Iterable
from typing import Any

from faststream import FastStream
from faststream.kafka import KafkaBroker

from chatkit.broker.middleware import ContextInjectionMiddleware


class BrokerClient(KafkaBroker):
    """Kafka broker wrapper used by the chat gateway"""

    def __init__(self, bootstrap_servers: str | Iterable[str] | None = None, **broker_kwargs: Any):
        if not bootstrap_servers:
            bootstrap_servers = os.getenv("CHATKIT_KAFKA_BOOTSTRAP_SERVERS")
        super().__init__(
            bootstrap_servers or "localhost",
            middlewares=[ContextInjectionMiddleware],
            **broker_kwargs,
        )

    @property
    def app(self) -> FastStream:
        return FastStream(self)

    async def run_app(self) -> None:
        await self.app.run()
