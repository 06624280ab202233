"""Chat server entrypoint.

Usage:
    python -m chatkit

Configuration is read from ``CHATKIT_*`` environment variables (or a ``.env``
file); see chatkit.config.ChatSettings.
"""

import asyncio
import logging

from chatkit.accounts.in_memory import InMemoryAccountStore
from chatkit.broker.broker import BrokerClient
from chatkit.config import ChatSettings
from chatkit.nodes.gateway_node import ChatGatewayNode
from chatkit.router import Router
from chatkit.runners.service import NodesService
from chatkit.stores.base import HistoryStore
from chatkit.stores.in_memory import InMemoryHistoryStore
from chatkit.stores.sqlite import SqliteHistoryStore
from chatkit.transport.websocket import ChatWebSocketServer

logger = logging.getLogger("chatkit")


async def open_history_store(settings: ChatSettings) -> HistoryStore:
    if settings.history_db:
        return await SqliteHistoryStore.open(settings.history_db)
    logger.warning("CHATKIT_HISTORY_DB is not set, history is kept in memory only")
    return InMemoryHistoryStore()


def build_router(settings: ChatSettings, history_store: HistoryStore) -> Router:
    return Router(
        history_store,
        store_timeout=settings.store_timeout,
        max_body_length=settings.max_body_length,
        max_queue=settings.max_queue,
        overflow=settings.overflow,
        send_timeout=settings.send_timeout,
    )


async def main() -> None:
    settings = ChatSettings.from_env()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)-8s %(name)s — %(message)s",
        datefmt="%H:%M:%S",
    )

    history_store = await open_history_store(settings)
    router = build_router(settings, history_store)
    server = ChatWebSocketServer(
        router,
        InMemoryAccountStore(),
        host=settings.host,
        port=settings.port,
        idle_timeout=settings.idle_timeout,
    )

    tasks = [asyncio.create_task(server.serve_forever(), name="websocket-server")]
    if settings.kafka_bootstrap_servers:
        logger.info("Connecting to Kafka broker at %s", settings.kafka_bootstrap_servers)
        broker = BrokerClient(bootstrap_servers=settings.kafka_bootstrap_servers)
        service = NodesService(broker)
        gateway = ChatGatewayNode(router)
        service.register_node(gateway)
        for topic in service.subscribed_topics:
            logger.info("  - gateway subscribed to %s", topic)
        tasks.append(asyncio.create_task(service.run(), name="kafka-gateway"))

    try:
        await asyncio.gather(*tasks)
    finally:
        for task in tasks:
            task.cancel()
        await server.stop()
        await history_store.close()


if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nChat server stopped.")
