from typing import Annotated

import pytest
from faststream import Context
from faststream.kafka import TestKafkaBroker

from chatkit.broker.broker import BrokerClient
from chatkit.models.chat_message import DestinationKind, OutboundEnvelope
from chatkit.models.frames import (
    ChatReceipt,
    ChatRequest,
    HistoryRequest,
    HistoryResponse,
    SessionEvent,
)
from chatkit.nodes.gateway_node import ChatGatewayNode
from chatkit.router import Router
from chatkit.runners.service import NodesService
from chatkit.stores.in_memory import InMemoryHistoryStore
from tests.utils import wait_for_condition


class Collected:
    def __init__(self) -> None:
        self.receipts: dict[str, ChatReceipt] = {}
        self.histories: list[HistoryResponse] = []
        self.deliveries: dict[str, list[OutboundEnvelope]] = {}
        self.closed: list[SessionEvent] = []


def delivery_collector(inbox: list[OutboundEnvelope]):
    def gather_delivery(envelope: OutboundEnvelope):
        inbox.append(envelope)

    return gather_delivery


async def send_chat(br, request: ChatRequest, correlation_id: str) -> None:
    # keyed by sender so one sender's messages share a partition
    await br.publish(
        request,
        topic="chat.input",
        key=request.sender.encode(),
        correlation_id=correlation_id,
    )


async def connect(br, session_id: str, identity: str | None = None) -> None:
    await br.publish(
        SessionEvent(session_id=session_id, identity=identity), topic="chat.session.connect"
    )


def deploy_gateway(session_ids: list[str], **node_kwargs):
    # simulate the deployment pre-testing
    store = InMemoryHistoryStore()
    router = Router(store)
    broker = BrokerClient()
    gateway = ChatGatewayNode(router, **node_kwargs)
    NodesService(broker).register_node(gateway)
    collected = Collected()

    @broker.subscriber(gateway.topic("chat.receipts"))
    def gather_receipt(receipt: ChatReceipt, correlation_id: Annotated[str, Context()]):
        collected.receipts[correlation_id] = receipt

    @broker.subscriber(gateway.topic("chat.history.output"))
    def gather_history(response: HistoryResponse):
        collected.histories.append(response)

    @broker.subscriber(gateway.closed_topic)
    def gather_closed(event: SessionEvent):
        collected.closed.append(event)

    for session_id in session_ids:
        inbox = collected.deliveries.setdefault(session_id, [])
        broker.subscriber(gateway.delivery_topic(session_id))(delivery_collector(inbox))

    return broker, gateway, router, store, collected


# --- Unit tests: topic wiring ---


def test_default_topics():
    gateway = ChatGatewayNode(Router(InMemoryHistoryStore()))

    assert sorted(gateway.subscribed_topics) == [
        "chat.history.input",
        "chat.input",
        "chat.session.connect",
        "chat.session.disconnect",
    ]
    assert sorted(gateway.published_topics) == ["chat.history.output", "chat.receipts"]
    assert gateway.delivery_topic("abc") == "chat.deliver.abc"
    assert gateway.closed_topic == "chat.session.closed"


def test_topic_prefix_applies_everywhere():
    gateway = ChatGatewayNode(Router(InMemoryHistoryStore()), topic_prefix="tenant1")

    assert all(t.startswith("tenant1.") for t in gateway.subscribed_topics)
    assert all(t.startswith("tenant1.") for t in gateway.published_topics)
    assert gateway.delivery_topic("abc") == "tenant1.chat.deliver.abc"
    assert gateway.closed_topic == "tenant1.chat.session.closed"
    # class-level wiring is left untouched
    assert "chat.input" in ChatGatewayNode(Router(InMemoryHistoryStore())).subscribed_topics


# --- Broker tests ---


@pytest.mark.asyncio
async def test_connect_then_public_message_is_delivered_and_acknowledged():
    broker, _, router, _, collected = deploy_gateway(["bob-1", "carol-1"])

    async with TestKafkaBroker(broker) as br:
        await connect(br, "bob-1", "bob")
        await connect(br, "carol-1", "carol")
        assert router.registry.online_identities() == ["bob", "carol"]

        await send_chat(br, ChatRequest(sender="alice", body="hi all"), "c-1")

        await wait_for_condition(lambda: "c-1" in collected.receipts)
        receipt = collected.receipts["c-1"]
        assert receipt.ok
        assert receipt.message.body == "hi all"

        for session_id in ("bob-1", "carol-1"):
            inbox = collected.deliveries[session_id]
            await wait_for_condition(lambda inbox=inbox: len(inbox) == 1)
            assert inbox[0].destination is DestinationKind.PUBLIC
            assert inbox[0].payload.id == receipt.message.id

        await router.close_all_sessions()


@pytest.mark.asyncio
async def test_private_message_goes_only_to_receiver():
    broker, _, router, _, collected = deploy_gateway(["bob-1", "carol-1"])

    async with TestKafkaBroker(broker) as br:
        await connect(br, "bob-1", "bob")
        await connect(br, "carol-1", "carol")

        await send_chat(br, ChatRequest(sender="alice", receiver="bob", body="psst"), "c-2")

        await wait_for_condition(lambda: len(collected.deliveries["bob-1"]) == 1)
        assert collected.receipts["c-2"].ok
        envelope = collected.deliveries["bob-1"][0]
        assert envelope.destination is DestinationKind.PRIVATE
        assert envelope.target == "bob"
        assert collected.deliveries["carol-1"] == []

        await router.close_all_sessions()


@pytest.mark.asyncio
async def test_mixed_public_and_private_keep_submission_order():
    """One sender's public and private messages share a topic and keep their order."""
    broker, _, router, _, collected = deploy_gateway(["bob-1"])
    sequence = [
        ChatRequest(sender="alice", body="1"),
        ChatRequest(sender="alice", receiver="bob", body="2"),
        ChatRequest(sender="alice", body="3"),
        ChatRequest(sender="alice", receiver="bob", body="4"),
    ]

    async with TestKafkaBroker(broker) as br:
        await connect(br, "bob-1", "bob")
        for i, request in enumerate(sequence):
            await send_chat(br, request, f"m-{i}")

        await wait_for_condition(lambda: len(collected.receipts) == 4)
        stamps = [collected.receipts[f"m-{i}"].message.timestamp for i in range(4)]
        assert stamps == sorted(stamps)
        assert [m.body for m in await router.fetch_public_history()] == ["1", "3"]
        assert [m.body for m in await router.fetch_history("alice", "bob")] == ["2", "4"]

        inbox = collected.deliveries["bob-1"]
        await wait_for_condition(lambda: len(inbox) == 4)
        assert [e.payload.body for e in inbox] == ["1", "2", "3", "4"]

        await router.close_all_sessions()


@pytest.mark.asyncio
async def test_store_outage_produces_rejected_receipt():
    broker, _, router, store, collected = deploy_gateway(["bob-1"])
    store.available = False

    async with TestKafkaBroker(broker) as br:
        await connect(br, "bob-1", "bob")
        await send_chat(br, ChatRequest(sender="alice", body="lost"), "c-3")

        await wait_for_condition(lambda: "c-3" in collected.receipts)
        receipt = collected.receipts["c-3"]
        assert not receipt.ok
        assert receipt.error == "store_unavailable"
        assert receipt.message is None
        assert collected.deliveries["bob-1"] == []

        await router.close_all_sessions()


@pytest.mark.asyncio
async def test_history_requests():
    broker, _, router, _, collected = deploy_gateway([])

    async with TestKafkaBroker(broker) as br:
        await router.accept_public("alice", "hi")
        await router.send_private("alice", "bob", "yo")

        await br.publish(HistoryRequest(requester="bob", peer="alice"), topic="chat.history.input")
        await br.publish(HistoryRequest(requester="bob"), topic="chat.history.input")

        await wait_for_condition(lambda: len(collected.histories) == 2)
        private, public = collected.histories
        assert private.peer == "alice"
        assert [m.body for m in private.messages] == ["yo"]
        assert public.peer == ""
        assert [m.body for m in public.messages] == ["hi"]


@pytest.mark.asyncio
async def test_disconnect_closes_session_and_announces_it():
    broker, _, router, _, collected = deploy_gateway(["bob-1"])

    async with TestKafkaBroker(broker) as br:
        await connect(br, "bob-1", "bob")
        # a repeated connect for a known session is ignored
        await connect(br, "bob-1", "bob")
        assert len(router.registry) == 1

        await br.publish(SessionEvent(session_id="bob-1"), topic="chat.session.disconnect")

        await wait_for_condition(lambda: len(collected.closed) == 1)
        assert collected.closed[0].session_id == "bob-1"
        assert router.session("bob-1") is None
        assert "bob" not in router.registry


@pytest.mark.asyncio
async def test_connect_without_identity_is_ignored():
    broker, _, router, _, _ = deploy_gateway([])

    async with TestKafkaBroker(broker) as br:
        await connect(br, "anon-1")

        assert router.session("anon-1") is None
        assert len(router.registry) == 0


def test_service_tracks_registered_nodes():
    broker = BrokerClient()
    service = NodesService(broker)
    gateway = ChatGatewayNode(Router(InMemoryHistoryStore()))

    service.register_node(gateway)

    assert service.nodes == [gateway]
    assert sorted(service.subscribed_topics) == sorted(gateway.subscribed_topics)
