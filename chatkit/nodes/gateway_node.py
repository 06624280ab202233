import logging
from typing import Annotated

from faststream import Context
from faststream.kafka.annotations import (
    KafkaBroker as BrokerAnnotation,
)

from chatkit.errors import ChatError
from chatkit.models.frames import (
    ChatReceipt,
    ChatRequest,
    HistoryRequest,
    HistoryResponse,
    SessionEvent,
)
from chatkit.models.types import PUBLIC_CHANNEL
from chatkit.nodes.base_node import BaseNode, publish_to, subscribe_to
from chatkit.router import Router
from chatkit.transport.broker import BrokerTransport

logger = logging.getLogger(__name__)


class ChatGatewayNode(BaseNode):
    """Bridges Kafka topics to the router.

    An edge service that owns the client connections publishes connect and
    disconnect events plus inbound chat frames; the gateway opens router
    sessions whose deliveries go out on ``chat.deliver.<session_id>``.
    Public and private messages share the ``chat.input`` topic, so a single
    subscriber accepts them in publish order. Producers key ``chat.input`` by
    sender so each sender stays on one partition and keeps its submission order.
    """

    _connect_topic_name = "chat.session.connect"
    _disconnect_topic_name = "chat.session.disconnect"
    _closed_topic_name = "chat.session.closed"
    _input_topic_name = "chat.input"
    _receipts_topic_name = "chat.receipts"
    _history_topic_name = "chat.history.input"
    _history_output_topic_name = "chat.history.output"
    _delivery_topic_template = "chat.deliver.{session_id}"

    def __init__(self, router: Router, **kwargs):
        self.router = router
        super().__init__(**kwargs)

    def delivery_topic(self, session_id: str) -> str:
        return self.topic(self._delivery_topic_template.format(session_id=session_id))

    @property
    def closed_topic(self) -> str:
        return self.topic(self._closed_topic_name)

    @subscribe_to(_connect_topic_name)
    async def on_connect(self, event: SessionEvent, broker: BrokerAnnotation) -> None:
        if not event.identity:
            logger.warning("Ignoring connect for session %s without identity", event.session_id)
            return
        if self.router.session(event.session_id) is not None:
            logger.debug("Session %s already connected", event.session_id)
            return
        transport = BrokerTransport(
            broker,
            session_id=event.session_id,
            identity=event.identity,
            delivery_topic=self.delivery_topic(event.session_id),
            closed_topic=self.closed_topic,
        )
        self.router.open_session(event.identity, transport, session_id=event.session_id)

    @subscribe_to(_disconnect_topic_name)
    async def on_disconnect(self, event: SessionEvent) -> None:
        session = self.router.session(event.session_id)
        if session is None:
            return
        await self.router.close_session(session, reason="client disconnected")

    @subscribe_to(_input_topic_name)
    @publish_to(_receipts_topic_name)
    async def on_chat(
        self,
        request: ChatRequest,
        correlation_id: Annotated[str, Context()],
    ) -> ChatReceipt:
        try:
            if request.is_public:
                message = await self.router.accept_public(request.sender, request.body)
            else:
                message = await self.router.send_private(
                    request.sender, request.receiver, request.body
                )
        except ChatError as exc:
            logger.warning(
                "Message from %r to %r rejected [%s]: %s",
                request.sender,
                request.receiver or "public",
                correlation_id,
                exc,
            )
            return ChatReceipt.rejected(exc.code, str(exc))
        return ChatReceipt.accepted(message)

    @subscribe_to(_history_topic_name)
    @publish_to(_history_output_topic_name)
    async def on_history(self, request: HistoryRequest) -> HistoryResponse:
        if request.peer == PUBLIC_CHANNEL:
            messages = await self.router.fetch_public_history()
        else:
            messages = await self.router.fetch_history(request.requester, request.peer)
        return HistoryResponse(requester=request.requester, peer=request.peer, messages=messages)
