from faststream.kafka import KafkaBroker

from chatkit.models.chat_message import OutboundEnvelope
from chatkit.models.frames import SessionEvent
from chatkit.models.types import UserIdentity


class BrokerTransport:
    """Delivers a session's envelopes by publishing them to its own Kafka topic.

    The client-facing edge (e.g. a WebSocket edge service) consumes the
    per-session topic and frames the payloads for the device.
    """

    def __init__(
        self,
        broker: KafkaBroker,
        *,
        session_id: str,
        identity: UserIdentity,
        delivery_topic: str,
        closed_topic: str,
    ) -> None:
        self._broker = broker
        self.session_id = session_id
        self.identity = identity
        self.delivery_topic = delivery_topic
        self.closed_topic = closed_topic

    async def send(self, envelope: OutboundEnvelope) -> None:
        await self._broker.publish(envelope, topic=self.delivery_topic)

    async def close(self) -> None:
        # Lets the edge tear down the client connection when the engine closes the session
        await self._broker.publish(
            SessionEvent(session_id=self.session_id, identity=self.identity),
            topic=self.closed_topic,
        )
