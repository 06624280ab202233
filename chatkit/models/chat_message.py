from datetime import datetime
from enum import Enum

from pydantic import ConfigDict, Field

from chatkit.models.types import PUBLIC_CHANNEL, CompactBaseModel, UserIdentity


class ChatMessage(CompactBaseModel):
    """A single accepted chat message.

    Created by the router at the moment a message is accepted and never mutated
    afterwards. ``id`` stays ``None`` until the history store has persisted the
    message; the persisted copy is produced with ``model_copy``.
    """

    model_config = ConfigDict(frozen=True)

    id: int | None = None
    sender_name: UserIdentity
    # PUBLIC_CHANNEL for messages sent to the public room
    receiver_name: UserIdentity = PUBLIC_CHANNEL
    body: str
    timestamp: datetime

    @property
    def is_public(self) -> bool:
        return self.receiver_name == PUBLIC_CHANNEL

    @property
    def participants(self) -> frozenset[UserIdentity]:
        return frozenset((self.sender_name, self.receiver_name))

    def involves_pair(self, identity_a: UserIdentity, identity_b: UserIdentity) -> bool:
        """True when {sender, receiver} is exactly {identity_a, identity_b}."""
        return (self.sender_name, self.receiver_name) in (
            (identity_a, identity_b),
            (identity_b, identity_a),
        )


class DestinationKind(str, Enum):
    PUBLIC = "public"
    PRIVATE = "private"


class OutboundEnvelope(CompactBaseModel):
    """Transient per-recipient delivery unit. Consumed once, never persisted."""

    model_config = ConfigDict(frozen=True)

    destination: DestinationKind
    target: UserIdentity | None = None
    payload: ChatMessage = Field(...)

    @classmethod
    def for_message(cls, message: ChatMessage) -> "OutboundEnvelope":
        if message.is_public:
            return cls(destination=DestinationKind.PUBLIC, target=None, payload=message)
        return cls(
            destination=DestinationKind.PRIVATE,
            target=message.receiver_name,
            payload=message,
        )
