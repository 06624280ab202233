"""Inbound requests and outbound replies exchanged with the transport layer.

These are shared by the WebSocket server and the Kafka gateway so both speak
the same payload shapes.
"""

from pydantic import Field

from chatkit.models.chat_message import ChatMessage
from chatkit.models.types import PUBLIC_CHANNEL, CompactBaseModel, UserIdentity


class ChatRequest(CompactBaseModel):
    """A message submitted by a sender. Public unless a receiver is named."""

    sender: UserIdentity
    body: str
    receiver: UserIdentity = PUBLIC_CHANNEL

    @property
    def is_public(self) -> bool:
        return self.receiver == PUBLIC_CHANNEL


class HistoryRequest(CompactBaseModel):
    requester: UserIdentity
    # Defaults to the public feed when no peer is named
    peer: UserIdentity = PUBLIC_CHANNEL


class SessionEvent(CompactBaseModel):
    session_id: str
    identity: UserIdentity | None = None


class ChatReceipt(CompactBaseModel):
    """Tells a sender whether its message was accepted ("sent") or rejected ("lost")."""

    ok: bool
    message: ChatMessage | None = None
    error: str | None = None
    detail: str | None = None

    @classmethod
    def accepted(cls, message: ChatMessage) -> "ChatReceipt":
        return cls(ok=True, message=message)

    @classmethod
    def rejected(cls, error: str, detail: str) -> "ChatReceipt":
        return cls(ok=False, error=error, detail=detail)


class HistoryResponse(CompactBaseModel):
    requester: UserIdentity
    peer: UserIdentity = PUBLIC_CHANNEL
    messages: list[ChatMessage] = Field(default_factory=list)
