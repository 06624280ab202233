from chatkit.models.chat_message import ChatMessage, DestinationKind, OutboundEnvelope
from chatkit.models.frames import (
    ChatReceipt,
    ChatRequest,
    HistoryRequest,
    HistoryResponse,
    SessionEvent,
)
from chatkit.models.types import PUBLIC_CHANNEL, CompactBaseModel, UserIdentity

__all__ = [
    "PUBLIC_CHANNEL",
    "ChatMessage",
    "ChatReceipt",
    "ChatRequest",
    "CompactBaseModel",
    "DestinationKind",
    "HistoryRequest",
    "HistoryResponse",
    "OutboundEnvelope",
    "SessionEvent",
    "UserIdentity",
]
