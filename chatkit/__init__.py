from importlib.metadata import version

from chatkit.accounts import AccountStore, InMemoryAccountStore
from chatkit.broker import BrokerClient
from chatkit.clock import FanoutGate, MonotonicClock
from chatkit.config import ChatSettings
from chatkit.errors import (
    ChatError,
    DeliveryFailed,
    DuplicateUser,
    InvalidCredentials,
    InvalidMessage,
    InvalidSessionState,
    StoreUnavailable,
)
from chatkit.models import (
    PUBLIC_CHANNEL,
    ChatMessage,
    DestinationKind,
    OutboundEnvelope,
    UserIdentity,
)
from chatkit.nodes import BaseNode, ChatGatewayNode, publish_to, subscribe_to
from chatkit.presence import PresenceRegistry
from chatkit.router import Router
from chatkit.runners import NodesService
from chatkit.sessions import OverflowPolicy, Session, SessionState, Transport
from chatkit.stores import HistoryStore, InMemoryHistoryStore, SqliteHistoryStore
from chatkit.transport import BrokerTransport, ChatWebSocketServer, WebSocketTransport

__version__ = version("chatkit")
__all__ = [
    "__version__",
    # accounts
    "AccountStore",
    "InMemoryAccountStore",
    # broker
    "BrokerClient",
    # clock
    "FanoutGate",
    "MonotonicClock",
    # config
    "ChatSettings",
    # errors
    "ChatError",
    "DeliveryFailed",
    "DuplicateUser",
    "InvalidCredentials",
    "InvalidMessage",
    "InvalidSessionState",
    "StoreUnavailable",
    # models
    "PUBLIC_CHANNEL",
    "ChatMessage",
    "DestinationKind",
    "OutboundEnvelope",
    "UserIdentity",
    # nodes
    "BaseNode",
    "ChatGatewayNode",
    "publish_to",
    "subscribe_to",
    # presence
    "PresenceRegistry",
    # router
    "Router",
    # runners
    "NodesService",
    # sessions
    "OverflowPolicy",
    "Session",
    "SessionState",
    "Transport",
    # stores
    "HistoryStore",
    "InMemoryHistoryStore",
    "SqliteHistoryStore",
    # transport
    "BrokerTransport",
    "ChatWebSocketServer",
    "WebSocketTransport",
]
