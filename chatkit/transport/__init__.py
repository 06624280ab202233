from chatkit.transport.broker import BrokerTransport
from chatkit.transport.websocket import ChatWebSocketServer, WebSocketTransport

__all__ = ["BrokerTransport", "ChatWebSocketServer", "WebSocketTransport"]
