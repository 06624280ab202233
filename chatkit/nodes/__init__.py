from chatkit.nodes.base_node import BaseNode, publish_to, subscribe_to
from chatkit.nodes.gateway_node import ChatGatewayNode

__all__ = [
    "BaseNode",
    "ChatGatewayNode",
    "publish_to",
    "subscribe_to",
]
