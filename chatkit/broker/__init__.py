from chatkit.broker.broker import BrokerClient
from chatkit.broker.middleware import ContextInjectionMiddleware

__all__ = ["BrokerClient", "ContextInjectionMiddleware"]
