import logging
from collections.abc import Awaitable, Callable
from typing import Any

from faststream import BaseMiddleware
from faststream.message import StreamMessage

logger = logging.getLogger(__name__)


class ContextInjectionMiddleware(BaseMiddleware):
    """Exposes the inbound correlation id to gateway handlers.

    Handlers read it with ``correlation_id: Annotated[str, Context()]`` to tag
    their log lines. Replies published by a handler keep the same id.
    """

    async def consume_scope(
        self,
        call_next: Callable[..., Awaitable[Any]],
        msg: StreamMessage[Any],
    ) -> Any:
        with self.context.scope("correlation_id", msg.correlation_id):
            try:
                return await super().consume_scope(call_next, msg)
            except Exception:
                logger.exception("Gateway handler failed (correlation_id=%s)", msg.correlation_id)
                raise
