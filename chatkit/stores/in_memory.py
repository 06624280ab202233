import asyncio
import itertools

from chatkit.errors import StoreUnavailable
from chatkit.models.chat_message import ChatMessage
from chatkit.models.types import UserIdentity
from chatkit.stores.base import HistoryStore, order_key


class InMemoryHistoryStore(HistoryStore):
    """In-memory history store.

    Useful for testing and development. Not suitable for production
    as data is lost when the process exits.
    """

    def __init__(self) -> None:
        """Initialize an empty in-memory store."""
        self._messages: list[ChatMessage] = []
        self._ids = itertools.count(1)
        self._lock = asyncio.Lock()
        # Flip to False to simulate an outage of the backing store
        self.available = True

    async def append(self, message: ChatMessage) -> int:
        async with self._lock:
            if not self.available:
                raise StoreUnavailable("In-memory history store is marked unavailable")
            message_id = next(self._ids)
            self._messages.append(message.model_copy(update={"id": message_id}))
            return message_id

    async def query(self, identity_a: UserIdentity, identity_b: UserIdentity) -> list[ChatMessage]:
        return sorted(
            (msg for msg in self._messages if msg.involves_pair(identity_a, identity_b)),
            key=order_key,
        )

    async def public_feed(self) -> list[ChatMessage]:
        return sorted((msg for msg in self._messages if msg.is_public), key=order_key)

    def __len__(self) -> int:
        return len(self._messages)
