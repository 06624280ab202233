from abc import ABC, abstractmethod
from collections.abc import Sequence

from chatkit.models.chat_message import ChatMessage
from chatkit.models.types import UserIdentity


class HistoryStore(ABC):
    """Abstract durable, append-only log of chat messages.

    Messages are written once, before they are handed to any live session, and
    are never updated or deleted. Reads return messages ordered ascending by
    timestamp, ties broken by insertion order.
    """

    @abstractmethod
    async def append(self, message: ChatMessage) -> int:
        """Durably append a single message.

        Must be safe to call concurrently. Writes from the same sender are never
        lost or reordered.

        Args:
            message: The message to persist. Its ``id`` is ignored.

        Returns:
            The id assigned to the persisted message.

        Raises:
            StoreUnavailable: If the write could not be durably accepted.
        """
        ...

    @abstractmethod
    async def query(self, identity_a: UserIdentity, identity_b: UserIdentity) -> list[ChatMessage]:
        """Load every message exchanged between two identities, in either direction.

        Passing ``PUBLIC_CHANNEL`` as one side selects the other identity's public
        messages. Returns an empty list for pairs that never talked.
        """
        ...

    @abstractmethod
    async def public_feed(self) -> list[ChatMessage]:
        """Load every message sent to the public room, in the same order as query()."""
        ...

    async def append_many(self, messages: Sequence[ChatMessage]) -> list[int]:
        """Append multiple messages in order.

        Default implementation calls append() for each message.
        Override for batch optimization if needed.
        """
        return [await self.append(message) for message in messages]

    async def close(self) -> None:
        """Release any backend resources."""
        return None


def order_key(message: ChatMessage) -> tuple:
    # id reflects insertion order, so it breaks timestamp ties stably
    return (message.timestamp, message.id if message.id is not None else -1)
