"""Chat History Store System.

The history store is the durable, append-only record of every accepted chat
message. It follows these principles:

* Write-before-deliver: The router persists a message before any session sees it
* Pair-addressed: Private history is queried by the two participants, in either direction
* Public feed: Messages to the public room use the reserved receiver ``PUBLIC_CHANNEL``
* Pluggable backends: Swap between in-memory and SQLite

Example:
    from chatkit.stores import SqliteHistoryStore

    # Deployment-time configuration
    store = await SqliteHistoryStore.open("history.db")

    # Inject into the router
    router = Router(history_store=store)

    # Read back what was delivered live
    messages = await router.fetch_history("alice", "bob")
"""

from chatkit.stores.base import HistoryStore
from chatkit.stores.in_memory import InMemoryHistoryStore
from chatkit.stores.sqlite import SqliteHistoryStore

__all__ = [
    "HistoryStore",
    "InMemoryHistoryStore",
    "SqliteHistoryStore",
]
