from chatkit.accounts.base import AccountStore
from chatkit.accounts.in_memory import InMemoryAccountStore

__all__ = ["AccountStore", "InMemoryAccountStore"]
