from abc import ABC, abstractmethod

from chatkit.models.types import UserIdentity


class AccountStore(ABC):
    """Abstract store of user accounts.

    The router never calls this directly; transports authenticate a connection
    here before handing its identity to the router.
    """

    @abstractmethod
    async def authenticate(self, username: str, password: str) -> UserIdentity:
        """Check credentials.

        Raises:
            InvalidCredentials: Unknown user or wrong password.
        """
        ...

    @abstractmethod
    async def create_account(self, username: str, password: str) -> UserIdentity:
        """Create a new account.

        Raises:
            DuplicateUser: The username is already taken.
        """
        ...

    @abstractmethod
    async def search(self, query: str) -> list[UserIdentity]:
        """Usernames containing ``query`` (case-insensitive), sorted."""
        ...
