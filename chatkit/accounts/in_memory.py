import asyncio
import hashlib
import hmac
import secrets
from dataclasses import dataclass

from chatkit.accounts.base import AccountStore
from chatkit.errors import DuplicateUser, InvalidCredentials
from chatkit.models.types import UserIdentity

DEFAULT_PBKDF2_ITERATIONS = 200_000


def _hash_password(password: str, salt: bytes, iterations: int) -> bytes:
    return hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt, iterations)


@dataclass(frozen=True)
class _Account:
    username: UserIdentity
    salt: bytes
    password_hash: bytes


class InMemoryAccountStore(AccountStore):
    """In-memory account store with salted PBKDF2 password hashes.

    Useful for testing and development. Accounts are lost when the process exits.
    """

    def __init__(self, *, iterations: int = DEFAULT_PBKDF2_ITERATIONS) -> None:
        self._iterations = iterations
        self._accounts: dict[UserIdentity, _Account] = {}
        self._lock = asyncio.Lock()

    async def authenticate(self, username: str, password: str) -> UserIdentity:
        account = self._accounts.get(username)
        if account is None:
            raise InvalidCredentials(f"Unknown user {username!r}")
        candidate = await asyncio.to_thread(
            _hash_password, password, account.salt, self._iterations
        )
        if not hmac.compare_digest(candidate, account.password_hash):
            raise InvalidCredentials(f"Wrong password for {username!r}")
        return account.username

    async def create_account(self, username: str, password: str) -> UserIdentity:
        if not username or not username.strip():
            raise InvalidCredentials("Username must not be empty")
        if username in self._accounts:
            raise DuplicateUser(f"User {username!r} already exists")
        salt = secrets.token_bytes(16)
        # hashing runs off the event loop
        password_hash = await asyncio.to_thread(_hash_password, password, salt, self._iterations)
        async with self._lock:
            # another registration may have won the name while hashing
            if username in self._accounts:
                raise DuplicateUser(f"User {username!r} already exists")
            self._accounts[username] = _Account(username, salt, password_hash)
        return username

    async def search(self, query: str) -> list[UserIdentity]:
        needle = query.casefold()
        return sorted(name for name in self._accounts if needle in name.casefold())
