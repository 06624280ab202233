import logging
import threading

from chatkit.errors import InvalidSessionState
from chatkit.models.types import UserIdentity
from chatkit.sessions.session import Session

logger = logging.getLogger(__name__)


class PresenceRegistry:
    """Maps each identity to its live sessions (one per connected device).

    Every mutation is atomic and every lookup returns an immutable snapshot, so
    readers never observe a half-updated session set. Entries whose last session
    leaves are pruned.
    """

    def __init__(self) -> None:
        self._sessions: dict[UserIdentity, set[Session]] = {}
        self._lock = threading.Lock()

    def register(self, identity: UserIdentity, session: Session) -> None:
        """Add a session to the identity's set. Registering twice is a no-op."""
        if session.is_closed:
            raise InvalidSessionState(f"Cannot register closed session {session.session_id}")
        with self._lock:
            self._sessions.setdefault(identity, set()).add(session)
        logger.debug("Registered session %s for %r", session.session_id, identity)

    def unregister(self, identity: UserIdentity, session: Session) -> None:
        """Remove a session from the identity's set. Unknown pairs are ignored."""
        with self._lock:
            sessions = self._sessions.get(identity)
            if sessions is None or session not in sessions:
                return
            sessions.discard(session)
            if not sessions:
                del self._sessions[identity]
        logger.debug("Unregistered session %s for %r", session.session_id, identity)

    def sessions_for(self, identity: UserIdentity) -> frozenset[Session]:
        with self._lock:
            return frozenset(self._sessions.get(identity, ()))

    def all_sessions(self) -> frozenset[Session]:
        with self._lock:
            return frozenset(s for sessions in self._sessions.values() for s in sessions)

    def online_identities(self) -> list[UserIdentity]:
        with self._lock:
            return sorted(self._sessions)

    def __contains__(self, identity: object) -> bool:
        with self._lock:
            return identity in self._sessions

    def __len__(self) -> int:
        with self._lock:
            return sum(len(sessions) for sessions in self._sessions.values())
