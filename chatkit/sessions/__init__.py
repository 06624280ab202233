from chatkit.sessions.session import (
    DEFAULT_MAX_QUEUE,
    OverflowPolicy,
    Session,
    SessionState,
    Transport,
)

__all__ = [
    "DEFAULT_MAX_QUEUE",
    "OverflowPolicy",
    "Session",
    "SessionState",
    "Transport",
]
