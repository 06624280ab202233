class ChatError(Exception):
    """Base class for errors surfaced by the chat engine."""

    code: str = "chat_error"


class StoreUnavailable(ChatError):
    """The history store could not durably accept a write.

    Fatal to the single message operation: nothing is delivered and the caller
    must reject the send explicitly.
    """

    code = "store_unavailable"


class DeliveryFailed(ChatError):
    """Sending to one recipient session failed. Handled inside that session."""

    code = "delivery_failed"

    def __init__(self, session_id: str, reason: str) -> None:
        self.session_id = session_id
        self.reason = reason
        super().__init__(f"Delivery to session {session_id} failed: {reason}")


class InvalidMessage(ChatError):
    code = "invalid_message"


class InvalidSessionState(ChatError):
    code = "invalid_session_state"


class InvalidCredentials(ChatError):
    code = "invalid_credentials"


class DuplicateUser(ChatError):
    code = "duplicate_user"
