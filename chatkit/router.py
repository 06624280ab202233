import asyncio
import logging

from pydantic import ValidationError

from chatkit.clock import FanoutGate, MonotonicClock
from chatkit.errors import InvalidMessage, StoreUnavailable
from chatkit.models.chat_message import ChatMessage, OutboundEnvelope
from chatkit.models.types import PUBLIC_CHANNEL, UserIdentity
from chatkit.presence.registry import PresenceRegistry
from chatkit.sessions.session import DEFAULT_MAX_QUEUE, OverflowPolicy, Session, Transport
from chatkit.stores.base import HistoryStore

logger = logging.getLogger(__name__)

DEFAULT_MAX_BODY_LENGTH = 4000


class Router:
    """Accepts chat messages, persists them, and fans them out to live sessions.

    Every accepted message is written to the history store before it is queued
    for any session. If the write fails the operation raises StoreUnavailable
    and nobody receives the message. Delivery problems of individual sessions
    never reach the sender.
    """

    def __init__(
        self,
        history_store: HistoryStore,
        *,
        registry: PresenceRegistry | None = None,
        clock: MonotonicClock | None = None,
        store_timeout: float | None = None,
        max_body_length: int = DEFAULT_MAX_BODY_LENGTH,
        max_queue: int = DEFAULT_MAX_QUEUE,
        overflow: OverflowPolicy = OverflowPolicy.DROP_NEW,
        send_timeout: float | None = None,
    ) -> None:
        """Initialize a Router.

        Args:
            history_store: Durable store every accepted message is appended to.
            registry: Presence registry used to resolve recipients. A fresh one is
                created when omitted.
            clock: Shared timestamp source. Must be exclusive to this router since
                its sequence numbers drive the fan-out ordering.
            store_timeout: Seconds a single append may take before the message is
                rejected with StoreUnavailable. ``None`` waits indefinitely.
            max_body_length: Longest accepted message body, in characters.
            max_queue: Outbound queue bound for sessions opened through this router.
            overflow: What a session does when its outbound queue is full.
            send_timeout: Seconds a single transport send may take before the
                session is treated as failed and closed.
        """
        self.history_store = history_store
        self.registry = registry if registry is not None else PresenceRegistry()
        self._clock = clock if clock is not None else MonotonicClock()
        self._gate = FanoutGate()
        self._store_timeout = store_timeout
        self._max_body_length = max_body_length
        self._max_queue = max_queue
        self._overflow = overflow
        self._send_timeout = send_timeout
        self._sessions_by_id: dict[str, Session] = {}

    # --- session lifecycle ---

    def open_session(
        self,
        identity: UserIdentity,
        transport: Transport,
        *,
        session_id: str | None = None,
    ) -> Session:
        """Create, activate and register a session for an authenticated connection.

        The session unregisters itself from presence as soon as it closes,
        whichever side closes it.
        """
        if not identity:
            raise InvalidMessage("A session needs a non-empty identity")
        if session_id is not None and session_id in self._sessions_by_id:
            raise InvalidMessage(f"Session id {session_id} is already in use")
        session = Session(
            identity,
            transport,
            session_id=session_id,
            max_queue=self._max_queue,
            overflow=self._overflow,
            send_timeout=self._send_timeout,
            on_close=self._forget_session,
        )
        session.activate()
        self._sessions_by_id[session.session_id] = session
        self.registry.register(identity, session)
        return session

    def session(self, session_id: str) -> Session | None:
        return self._sessions_by_id.get(session_id)

    async def close_session(self, session: Session, reason: str = "disconnected") -> None:
        await session.close(reason)

    async def close_all_sessions(self, reason: str = "server shutdown") -> None:
        sessions = list(self._sessions_by_id.values())
        await asyncio.gather(*(session.close(reason) for session in sessions))

    def _forget_session(self, session: Session) -> None:
        self.registry.unregister(session.identity, session)
        self._sessions_by_id.pop(session.session_id, None)

    # --- messaging ---

    async def accept_public(self, sender: UserIdentity, body: str) -> ChatMessage:
        """Persist a public message and queue it on every registered session.

        The sender's own other sessions receive it as well.

        Raises:
            StoreUnavailable: The message could not be persisted; nothing was delivered.
            InvalidMessage: Empty sender or body, or the body is too long.
        """
        return await self._accept(sender, PUBLIC_CHANNEL, body)

    async def send_private(
        self, sender: UserIdentity, receiver: UserIdentity, body: str
    ) -> ChatMessage:
        """Persist a private message and queue it on the receiver's sessions only.

        An offline receiver is not an error: the message is kept in history and
        is not replayed when the receiver reconnects.

        Raises:
            StoreUnavailable: The message could not be persisted; nothing was delivered.
            InvalidMessage: Empty sender, receiver or body, or the body is too long.
        """
        if not receiver:
            raise InvalidMessage("A private message needs a receiver")
        return await self._accept(sender, receiver, body)

    async def fetch_history(
        self, identity_a: UserIdentity, identity_b: UserIdentity
    ) -> list[ChatMessage]:
        """Every persisted message between two identities, oldest first."""
        return await self.history_store.query(identity_a, identity_b)

    async def fetch_public_history(self) -> list[ChatMessage]:
        return await self.history_store.public_feed()

    async def _accept(self, sender: UserIdentity, receiver: UserIdentity, body: str) -> ChatMessage:
        self._validate(sender, body)
        stamp = self._clock.stamp()
        # every stamped sequence is released below, even if the draft is rejected
        try:
            try:
                draft = ChatMessage(
                    sender_name=sender,
                    receiver_name=receiver,
                    body=body,
                    timestamp=stamp.timestamp,
                )
            except ValidationError as exc:
                raise InvalidMessage(f"Malformed message: {exc.error_count()} error(s)") from exc
            message_id = await self._persist(draft)
            message = draft.model_copy(update={"id": message_id})
            logger.debug("Persisted message %d from %r to %r", message_id, sender, receiver)

            # Queue in stamp order so every session sees timestamp order
            await self._gate.wait_turn(stamp.sequence)
            if message.is_public:
                recipients = self.registry.all_sessions()
            else:
                recipients = self.registry.sessions_for(receiver)
            self._fan_out(message, recipients)
        finally:
            await self._gate.release(stamp.sequence)
        return message

    async def _persist(self, draft: ChatMessage) -> int:
        try:
            if self._store_timeout is None:
                return await self.history_store.append(draft)
            return await asyncio.wait_for(self.history_store.append(draft), self._store_timeout)
        except StoreUnavailable:
            logger.warning("Rejected message from %r: history store unavailable", draft.sender_name)
            raise
        except asyncio.TimeoutError as exc:
            logger.warning(
                "Rejected message from %r: history store timed out after %ss",
                draft.sender_name,
                self._store_timeout,
            )
            raise StoreUnavailable(
                f"History store did not accept the write within {self._store_timeout}s"
            ) from exc

    def _fan_out(self, message: ChatMessage, recipients: frozenset[Session]) -> None:
        queued = 0
        for session in recipients:
            try:
                if session.enqueue(OutboundEnvelope.for_message(message)):
                    queued += 1
            except Exception:
                # One broken recipient must not stop delivery to the others
                logger.exception(
                    "Failed to queue message %s on session %s", message.id, session.session_id
                )
        logger.debug(
            "Fanned out message %s to %d/%d session(s)", message.id, queued, len(recipients)
        )

    def _validate(self, sender: UserIdentity, body: str) -> None:
        if not sender:
            raise InvalidMessage("A message needs a sender")
        if not body or not body.strip():
            raise InvalidMessage("Message body must not be empty")
        if len(body) > self._max_body_length:
            raise InvalidMessage(
                f"Message body is {len(body)} characters, limit is {self._max_body_length}"
            )
