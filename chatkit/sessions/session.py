import asyncio
import contextlib
import logging
from collections.abc import Callable
from enum import Enum
from typing import Protocol, runtime_checkable

import uuid_utils

from chatkit.errors import DeliveryFailed, InvalidSessionState
from chatkit.models.chat_message import OutboundEnvelope
from chatkit.models.types import UserIdentity

logger = logging.getLogger(__name__)

DEFAULT_MAX_QUEUE = 256


@runtime_checkable
class Transport(Protocol):
    """Structural type for the connection handle owned by the transport layer.

    Satisfied by WebSocketTransport and BrokerTransport. Framing, protocol
    negotiation and bounding of slow writes are the transport's concern.
    """

    async def send(self, envelope: OutboundEnvelope) -> None: ...

    async def close(self) -> None: ...


class SessionState(str, Enum):
    CONNECTING = "connecting"
    ACTIVE = "active"
    CLOSING = "closing"
    CLOSED = "closed"


class OverflowPolicy(str, Enum):
    DROP_NEW = "drop_new"
    DROP_OLDEST = "drop_oldest"


_ALLOWED_TRANSITIONS: dict[SessionState, set[SessionState]] = {
    SessionState.CONNECTING: {SessionState.ACTIVE, SessionState.CLOSING},
    SessionState.ACTIVE: {SessionState.CLOSING},
    SessionState.CLOSING: {SessionState.CLOSED},
    SessionState.CLOSED: set(),
}


class Session:
    """One live client connection and its outbound delivery queue.

    The router only ever calls :meth:`enqueue`, which never blocks. A dedicated
    drain task hands queued envelopes to the transport in FIFO order; the first
    failed send closes the session, and closing discards whatever is still
    queued (those messages stay recoverable through history).
    """

    def __init__(
        self,
        identity: UserIdentity,
        transport: Transport,
        *,
        session_id: str | None = None,
        max_queue: int = DEFAULT_MAX_QUEUE,
        overflow: OverflowPolicy = OverflowPolicy.DROP_NEW,
        send_timeout: float | None = None,
        on_close: Callable[["Session"], None] | None = None,
    ) -> None:
        if max_queue <= 0:
            raise ValueError(f"max_queue must be positive, got {max_queue}")
        self.session_id = session_id or uuid_utils.uuid7().hex
        self.identity = identity
        self.transport = transport
        self.overflow = OverflowPolicy(overflow)
        self.send_timeout = send_timeout
        self.close_reason: str | None = None

        self.delivered = 0
        self.dropped = 0
        self.failed_sends = 0

        self._state = SessionState.CONNECTING
        self._queue: asyncio.Queue[OutboundEnvelope] = asyncio.Queue(maxsize=max_queue)
        self._on_close = on_close
        self._drain_task: asyncio.Task[None] | None = None
        self._closed = asyncio.Event()

    def __repr__(self) -> str:
        return (
            f"Session(id={self.session_id[:8]}, identity={self.identity!r}, "
            f"state={self._state.value})"
        )

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_active(self) -> bool:
        return self._state is SessionState.ACTIVE

    @property
    def is_closed(self) -> bool:
        return self._state is SessionState.CLOSED

    @property
    def pending(self) -> int:
        return self._queue.qsize()

    def _transition(self, target: SessionState) -> None:
        if target not in _ALLOWED_TRANSITIONS[self._state]:
            raise InvalidSessionState(
                f"Session {self.session_id} cannot move from {self._state.value} to {target.value}"
            )
        self._state = target

    def activate(self) -> None:
        """Mark the handshake as complete and start delivering."""
        self._transition(SessionState.ACTIVE)
        self._drain_task = asyncio.create_task(
            self.drain_loop(), name=f"session-drain-{self.session_id}"
        )
        logger.info("Session %s for %r is active", self.session_id, self.identity)

    def enqueue(self, envelope: OutboundEnvelope) -> bool:
        """Queue an envelope for delivery without blocking.

        Returns:
            bool: True if the envelope was queued.
        """
        if self._state is not SessionState.ACTIVE:
            return False
        try:
            self._queue.put_nowait(envelope)
            return True
        except asyncio.QueueFull:
            pass

        self.dropped += 1
        if self.overflow is OverflowPolicy.DROP_OLDEST:
            evicted = self._queue.get_nowait()
            self._queue.put_nowait(envelope)
            logger.warning(
                "Session %s queue full, evicted message %s (dropped=%d)",
                self.session_id,
                evicted.payload.id,
                self.dropped,
            )
            return True
        logger.warning(
            "Session %s queue full, dropped message %s (dropped=%d)",
            self.session_id,
            envelope.payload.id,
            self.dropped,
        )
        return False

    async def drain_loop(self) -> None:
        """Deliver queued envelopes in FIFO order until the session closes or a send fails."""
        while True:
            envelope = await self._queue.get()
            try:
                if self.send_timeout is None:
                    await self.transport.send(envelope)
                else:
                    await asyncio.wait_for(self.transport.send(envelope), self.send_timeout)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                self.failed_sends += 1
                failure = DeliveryFailed(self.session_id, repr(exc))
                logger.warning("%s", failure)
                # Closing from inside the drain task: don't cancel ourselves
                await self._shutdown(f"send failed: {exc!r}")
                return
            self.delivered += 1

    async def close(self, reason: str = "closed") -> None:
        """Close the session. Safe to call more than once."""
        await self._shutdown(reason)

    async def wait_closed(self) -> None:
        await self._closed.wait()

    async def _shutdown(self, reason: str) -> None:
        if self._state in (SessionState.CLOSING, SessionState.CLOSED):
            return
        self._transition(SessionState.CLOSING)
        self.close_reason = reason

        task = self._drain_task
        if task is not None and task is not asyncio.current_task() and not task.done():
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

        discarded = 0
        while not self._queue.empty():
            self._queue.get_nowait()
            discarded += 1

        try:
            await self.transport.close()
        except Exception:
            logger.exception("Error closing transport for session %s", self.session_id)

        self._transition(SessionState.CLOSED)
        self._closed.set()
        logger.info(
            "Session %s for %r closed (%s), discarded %d queued message(s)",
            self.session_id,
            self.identity,
            reason,
            discarded,
        )
        if self._on_close is not None:
            self._on_close(self)
