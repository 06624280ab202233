import asyncio
import time
from collections.abc import Callable
from datetime import datetime, timezone

from chatkit.models.chat_message import ChatMessage, OutboundEnvelope
from chatkit.models.types import PUBLIC_CHANNEL


async def wait_for_condition(
    predicate: Callable[[], bool],
    timeout: float = 5.0,
    poll_interval: float = 0.01,
) -> None:
    """Wait for a predicate to become True.

    Args:
        predicate: A callable that returns True when the condition is met.
        timeout: Maximum time to wait in seconds.
        poll_interval: Time between checks in seconds.

    Raises:
        asyncio.TimeoutError: If the condition is not met within the timeout.

    Example:
        await wait_for_condition(lambda: len(transport.sent) == 2, timeout=1.0)
    """
    start = time.monotonic()
    while not predicate():
        elapsed = time.monotonic() - start
        if elapsed > timeout:
            raise asyncio.TimeoutError(f"Condition not met within {timeout}s timeout")
        await asyncio.sleep(poll_interval)


class RecordingTransport:
    """Transport double that records what a session delivers.

    ``fail`` makes every send raise; ``hold`` makes sends wait until
    ``release()`` is called.
    """

    def __init__(self, *, fail: bool = False, hold: bool = False, delay: float = 0.0) -> None:
        self.sent: list[OutboundEnvelope] = []
        self.closed = False
        self.close_calls = 0
        self.in_flight = 0
        self.fail = fail
        self.delay = delay
        self._gate = asyncio.Event()
        if not hold:
            self._gate.set()

    def release(self) -> None:
        self._gate.set()

    async def send(self, envelope: OutboundEnvelope) -> None:
        if self.fail:
            raise ConnectionResetError("peer went away")
        self.in_flight += 1
        try:
            await self._gate.wait()
            if self.delay:
                await asyncio.sleep(self.delay)
        finally:
            self.in_flight -= 1
        self.sent.append(envelope)

    async def close(self) -> None:
        self.closed = True
        self.close_calls += 1

    @property
    def bodies(self) -> list[str]:
        return [envelope.payload.body for envelope in self.sent]


def make_message(
    body: str,
    *,
    sender: str = "alice",
    receiver: str = PUBLIC_CHANNEL,
    timestamp: datetime | None = None,
    message_id: int | None = None,
) -> ChatMessage:
    return ChatMessage(
        id=message_id,
        sender_name=sender,
        receiver_name=receiver,
        body=body,
        timestamp=timestamp or datetime.now(timezone.utc),
    )


def make_envelope(body: str, **kwargs) -> OutboundEnvelope:
    return OutboundEnvelope.for_message(make_message(body, **kwargs))
