import asyncio

import pytest

from chatkit.errors import InvalidSessionState
from chatkit.sessions.session import OverflowPolicy, Session, SessionState, Transport
from tests.utils import RecordingTransport, make_envelope, wait_for_condition


def test_recording_transport_satisfies_protocol():
    assert isinstance(RecordingTransport(), Transport)


def test_queue_bound_must_be_positive():
    with pytest.raises(ValueError):
        Session("alice", RecordingTransport(), max_queue=0)


def test_new_session_is_connecting_and_refuses_envelopes():
    session = Session("alice", RecordingTransport())

    assert session.state is SessionState.CONNECTING
    assert session.enqueue(make_envelope("too early")) is False
    assert session.pending == 0


@pytest.mark.asyncio
async def test_delivers_in_fifo_order():
    transport = RecordingTransport()
    session = Session("bob", transport)
    session.activate()
    assert session.state is SessionState.ACTIVE

    for body in ("one", "two", "three"):
        assert session.enqueue(make_envelope(body)) is True

    await wait_for_condition(lambda: len(transport.sent) == 3, timeout=1.0)
    assert transport.bodies == ["one", "two", "three"]
    assert session.delivered == 3
    await session.close()


@pytest.mark.asyncio
async def test_drop_new_rejects_envelopes_while_queue_is_full():
    transport = RecordingTransport(hold=True)
    session = Session("bob", transport, max_queue=2, overflow=OverflowPolicy.DROP_NEW)
    session.activate()

    session.enqueue(make_envelope("m1"))
    # m1 is now in flight and no longer counts against the queue
    await wait_for_condition(lambda: transport.in_flight == 1, timeout=1.0)
    assert session.enqueue(make_envelope("m2")) is True
    assert session.enqueue(make_envelope("m3")) is True
    assert session.enqueue(make_envelope("m4")) is False
    assert session.dropped == 1

    transport.release()
    await wait_for_condition(lambda: len(transport.sent) == 3, timeout=1.0)
    assert transport.bodies == ["m1", "m2", "m3"]
    await session.close()


@pytest.mark.asyncio
async def test_drop_oldest_evicts_head_of_queue():
    transport = RecordingTransport(hold=True)
    session = Session("bob", transport, max_queue=2, overflow=OverflowPolicy.DROP_OLDEST)
    session.activate()

    session.enqueue(make_envelope("m1"))
    await wait_for_condition(lambda: transport.in_flight == 1, timeout=1.0)
    session.enqueue(make_envelope("m2"))
    session.enqueue(make_envelope("m3"))
    assert session.enqueue(make_envelope("m4")) is True
    assert session.dropped == 1

    transport.release()
    await wait_for_condition(lambda: len(transport.sent) == 3, timeout=1.0)
    assert transport.bodies == ["m1", "m3", "m4"]
    await session.close()


@pytest.mark.asyncio
async def test_failed_send_closes_session():
    closed: list[Session] = []
    transport = RecordingTransport(fail=True)
    session = Session("bob", transport, on_close=closed.append)
    session.activate()

    session.enqueue(make_envelope("lost"))
    await asyncio.wait_for(session.wait_closed(), timeout=1.0)

    assert session.state is SessionState.CLOSED
    assert session.failed_sends == 1
    assert session.delivered == 0
    assert transport.closed
    assert closed == [session]
    assert session.close_reason.startswith("send failed")
    assert session.enqueue(make_envelope("after close")) is False


@pytest.mark.asyncio
async def test_send_timeout_counts_as_failure():
    transport = RecordingTransport(delay=5.0)
    session = Session("bob", transport, send_timeout=0.05)
    session.activate()

    session.enqueue(make_envelope("slow"))
    await asyncio.wait_for(session.wait_closed(), timeout=2.0)

    assert session.failed_sends == 1
    assert transport.sent == []


@pytest.mark.asyncio
async def test_close_discards_queued_envelopes():
    closed: list[Session] = []
    transport = RecordingTransport(hold=True)
    session = Session("bob", transport, on_close=closed.append)
    session.activate()

    for body in ("m1", "m2", "m3"):
        session.enqueue(make_envelope(body))
    await wait_for_condition(lambda: transport.in_flight == 1, timeout=1.0)

    await session.close("kicked")

    assert session.is_closed
    assert session.pending == 0
    assert session.close_reason == "kicked"
    assert transport.sent == []
    assert transport.close_calls == 1
    assert closed == [session]


@pytest.mark.asyncio
async def test_close_twice_is_a_noop():
    closed: list[Session] = []
    transport = RecordingTransport()
    session = Session("bob", transport, on_close=closed.append)
    session.activate()

    await session.close()
    await session.close()

    assert transport.close_calls == 1
    assert closed == [session]


@pytest.mark.asyncio
async def test_session_closed_before_activation():
    session = Session("bob", RecordingTransport())
    await session.close("handshake aborted")

    assert session.is_closed
    with pytest.raises(InvalidSessionState):
        session.activate()


@pytest.mark.asyncio
async def test_activate_twice_is_rejected():
    session = Session("bob", RecordingTransport())
    session.activate()

    with pytest.raises(InvalidSessionState):
        session.activate()
    await session.close()
