import asyncio
import logging

import pytest
from websockets.protocol import State

from broker_client.display import TextDisplay
from broker_client.ws_client import BrokerSession
from broker_shared.frame import InvalidArgumentError
from broker_shared.topics import ConnectionState


async def open_session(dummy_ws_factory, dummy_connect_factory, frames=(), display=None):
    ws = dummy_ws_factory(frames)
    connect = dummy_connect_factory(ws)
    session = BrokerSession(display, connect=connect)
    session.initialize("ws://broker.test/ws")
    assert await session.wait_open(timeout=1.0)
    return session, ws, connect


def test_new_session_is_closed():
    session = BrokerSession()
    assert session.state is ConnectionState.CLOSED
    assert session.broker_id is None


@pytest.mark.asyncio
async def test_no_usable_url_does_not_connect(dummy_connect_factory):
    connect = dummy_connect_factory()
    session = BrokerSession(connect=connect)

    assert session.initialize() is session
    await session.send("topic", "payload")

    assert connect.calls == []
    assert session.state is ConnectionState.CLOSED
    assert await session.wait_open(timeout=0.1) is False


@pytest.mark.asyncio
async def test_url_derived_from_secure_origin(dummy_ws_factory, dummy_connect_factory):
    connect = dummy_connect_factory(dummy_ws_factory())
    session = BrokerSession(connect=connect)
    session.initialize(origin="https://fund78.com:443")
    assert await session.wait_open(timeout=1.0)

    assert session.url == "wss://fund78.com:443/ws"
    assert connect.calls[0][0] == "wss://fund78.com:443/ws"
    await session.close()


@pytest.mark.asyncio
async def test_inbound_frames_are_parsed_and_dispatched_in_order(dummy_ws_factory, dummy_connect_factory):
    display = TextDisplay.with_keys(["price"])
    ws = dummy_ws_factory(["[broker_id][Client-1]", "[price][10]", "garbage", "[price][11]", b"[news][hi]"])
    session = BrokerSession(display, connect=dummy_connect_factory(ws))
    received = []
    session.on_message(lambda t, p: received.append((t, p)))
    session.initialize("ws://broker.test/ws")
    assert await session.wait_open(timeout=1.0)

    await session.close()

    assert received == [
        ("broker_id", "Client-1"),
        ("price", "10"),
        ("price", "11"),
        ("news", "hi"),
    ]
    assert session.broker_id == "Client-1"
    assert display.text_of("price") == "11"
    assert session.state is ConnectionState.CLOSED


@pytest.mark.asyncio
async def test_send_encodes_frame(dummy_ws_factory, dummy_connect_factory):
    session, ws, _ = await open_session(dummy_ws_factory, dummy_connect_factory)

    await session.send("move", "game-1,5")

    assert ws.sent_messages == ["[move][game-1,5]"]
    await session.close()


@pytest.mark.asyncio
@pytest.mark.parametrize("topic, payload", [("t", None), (None, "p"), (None, None), ("", "p")])
async def test_send_with_missing_fields_writes_nothing(dummy_ws_factory, dummy_connect_factory, topic, payload):
    session, ws, _ = await open_session(dummy_ws_factory, dummy_connect_factory)

    await session.send(topic, payload)

    assert ws.sent_messages == []
    await session.close()


@pytest.mark.asyncio
async def test_send_while_connecting_is_dropped(dummy_ws_factory, dummy_connect_factory):
    gate = asyncio.Event()
    ws = dummy_ws_factory()
    session = BrokerSession(connect=dummy_connect_factory(ws, gate=gate))
    session.initialize("ws://broker.test/ws")
    await asyncio.sleep(0)

    assert session.state is ConnectionState.CONNECTING
    await session.send("t", "p")
    assert ws.sent_messages == []

    gate.set()
    assert await session.wait_open(timeout=1.0)
    await session.send("t", "p")
    assert ws.sent_messages == ["[t][p]"]
    await session.close()


@pytest.mark.asyncio
async def test_second_initialize_keeps_newest_connection(dummy_ws_factory, dummy_connect_factory):
    gate = asyncio.Event()
    old_ws, new_ws = dummy_ws_factory(), dummy_ws_factory()
    connects = {
        "ws://old/ws": dummy_connect_factory(old_ws, gate=gate),
        "ws://new/ws": dummy_connect_factory(new_ws),
    }

    async def connect(url, **kwargs):
        return await connects[url](url, **kwargs)

    session = BrokerSession(connect=connect)
    session.initialize("ws://old/ws")
    old_task = session._recv_task
    await asyncio.sleep(0)
    session.initialize("ws://new/ws")
    assert await session.wait_open(timeout=1.0)

    gate.set()
    await asyncio.wait_for(old_task, timeout=1.0)
    await session.send("t", "p")

    assert session.url == "ws://new/ws"
    assert session.websocket is new_ws
    assert new_ws.sent_messages == ["[t][p]"]
    assert old_ws.sent_messages == []
    assert old_ws.closed
    await session.close()


@pytest.mark.asyncio
async def test_send_after_close_is_dropped(dummy_ws_factory, dummy_connect_factory):
    session, ws, _ = await open_session(dummy_ws_factory, dummy_connect_factory)
    await session.close()

    await session.send("t", "p")

    assert ws.closed and ws.close_code == 1000
    assert ws.sent_messages == []


@pytest.mark.asyncio
async def test_send_on_socket_in_closing_state_is_dropped(dummy_ws_factory, dummy_connect_factory):
    session, ws, _ = await open_session(dummy_ws_factory, dummy_connect_factory)
    ws.state = State.CLOSING

    await session.send("t", "p")

    assert session.state is ConnectionState.CLOSED
    assert ws.sent_messages == []
    await session.close()


@pytest.mark.asyncio
async def test_connect_failure_leaves_session_closed(dummy_connect_factory):
    session = BrokerSession(connect=dummy_connect_factory(error=OSError("connection refused")))
    session.initialize("ws://127.0.0.1:1/ws")

    assert await session.wait_open(timeout=1.0) is False
    assert session.state is ConnectionState.CLOSED
    await session.send("t", "p")
    await session.close()


@pytest.mark.asyncio
async def test_invalid_explicit_url_is_rejected(dummy_connect_factory):
    connect = dummy_connect_factory()
    session = BrokerSession(connect=connect)
    session.initialize("http://not-a-websocket/ws")
    assert connect.calls == []
    assert session.url is None


def test_on_message_forms():
    session = BrokerSession()
    everything = session.on_message(lambda t, p: None)
    one = session.on_message("stock_price", lambda t, p: None)
    several = session.on_message({"move", "start"}, lambda t, p: None)

    assert everything.filter.is_all
    assert one.filter.topics == frozenset({"stock_price"})
    assert several.filter.topics == frozenset({"move", "start"})

    with pytest.raises(InvalidArgumentError):
        session.on_message("stock_price")
    with pytest.raises(InvalidArgumentError):
        session.on_message("stock_price", "not callable")


def test_handle_frame_returns_notified_count():
    session = BrokerSession()
    session.on_message("a", lambda t, p: None)
    session.on_message(lambda t, p: None)

    assert session.handle_frame("[a][1]") == 2
    assert session.handle_frame("[b][1]") == 1
    assert session.handle_frame("[a]") == 0


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__()
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.mark.asyncio
async def test_transport_error_on_send_is_logged_not_raised(dummy_ws_factory, dummy_connect_factory):
    session, ws, _ = await open_session(dummy_ws_factory, dummy_connect_factory)
    error = RuntimeError("boom")

    async def failing_send(data):
        raise error

    ws.send = failing_send
    logger = logging.getLogger("broker_client.ws_client")
    handler = _ListHandler()
    logger.addHandler(handler)
    try:
        await session.send("t", "p")
    finally:
        logger.removeHandler(handler)

    errors = [r for r in handler.records if r.levelno == logging.ERROR]
    assert [r.getMessage() for r in errors] == ["Error sending frame: boom"]
    assert errors[0].args == (error,)
    assert errors[0].topic == "t"
    await session.close()
