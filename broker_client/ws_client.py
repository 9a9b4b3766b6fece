from __future__ import annotations
import asyncio
from contextlib import suppress
from typing import Any, Awaitable, Callable, Optional, Union

import websockets
from websockets.protocol import State

from broker_client.dispatcher import Dispatcher, FilterSpec, MessageCallback, Subscription
from broker_client.display import DisplaySurface
from broker_shared.frame import Frame, encode_frame
from broker_shared.log import get_logger, log_frame
from broker_shared.topics import ConnectionState, DropReason
from broker_shared.utils import resolve_ws_url

logger = get_logger(__name__)

# Transport factory; websockets.connect or anything with the same call shape
Connect = Callable[..., Awaitable[Any]]

_STATE_MAP = {
    State.CONNECTING: ConnectionState.CONNECTING,
    State.OPEN: ConnectionState.OPEN,
    State.CLOSING: ConnectionState.CLOSED,
    State.CLOSED: ConnectionState.CLOSED,
}


class BrokerSession:
    """
    Client side of the broker: one WebSocket connection, the [topic][payload]
    framing and a topic-filtered dispatcher.

    Sends are fire-and-forget: while the connection is not open, or when a
    field is missing, the frame is logged and dropped. Nothing is queued and
    nothing is retried. A closed connection is not reopened.
    """

    def __init__(
        self,
        display: Optional[DisplaySurface] = None,
        *,
        connect: Optional[Connect] = None,
        ping_interval: Optional[float] = 15,
        ping_timeout: Optional[float] = 45,
    ) -> None:
        self.dispatcher = Dispatcher(display)
        self.url: Optional[str] = None
        self.websocket: Optional[Any] = None
        self.ping_interval = ping_interval
        self.ping_timeout = ping_timeout
        self._connect: Connect = connect or websockets.connect
        self._recv_task: Optional[asyncio.Task] = None
        self._opened: Optional[asyncio.Event] = None

    @property
    def broker_id(self) -> Optional[str]:
        """Connection identifier announced by the server on the broker_id topic"""
        return self.dispatcher.connection_id

    @property
    def state(self) -> ConnectionState:
        if self.websocket is None:
            if self._recv_task is not None and not self._recv_task.done():
                return ConnectionState.CONNECTING
            return ConnectionState.CLOSED
        return _STATE_MAP.get(self.websocket.state, ConnectionState.CLOSED)

    def initialize(self, url: Optional[str] = None, origin: Optional[str] = None) -> BrokerSession:
        """
        Start connecting to the broker and return immediately.

        Must be called from a running event loop. The URL is ``url`` when
        given, otherwise derived from ``origin`` (https -> wss, else ws, path
        /ws). Calling this twice opens a second connection without closing
        the first; the session then sends on the newest one only.
        """
        resolved = resolve_ws_url(url, origin)
        if resolved is None:
            logger.error("No usable broker URL (url=%r, origin=%r); not connecting", url, origin)
            return self

        logger.info("using broker URL: %s", resolved)
        self.url = resolved
        self.websocket = None
        self._opened = asyncio.Event()
        self._recv_task = asyncio.get_running_loop().create_task(self._run(resolved, self._opened))
        return self

    async def _run(self, url: str, opened: asyncio.Event) -> None:
        try:
            websocket = await self._connect(
                url, ping_interval=self.ping_interval, ping_timeout=self.ping_timeout
            )
        except (OSError, asyncio.TimeoutError, websockets.exceptions.WebSocketException) as e:
            logger.error("Could not connect to %s: %s", url, e)
            return

        # A later initialize() owns the session now; this connection never becomes its handle
        if asyncio.current_task() is not self._recv_task:
            logger.info("Connection to %s superseded before it opened; closing it", url)
            try:
                await websocket.close(code=1000)
            except Exception as e:
                logger.error("Error closing connection: %s", e)
            return

        self.websocket = websocket
        logger.info("WebSocket connected")
        opened.set()
        await self.recv_loop(websocket)

    async def recv_loop(self, websocket: Optional[Any] = None) -> None:
        """Parse and dispatch inbound frames, one at a time, in arrival order"""
        websocket = websocket or self.websocket
        assert websocket is not None
        try:
            async for raw in websocket:
                if isinstance(raw, bytes):
                    raw = raw.decode("utf-8", errors="replace")
                try:
                    self.handle_frame(raw)
                except Exception as e:
                    logger.error("Failed to process inbound frame %r: %s", raw, e)
        except websockets.exceptions.ConnectionClosed as e:
            logger.warning("WebSocket closed: %s", e)
        else:
            logger.info("WebSocket closed")

    def handle_frame(self, raw: str) -> int:
        """Run one text frame through the parser and the dispatcher."""
        logger.debug("from server: %s", raw)
        frame = Frame.parse(raw)
        if frame.topic is None and frame.payload is None:
            log_frame(logger, "debug", f"Unexpected message format: {raw!r}",
                      drop_reason=DropReason.MALFORMED_FRAME)
        return self.dispatcher.deliver(frame.topic, frame.payload)

    async def send(self, topic: Optional[str], payload: Optional[str]) -> None:
        """
        Encode ``[topic][payload]`` and hand it to the transport.

        Never raises: a frame that cannot be sent is logged and dropped.
        """
        if self.websocket is None or self.state is not ConnectionState.OPEN:
            logger.warning("WebSocket not connected",
                           extra={"topic": topic, "drop_reason": DropReason.NOT_CONNECTED})
            return

        if not topic or not payload:
            logger.error("Outbound frame needs both topic and payload (topic=%r, payload=%r)", topic, payload,
                         extra={"topic": topic, "drop_reason": DropReason.INVALID_OUTBOUND_FIELDS})
            return

        try:
            await self.websocket.send(encode_frame(topic, payload))
            logger.debug("Sent frame on %s", topic, extra={"topic": topic})
        except websockets.exceptions.ConnectionClosed:
            logger.warning("Connection closed while sending", extra={"topic": topic})
        except Exception as e:
            logger.error("Error sending frame: %s", e, extra={"topic": topic})

    def on_message(
        self,
        filter_or_callback: Union[FilterSpec, MessageCallback],
        callback: Optional[MessageCallback] = None,
    ) -> Subscription:
        """
        Subscribe to deliveries.

            session.on_message(cb)                      # every topic
            session.on_message("stock_price", cb)       # one topic
            session.on_message({"move", "start"}, cb)   # several topics
        """
        if callback is None and callable(filter_or_callback):
            return self.dispatcher.subscribe(None, filter_or_callback)
        return self.dispatcher.subscribe(filter_or_callback, callback)  # type: ignore[arg-type]

    async def wait_open(self, timeout: Optional[float] = None) -> bool:
        """Wait until the connection is open; False if it failed, closed or timed out first."""
        if self._recv_task is None or self._opened is None:
            return False
        opened = asyncio.ensure_future(self._opened.wait())
        try:
            await asyncio.wait({opened, self._recv_task}, timeout=timeout,
                               return_when=asyncio.FIRST_COMPLETED)
        finally:
            opened.cancel()
            with suppress(asyncio.CancelledError):
                await opened
        return self.state is ConnectionState.OPEN

    async def close(self) -> None:
        """Close the connection (caller-initiated only) and wait for the receive loop to end"""
        task = self._recv_task
        if self.websocket is not None:
            try:
                await self.websocket.close(code=1000)
            except Exception as e:
                logger.error("Error closing connection: %s", e)
        elif task is not None:
            task.cancel()

        if task is not None:
            with suppress(asyncio.CancelledError):
                await task
