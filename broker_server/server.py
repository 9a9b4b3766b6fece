#!/usr/bin/env python3

from __future__ import annotations
import asyncio
import itertools
import time
from contextlib import suppress
from http import HTTPStatus
from pathlib import Path
from typing import Any, Dict, List, Optional, Set

import typer
import websockets

from broker_server.core.ClientLink import ClientLink
from broker_server.core.EventHandlers import (
    HANDLER_REGISTRY,
    BrokerError,
    EventHandler,
    HandlerError,
    TopicNotAcceptedError,
    UnexpectedFormatError,
)
from broker_shared.config import ConfigError, load_config
from broker_shared.frame import Frame, encode_frame
from broker_shared.log import configure_root_logging, get_logger
from broker_shared.topics import CLIENT_ADDED, NO_CONNECTIONS, ReservedTopic
from broker_shared.utils import WS_PATH

logger = get_logger(__name__)


class BrokerServer:
    """
    Development broker speaking the [topic][payload] framing.

    Per connection:
    - the new client gets an id (Client-<n>) and every client is told
      [broker][client_added]
    - the new client receives [broker_id][Client-<n>]
    - each inbound frame is answered with [topic][handler result], or with a
      plain-text error line when it cannot be handled
    """

    def __init__(
        self,
        host: str = "127.0.0.1",
        port: int = 8080,
        *,
        handlers: Optional[Dict[str, EventHandler]] = None,
        roster_interval: float = 2.0,
    ):
        self.host = host
        self.port = port
        self.roster_interval = roster_interval
        self.handlers: Dict[str, EventHandler] = dict(HANDLER_REGISTRY)
        if handlers:
            self.handlers.update(handlers)

        # Live connections in connect order
        self.clients: List[ClientLink] = []
        self.ready = asyncio.Event()
        self._ids = itertools.count(1)
        self._background_tasks: Set[asyncio.Task] = set()

        logger.info("Initialized broker server with topics: %s", ", ".join(sorted(self.handlers)))

    def _track_background_task(self, task: asyncio.Task) -> None:
        """Keep a strong reference to background tasks until completion."""
        self._background_tasks.add(task)
        task.add_done_callback(self._background_tasks.discard)

    def _process_request(self, connection: Any, request: Any) -> Any:
        """Only upgrade requests for the broker path"""
        if request.path != WS_PATH:
            logger.info("Rejecting request for %s", request.path)
            return connection.respond(HTTPStatus.NOT_FOUND, "Not found\n")
        return None

    async def start_server(self) -> None:
        """Start the WebSocket server and the roster broadcast; runs until cancelled"""
        logger.info("Starting broker server on %s:%s", self.host, self.port)

        async with websockets.serve(
            self.handle_connection,
            self.host,
            self.port,
            process_request=self._process_request,
            ping_interval=15,
            ping_timeout=45,
        ) as ws_server:
            sockets = list(ws_server.sockets)
            if sockets:
                self.port = sockets[0].getsockname()[1]
            logger.info("Broker listening on ws://%s:%s%s", self.host, self.port, WS_PATH)
            self.ready.set()

            self._track_background_task(asyncio.create_task(self._roster_loop()))
            try:
                await asyncio.Future()  # Run forever
            finally:
                self.ready.clear()
                for task in list(self._background_tasks):
                    task.cancel()
                    with suppress(asyncio.CancelledError):
                        await task

    async def handle_connection(self, websocket: Any) -> None:
        """Register the client, announce it, then answer its frames until it leaves"""
        link = ClientLink(websocket, client_id=f"Client-{next(self._ids)}")
        self.clients.append(link)
        remote_addr = getattr(websocket, "remote_address", None)

        try:
            await self.broadcast(encode_frame(ReservedTopic.BROKER.value, CLIENT_ADDED))
            logger.info("Client connected: %s from %s", link.client_id, remote_addr,
                        extra={"client_id": link.client_id})
            await link.send_frame(ReservedTopic.BROKER_ID.value, link.client_id)

            async for message in websocket:
                link.last_seen = time.monotonic()
                if isinstance(message, bytes):
                    message = message.decode("utf-8", errors="replace")
                try:
                    response = await self.process_message(message)
                except BrokerError as e:
                    logger.warning(str(e), extra={"client_id": link.client_id})
                    await link.send_text(str(e))
                    continue
                await link.send_text(response)

        except websockets.exceptions.ConnectionClosed:
            logger.info("Connection %s closed", link.client_id)
        finally:
            self.remove_client(link)

    async def process_message(self, message: str) -> str:
        """
        Run one inbound frame through its topic handler.

        Returns:
            The response frame [topic][result]

        Raises:
            UnexpectedFormatError: topic or payload missing
            TopicNotAcceptedError: no handler for the topic
            HandlerError: the handler raised
        """
        frame = Frame.parse(message)
        if not frame.is_complete:
            raise UnexpectedFormatError(f"unexpected message format: {message}")

        handler = self.handlers.get(frame.topic)  # type: ignore[arg-type]
        if handler is None:
            raise TopicNotAcceptedError(f"topic not accepted: {frame.topic}")

        try:
            result = await handler(self, frame.payload)  # type: ignore[arg-type]
        except Exception as e:
            raise HandlerError(f"error handling {frame.topic}: {e}") from e

        return encode_frame(frame.topic, result)  # type: ignore[arg-type]

    async def broadcast(self, text: str) -> None:
        """Send ``text`` to every client; clients that fail are closed and dropped"""
        for link in list(self.clients):
            if not await link.send_text(text):
                logger.warning("Broadcast failed, removing client %s", link.client_id)
                await link.close(code=1011, reason="Broadcast failed")
                self.remove_client(link)

    def remove_client(self, link: ClientLink) -> None:
        if link in self.clients:
            self.clients.remove(link)
            logger.info("Client removed: %s", link.client_id)

    def roster(self) -> str:
        return ", ".join(link.client_id for link in self.clients) or NO_CONNECTIONS

    async def broadcast_roster(self) -> None:
        """Publish the connection roster on the connections topic"""
        try:
            response = await self.process_message(encode_frame(ReservedTopic.CONNECTIONS.value, self.roster()))
        except BrokerError as e:
            logger.error("Roster not broadcast: %s", e)
            return
        logger.debug("Broadcasting: %s", response)
        await self.broadcast(response)

    async def _roster_loop(self) -> None:
        while True:
            await asyncio.sleep(self.roster_interval)
            await self.broadcast_roster()

    def get_status(self) -> Dict[str, Any]:
        """Server snapshot; per-link ages are seconds since connect and since the last inbound frame"""
        now = time.monotonic()
        return {
            "host": self.host,
            "port": self.port,
            "topics": sorted(self.handlers),
            "clients": [link.client_id for link in self.clients],
            "links": {
                link.client_id: {
                    "connected_for": round(now - link.connected_at, 3),
                    "idle_for": round(now - link.last_seen, 3),
                }
                for link in self.clients
            },
        }


app = typer.Typer(help="Topic broker server")


@app.command()
def serve(
    host: Optional[str] = typer.Option(None, help="Bind address"),
    port: Optional[int] = typer.Option(None, help="Bind port"),
    config_file: Optional[Path] = typer.Option(None, "--config", help="YAML config file"),
):
    """Run the broker server until interrupted."""
    try:
        config = load_config(config_file).merged(host=host, port=port)
    except ConfigError as e:
        typer.echo(f"Config error: {e}", err=True)
        raise typer.Exit(code=2)

    configure_root_logging(config.log_level, config.log_file)
    server = BrokerServer(host=config.host, port=config.port, roster_interval=config.roster_interval)
    with suppress(KeyboardInterrupt):
        asyncio.run(server.start_server())


def main() -> None:
    """Main entry point"""
    app()


if __name__ == "__main__":
    main()
