from __future__ import annotations

from typing import TYPE_CHECKING, Awaitable, Callable, Dict

from broker_shared.log import get_logger
from broker_shared.topics import ReservedTopic

if TYPE_CHECKING:
    from broker_server.server import BrokerServer

logger = get_logger(__name__)

# Type alias for handler functions: (server, payload) -> response payload
EventHandler = Callable[["BrokerServer", str], Awaitable[str]]


class BrokerError(Exception):
    """Base for errors answered to the sender as plain text."""
    pass


class UnexpectedFormatError(BrokerError):
    """Inbound frame is missing its topic or payload."""
    pass


class TopicNotAcceptedError(BrokerError):
    """No handler is registered for the topic."""
    pass


class HandlerError(BrokerError):
    """A topic handler raised."""
    pass


class BrokerHandlers:
    """Handlers for the broker's own topics."""

    @staticmethod
    async def handle_broker(server: "BrokerServer", payload: str) -> str:
        logger.debug("hit broker handler")
        return f"hi from broker handler. you gave me: {payload}"

    @staticmethod
    async def handle_connections(server: "BrokerServer", payload: str) -> str:
        # Roster is built by the server; the handler passes it through
        return payload


HANDLER_REGISTRY: Dict[str, EventHandler] = {
    ReservedTopic.BROKER.value: BrokerHandlers.handle_broker,
    ReservedTopic.CONNECTIONS.value: BrokerHandlers.handle_connections,
}
