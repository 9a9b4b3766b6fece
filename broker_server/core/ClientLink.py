from __future__ import annotations

import time
from typing import Any, Optional

import websockets

from broker_shared.frame import encode_frame
from broker_shared.log import get_logger

logger = get_logger(__name__)


class ClientLink:
    """Wrapper around a client WebSocket with its broker-assigned id"""

    def __init__(self, websocket: Any, client_id: str):
        self.websocket = websocket
        self.client_id = client_id
        self.connected_at: float = time.monotonic()
        self.last_seen: float = self.connected_at

    async def send_text(self, text: str) -> bool:
        """Send raw text; returns False if the connection is gone"""
        try:
            await self.websocket.send(text)
            logger.debug("Sent %r to %s", text, self.client_id)
            return True
        except websockets.exceptions.ConnectionClosed:
            logger.warning("Connection closed while sending to %s", self.client_id,
                           extra={"client_id": self.client_id})
            return False

    async def send_frame(self, topic: str, payload: str) -> bool:
        return await self.send_text(encode_frame(topic, payload))

    async def close(self, code: int = 1000, reason: Optional[str] = None) -> None:
        """Close the WebSocket connection"""
        try:
            await self.websocket.close(code=code, reason=reason or "Connection closed by broker")
        except Exception as e:
            logger.error("Error closing connection %s: %s", self.client_id, e)

    def __repr__(self) -> str:
        return f"ClientLink({self.client_id!r})"
