from __future__ import annotations

from enum import Enum


class ReservedTopic(str, Enum):
    """Topics with a fixed meaning on the broker connection."""

    BROKER_ID = "broker_id"        # Server-assigned connection identifier, sent once per connection
    BROKER = "broker"              # Broker control/echo channel (client_added notices)
    CONNECTIONS = "connections"    # Periodic roster of connected clients


class DropReason(str, Enum):
    """Why a frame was dropped instead of delivered or sent."""

    MALFORMED_FRAME = "malformed_frame"                  # inbound text failed the bracket grammar
    INCOMPLETE_MESSAGE = "incomplete_message"            # parsed frame is missing topic or payload
    NOT_CONNECTED = "not_connected"                      # send with no open connection
    INVALID_OUTBOUND_FIELDS = "invalid_outbound_fields"  # send with missing topic or payload


class ConnectionState(str, Enum):
    """Transport connection state as seen by the client session."""
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


CLIENT_ADDED = "client_added"
NO_CONNECTIONS = "<no conn>"
