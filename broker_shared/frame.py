from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Tuple

OPEN_BRACKET = "["
CLOSE_BRACKET = "]"


class InvalidArgumentError(TypeError):
    """Raised when a subscription is registered with a callback that cannot be invoked."""
    pass


@dataclass(frozen=True)
class Frame:
    """
    One wire unit exchanged with the broker:

        [topic][payload]

    No separators, no escaping, no nesting. A decoded frame never holds the
    empty string: empty bracket contents become None.

    Known limitation:
    - a topic or payload containing '[' or ']' is encoded as is and becomes
      ambiguous for the receiving side.
    """
    topic: Optional[str]
    payload: Optional[str]

    @classmethod
    def parse(cls, raw: Optional[str]) -> 'Frame':
        """Decode one raw text frame. Never raises; missing slots are None."""
        topic, payload = parse_frame(raw)
        return cls(topic=topic, payload=payload)

    @property
    def is_complete(self) -> bool:
        return self.topic is not None and self.payload is not None

    def encode(self) -> str:
        """Convert Frame to its wire text"""
        if not self.is_complete:
            raise ValueError("Frame needs both topic and payload to be encoded")
        return encode_frame(self.topic, self.payload)  # type: ignore[arg-type]


def _read_slot(raw: str, cursor: int) -> Tuple[Optional[str], int]:
    """
    Read one bracketed slot starting exactly at ``cursor``.

    Returns the slot value (None when absent or empty) and the cursor
    position after whatever was consumed.
    """
    if raw[cursor:cursor + 1] != OPEN_BRACKET:
        return None, cursor

    start = cursor + 1
    end = raw.find(CLOSE_BRACKET, start)
    if end == -1:
        # Unterminated bracket: take everything up to the end of input
        return raw[start:] or None, len(raw)

    return raw[start:end] or None, end + 1


def parse_frame(raw: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Decode ``raw`` into a ``(topic, payload)`` pair.

    The grammar is positional: each slot is read only if the character at
    the cursor is '['; there is no forward search. Trailing content after the
    second slot is ignored.

    Examples:
        parse_frame("[one][two]")     -> ("one", "two")
        parse_frame("[][two]")        -> (None, "two")
        parse_frame("foo[one][two]")  -> (None, None)
        parse_frame("[one]junk[two]") -> ("one", None)
    """
    text = raw or ""
    topic, cursor = _read_slot(text, 0)
    payload, _ = _read_slot(text, cursor)
    return topic, payload


def encode_frame(topic: str, payload: str) -> str:
    """Build the wire text for ``topic``/``payload``. Performs no escaping."""
    return f"{OPEN_BRACKET}{topic}{CLOSE_BRACKET}{OPEN_BRACKET}{payload}{CLOSE_BRACKET}"
