from __future__ import annotations

import inspect
import itertools
from dataclasses import dataclass
from typing import Callable, FrozenSet, Iterable, List, Optional, Tuple, Union

from broker_client.display import DisplaySurface
from broker_shared.frame import InvalidArgumentError
from broker_shared.log import get_logger
from broker_shared.topics import DropReason, ReservedTopic

logger = get_logger(__name__)

# Subscriber callback: receives (topic, payload)
MessageCallback = Callable[[str, str], None]

# What callers may pass as a filter: nothing, one topic, or several topics
FilterSpec = Union[None, str, Iterable[str]]


@dataclass(frozen=True)
class TopicFilter:
    """
    Tagged filter variant: ``topics is None`` means all topics, otherwise an
    exact-match set of topic names.
    """
    topics: Optional[FrozenSet[str]] = None

    @classmethod
    def all(cls) -> 'TopicFilter':
        return cls(None)

    @classmethod
    def of(cls, spec: FilterSpec) -> 'TopicFilter':
        """Normalize a caller-supplied filter once, at registration time."""
        if spec is None:
            return cls.all()
        if isinstance(spec, str):
            return cls(frozenset((spec,)))
        if isinstance(spec, TopicFilter):
            return spec
        try:
            topics = frozenset(spec)
        except TypeError as e:
            raise InvalidArgumentError(f"Filter must be a topic or an iterable of topics, got {spec!r}") from e
        if not all(isinstance(t, str) for t in topics):
            raise InvalidArgumentError(f"Filter topics must be strings: {sorted(map(repr, topics))}")
        return cls(topics)

    @property
    def is_all(self) -> bool:
        return self.topics is None

    def matches(self, topic: str) -> bool:
        return self.topics is None or topic in self.topics


@dataclass(frozen=True)
class Subscription:
    token: int
    filter: TopicFilter
    callback: MessageCallback


def _check_callback(callback: object) -> None:
    """Fail fast on callbacks that cannot take (topic, payload)."""
    if not callable(callback):
        raise InvalidArgumentError(f"Callback must be callable, got {type(callback).__name__}")
    if inspect.iscoroutinefunction(callback) or inspect.iscoroutinefunction(getattr(callback, "__call__", None)):
        # deliver() calls callbacks synchronously; the coroutine would never run
        raise InvalidArgumentError("Callback must be a plain function, not a coroutine function")
    try:
        inspect.signature(callback).bind(None, None)
    except TypeError as e:
        raise InvalidArgumentError(f"Callback must accept (topic, payload): {e}") from e
    except ValueError:
        # Some builtins expose no signature; accept them
        pass


class Dispatcher:
    """
    Routes decoded frames to subscribers and to the display surface.

    Subscriptions are kept in registration order for the whole session. Each
    callback runs isolated: an exception is logged and delivery moves on to
    the next subscriber.
    """

    def __init__(self, display: Optional[DisplaySurface] = None) -> None:
        self.display = display
        self.connection_id: Optional[str] = None
        self._subscriptions: List[Subscription] = []
        self._tokens = itertools.count(1)

    @property
    def subscriptions(self) -> Tuple[Subscription, ...]:
        return tuple(self._subscriptions)

    def subscribe(self, filter: FilterSpec = None, callback: Optional[MessageCallback] = None) -> Subscription:
        """
        Register ``callback`` for the topics selected by ``filter``.

        Args:
            filter: None for all topics, a topic name, or an iterable of topic names
            callback: Invoked as callback(topic, payload)

        Returns:
            The Subscription; its token identifies it for the session

        Raises:
            InvalidArgumentError: callback missing or not invocable with two arguments
        """
        _check_callback(callback)
        subscription = Subscription(
            token=next(self._tokens),
            filter=TopicFilter.of(filter),
            callback=callback,  # type: ignore[arg-type]
        )
        self._subscriptions.append(subscription)
        logger.debug("Registered subscription %d for %s", subscription.token,
                     "all topics" if subscription.filter.is_all else sorted(subscription.filter.topics or ()))
        return subscription

    def deliver(self, topic: Optional[str], payload: Optional[str]) -> int:
        """
        Deliver one decoded frame.

        Returns:
            Number of subscribers that were notified (including ones whose callback failed)
        """
        if topic is None or payload is None:
            logger.warning("Invalid frame: missing topic or payload",
                           extra={"topic": topic, "drop_reason": DropReason.INCOMPLETE_MESSAGE})
            return 0

        if topic == ReservedTopic.BROKER_ID.value:
            notified = self._notify(topic, payload)
            self.connection_id = payload
            logger.info("Connection identifier assigned: %s", payload, extra={"connection_id": payload})
            return notified

        if self.display is not None:
            element = self.display.lookup(topic)
            if element is not None:
                self.display.set_text(element, payload)

        return self._notify(topic, payload)

    def _notify(self, topic: str, payload: str) -> int:
        # Snapshot: subscriptions added by a callback apply from the next frame
        matching = [s for s in self._subscriptions if s.filter.matches(topic)]
        for subscription in matching:
            try:
                subscription.callback(topic, payload)
            except Exception:
                logger.exception("Subscriber %d failed on %s", subscription.token, topic,
                                 extra={"topic": topic})
        return len(matching)
