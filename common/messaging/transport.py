"""
Message transport port

At-least-once publish/subscribe delivery. This is the only network I/O
boundary of the saga core; everything else talks to durable stores.

- MessageTransport: the protocol the relay and the consumers are written against
- InMemoryTransport: process-local implementation for tests and local runs
"""

import threading
from collections import deque
from typing import Callable, Deque, Iterator, List, Optional, Protocol

from common.exception.exceptions import TransientTransportError
from common.messaging.envelope import MessageEnvelope
from common.utils.logging_utils import get_logger

logger = get_logger('transport')


class MessageTransport(Protocol):

    def publish(self, envelope: MessageEnvelope) -> None:
        """Return on broker acknowledgment, raise TransientTransportError otherwise."""
        ...

    def subscribe(self) -> Iterator[MessageEnvelope]:
        """Lazy, infinite, restartable sequence of delivered envelopes."""
        ...

    def close(self) -> None:
        ...


class InMemoryTransport:

    def __init__(self, poll_timeout: float = 0.5):
        self.poll_timeout = poll_timeout
        self._queue: Deque[MessageEnvelope] = deque()
        self._published: List[MessageEnvelope] = []
        self._condition = threading.Condition()
        self._fail_next = 0
        self._running = True
        self._listeners: List[Callable[[MessageEnvelope], None]] = []

    def publish(self, envelope: MessageEnvelope) -> None:
        with self._condition:
            if self._fail_next > 0:
                self._fail_next -= 1
                raise TransientTransportError(
                    message=f"In-memory transport refused {envelope.type} ({envelope.message_id})"
                )
            self._published.append(envelope)
            self._queue.append(envelope)
            self._condition.notify_all()

        logger.debug(f"Published {envelope.type} for {envelope.correlation_id}")

        for listener in list(self._listeners):
            listener(envelope)

    def subscribe(self) -> Iterator[MessageEnvelope]:
        self._running = True
        while self._running:
            with self._condition:
                if not self._queue:
                    self._condition.wait(timeout=self.poll_timeout)
                if not self._queue:
                    continue
                envelope = self._queue.popleft()
            yield envelope

    def stop(self):
        with self._condition:
            self._running = False
            self._condition.notify_all()

    def close(self) -> None:
        self.stop()

    # ------------------------------------------------------------------
    # Testing helpers
    # ------------------------------------------------------------------

    def fail_next(self, count: int = 1):
        """Make the next `count` publishes raise TransientTransportError."""
        with self._condition:
            self._fail_next = count

    def add_listener(self, listener: Callable[[MessageEnvelope], None]):
        self._listeners.append(listener)

    def deliver(self, envelope: MessageEnvelope):
        """Put an envelope on the queue without recording it as published (redelivery)."""
        with self._condition:
            self._queue.append(envelope)
            self._condition.notify_all()

    def drain(self) -> List[MessageEnvelope]:
        with self._condition:
            drained = list(self._queue)
            self._queue.clear()
        return drained

    @property
    def published(self) -> List[MessageEnvelope]:
        return list(self._published)

    def published_types(self, correlation_id: Optional[str] = None) -> List[str]:
        return [
            envelope.type for envelope in self._published
            if correlation_id is None or envelope.correlation_id == correlation_id
        ]

    def clear(self):
        with self._condition:
            self._queue.clear()
            self._published.clear()
