"""Protocol event recording for a single page capture.

This module provides the EventRecorder, which appends every observed protocol
event to the session's event log and tracks the requests that finished
loading, and the EventChannel, which subscribes to the fixed event set on a
debugging session and feeds the recorder through a single-consumer queue so
that events are recorded in arrival order.
"""

import asyncio
import logging
from collections import Counter
from typing import Any, Callable, Dict, FrozenSet, Iterable, Optional, Set

from ..models.capture import (
    OBSERVED_EVENTS,
    NETWORK_LOADING_FINISHED,
    NETWORK_GET_RESPONSE_BODY,
    Event,
    EventLog,
)

logger = logging.getLogger(__name__)


class EventRecorder:
    """Appends protocol events to an event log and tracks finished requests."""

    def __init__(self, log: Optional[EventLog] = None):
        """Initialize recorder.

        Args:
            log: Event log to append to (a new empty log if None)
        """
        self.log = log if log is not None else EventLog()
        self._finished: Set[str] = set()

    def record(self, method: str, params: Any) -> Event:
        """Record one event.

        The payload is stored as-is. A ``Network.loadingFinished`` event adds
        its request id to the finished set.

        Args:
            method: Protocol method name
            params: Event payload

        Returns:
            The appended event
        """
        return self.record_event(Event(method=method, params=params))

    def record_event(self, event: Event) -> Event:
        """Append an already-built event."""
        self.log.append(event)

        if event.method == NETWORK_LOADING_FINISHED:
            request_id = event.request_id
            if request_id is not None:
                self._finished.add(request_id)
            else:
                logger.debug("loadingFinished event without requestId")

        return event

    @property
    def finished(self) -> FrozenSet[str]:
        """Request ids that reached loading finished."""
        return frozenset(self._finished)

    def body_ids(self) -> Set[str]:
        """Request ids that already have a body record in the log."""
        return self.log.request_ids(NETWORK_GET_RESPONSE_BODY)

    def get_stats(self) -> Dict[str, int]:
        """Get recording statistics.

        Returns:
            Dictionary with total events, finished requests and per-method counts
        """
        counts = Counter(event.method for event in self.log)
        stats = {
            'total_events': len(self.log),
            'finished_requests': len(self._finished),
        }
        for method, count in counts.items():
            stats[method] = count
        return stats

    def __repr__(self) -> str:
        return f"EventRecorder(events={len(self.log)}, finished={len(self._finished)})"


class EventChannel:
    """Delivers subscribed protocol events into the recorder in arrival order."""

    def __init__(self, recorder: EventRecorder, methods: Iterable[str] = OBSERVED_EVENTS):
        """Initialize event channel.

        Args:
            recorder: Recorder that consumes delivered events
            methods: Protocol methods to subscribe to
        """
        self.recorder = recorder
        self.methods = tuple(methods)
        self._queue: "asyncio.Queue[Event]" = asyncio.Queue()
        self._consumer: Optional[asyncio.Task] = None
        self._closed = False

    async def subscribe(self, session: Any) -> None:
        """Enable the Page and Network domains and register one handler per method.

        Args:
            session: Debugging session exposing ``send`` and ``on``
        """
        await session.send("Page.enable")
        await session.send("Network.enable")

        for method in self.methods:
            session.on(method, self._make_handler(method))

        self.start()
        logger.debug(f"Subscribed to {len(self.methods)} protocol events")

    def _make_handler(self, method: str) -> Callable[[Any], None]:
        def handler(params: Any) -> None:
            self.deliver(method, params)
        return handler

    def deliver(self, method: str, params: Any) -> None:
        """Queue one event for recording."""
        if self._closed:
            logger.debug(f"Dropping {method} delivered after channel was drained")
            return
        self._queue.put_nowait(Event(method=method, params=params))

    def start(self) -> None:
        """Start the consumer task if it is not running."""
        if self._consumer is None:
            self._consumer = asyncio.get_running_loop().create_task(self._consume())

    async def _consume(self) -> None:
        while True:
            event = await self._queue.get()
            try:
                self.recorder.record_event(event)
            finally:
                self._queue.task_done()

    async def flush(self) -> None:
        """Wait until every event delivered so far is recorded; keep consuming."""
        if self._consumer is None:
            self.start()

        await self._queue.join()

    async def drain(self) -> None:
        """Wait until every delivered event is recorded, then stop consuming."""
        await self.flush()
        await self.close()

        logger.debug(f"Event channel drained ({len(self.recorder.log)} events recorded)")

    async def close(self) -> None:
        """Stop consuming; later deliveries are dropped. Safe to call twice."""
        self._closed = True
        if self._consumer is None:
            return

        self._consumer.cancel()
        try:
            await self._consumer
        except asyncio.CancelledError:
            pass
        self._consumer = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        """Events delivered but not yet recorded."""
        return self._queue.qsize()
