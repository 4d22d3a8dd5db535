from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from typing import Awaitable, Callable

import janus
from websockets.exceptions import ConnectionClosed

from speech_bridge.core.protocol.codec import encode_event
from speech_bridge.domain.events import OutboundEvent

logger = logging.getLogger(__name__)

_STOP = object()


@dataclass(slots=True)
class EventRelay:
    """Single ordered path from recognition events to one client connection.

    `publish` may be called from any thread. One writer task drains the queue and finishes
    each `send` before starting the next, so frames never interleave.
    """

    send: Callable[[str], Awaitable[None]]
    name: str = "relay"

    _queue: janus.Queue[OutboundEvent | object] | None = field(init=False, default=None, repr=False)
    _writer: asyncio.Task[None] | None = field(init=False, default=None, repr=False)
    _lock: threading.Lock = field(init=False, default_factory=threading.Lock, repr=False)
    _closing: bool = field(init=False, default=False)
    _transport_closed: bool = field(init=False, default=False)
    _sent: int = field(init=False, default=0)

    def open(self) -> None:
        """Create the queue and writer task; must run inside the event loop."""
        if self._queue is not None:
            return
        self._queue = janus.Queue()
        self._writer = asyncio.create_task(self._drain(), name=f"{self.name}-writer")

    @property
    def sent_count(self) -> int:
        return self._sent

    @property
    def transport_closed(self) -> bool:
        return self._transport_closed

    def publish(self, event: OutboundEvent) -> None:
        with self._lock:
            if self._queue is None:
                raise RuntimeError("EventRelay.open() must be called before publish()")
            if self._closing:
                logger.debug("[%s] Dropping %s published after close", self.name, event.type.value)
                return
            self._queue.sync_q.put_nowait(event)

    async def aclose(self) -> None:
        """Flush everything published so far, then stop the writer."""
        with self._lock:
            if self._closing or self._queue is None:
                self._closing = True
                return
            self._closing = True
            self._queue.sync_q.put_nowait(_STOP)

        if self._writer is not None:
            await asyncio.gather(self._writer, return_exceptions=True)
            self._writer = None
        self._queue.close()
        await self._queue.wait_closed()

    async def _drain(self) -> None:
        assert self._queue is not None
        while True:
            item = await self._queue.async_q.get()
            if item is _STOP:
                return
            if self._transport_closed:
                continue
            try:
                await self.send(encode_event(item))  # type: ignore[arg-type]
                self._sent += 1
            except ConnectionClosed:
                logger.debug("[%s] Connection closed, discarding remaining events", self.name)
                self._transport_closed = True
            except Exception:
                logger.exception("[%s] Failed to send event, discarding remaining events", self.name)
                self._transport_closed = True
