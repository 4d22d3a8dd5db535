from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from uuid import uuid4

from websockets.asyncio.server import Server, ServerConnection, serve
from websockets.exceptions import ConnectionClosed

from speech_bridge.core.recognition.provider import RecognitionOptions, RecognitionProvider
from speech_bridge.core.session.relay import EventRelay
from speech_bridge.core.session.session import RelaySession

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RelayServer:
    """WebSocket front end: one `RelaySession` per client connection."""

    provider: RecognitionProvider
    host: str = "0.0.0.0"
    port: int = 3000
    options: RecognitionOptions = field(default_factory=RecognitionOptions)
    stop_timeout_s: float = 5.0
    max_message_bytes: int = 1024 * 1024
    ping_interval_s: float | None = 20.0

    _server: Server | None = field(init=False, default=None, repr=False)
    _active: int = field(init=False, default=0)

    @property
    def active_connections(self) -> int:
        return self._active

    @property
    def bound_port(self) -> int:
        if self._server is None:
            raise RuntimeError("server is not running")
        return int(list(self._server.sockets)[0].getsockname()[1])

    async def start(self) -> None:
        if self._server is not None:
            return
        self._server = await serve(
            self.handle_connection,
            self.host,
            self.port,
            max_size=self.max_message_bytes,
            ping_interval=self.ping_interval_s,
        )
        logger.info("Speech bridge server listening on %s:%s", self.host, self.bound_port)

    async def serve_forever(self) -> None:
        await self.start()
        assert self._server is not None
        logger.info("Clients should send config with credentials before streaming audio")
        await self._server.serve_forever()

    async def close(self) -> None:
        if self._server is None:
            return
        self._server.close()
        await self._server.wait_closed()
        self._server = None

    async def __aenter__(self) -> "RelayServer":
        await self.start()
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.close()

    async def handle_connection(self, conn: ServerConnection) -> None:
        session_id = uuid4().hex[:8]
        self._active += 1
        logger.info(
            "[Session %s] Client connected from %s (active=%d)",
            session_id,
            conn.remote_address,
            self._active,
        )

        relay = EventRelay(send=conn.send, name=f"relay-{session_id}")
        session = RelaySession(
            provider=self.provider,
            relay=relay,
            options=self.options,
            stop_timeout_s=self.stop_timeout_s,
            session_id=session_id,
        )
        relay.open()

        reader = asyncio.create_task(self._read_messages(conn, session), name=f"session-{session_id}-reader")
        closed = asyncio.create_task(session.wait_closed(), name=f"session-{session_id}-closed")
        try:
            await asyncio.wait({reader, closed}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            reader.cancel()
            closed.cancel()
            results = await asyncio.gather(reader, closed, return_exceptions=True)
            for result in results:
                if isinstance(result, Exception):
                    logger.error("[Session %s] Connection handler failed: %r", session_id, result)

            await session.close()
            await relay.aclose()
            await conn.close()
            self._active -= 1
            logger.info(
                "[Session %s] Client disconnected (sent=%d events, active=%d)",
                session_id,
                relay.sent_count,
                self._active,
            )

    async def _read_messages(self, conn: ServerConnection, session: RelaySession) -> None:
        try:
            async for message in conn:
                await session.handle_message(message)
                if session.closed:
                    return
        except ConnectionClosed as exc:
            logger.info("[Session %s] Connection lost: %s", session.session_id, exc)
