from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable

from websockets.asyncio.client import connect

from speech_bridge.core.audio.format import decode_wav_to_wire_pcm, iter_pcm_frames

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class WavStreamClient:
    """Streams a WAV file through a running bridge and collects the relayed events."""

    url: str
    key: str
    region: str
    language: str = "en-US"
    frame_ms: int = 100
    realtime: bool = True

    async def run(self, wav_path: Path, *, on_event: Callable[[dict[str, Any]], None] | None = None) -> list[dict[str, Any]]:
        pcm = decode_wav_to_wire_pcm(wav_path.read_bytes())
        frames = list(iter_pcm_frames(pcm, frame_ms=self.frame_ms))
        logger.info("Streaming %s (%d frames of %d ms) to %s", wav_path, len(frames), self.frame_ms, self.url)

        events: list[dict[str, Any]] = []
        async with connect(self.url) as ws:
            await ws.send(
                json.dumps({"cmd": "config", "key": self.key, "region": self.region, "language": self.language})
            )

            async def _send_audio() -> None:
                for frame in frames:
                    await ws.send(frame)
                    if self.realtime:
                        await asyncio.sleep(self.frame_ms / 1000.0)
                await ws.send(json.dumps({"cmd": "stop"}))

            sender = asyncio.create_task(_send_audio())
            try:
                async for message in ws:
                    event = json.loads(message)
                    events.append(event)
                    if on_event is not None:
                        on_event(event)
            finally:
                sender.cancel()
                await asyncio.gather(sender, return_exceptions=True)
        return events
