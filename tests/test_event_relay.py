from __future__ import annotations

import asyncio
import threading

import pytest
from fake_provider import RecordingTransport

from speech_bridge.core.session.relay import EventRelay
from speech_bridge.domain.events import FinalEvent, PartialEvent, StartedEvent


def test_relay_sends_in_publish_order():
    async def run():
        transport = RecordingTransport()
        relay = EventRelay(send=transport.send)
        relay.open()
        relay.publish(StartedEvent())
        relay.publish(PartialEvent("a"))
        relay.publish(FinalEvent("a."))
        await relay.aclose()
        return transport, relay

    transport, relay = asyncio.run(run())

    assert transport.messages == [
        '{"type":"started"}',
        '{"type":"partial","text":"a"}',
        '{"type":"final","text":"a."}',
    ]
    assert relay.sent_count == 3


def test_publish_from_many_threads_delivers_everything():
    async def run():
        transport = RecordingTransport()
        relay = EventRelay(send=transport.send)
        relay.open()

        def _worker(tag: str) -> None:
            for i in range(25):
                relay.publish(PartialEvent(f"{tag}{i}"))

        threads = [threading.Thread(target=_worker, args=(tag,)) for tag in "abcd"]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
        await relay.aclose()
        return transport

    transport = asyncio.run(run())

    texts = [e["text"] for e in transport.events()]
    assert len(texts) == 100
    for tag in "abcd":
        # Per-thread order survives interleaving.
        assert [t for t in texts if t.startswith(tag)] == [f"{tag}{i}" for i in range(25)]


def test_closed_transport_turns_sends_into_no_ops():
    async def run():
        transport = RecordingTransport()
        relay = EventRelay(send=transport.send)
        relay.open()
        relay.publish(StartedEvent())
        await asyncio.sleep(0.01)
        transport.closed = True
        relay.publish(PartialEvent("lost"))
        relay.publish(FinalEvent("lost."))
        await relay.aclose()
        return transport, relay

    transport, relay = asyncio.run(run())

    assert transport.types() == ["started"]
    assert relay.transport_closed
    assert relay.sent_count == 1


def test_send_failure_is_contained():
    async def run():
        calls = []

        async def _send(message: str) -> None:
            calls.append(message)
            raise OSError("broken pipe")

        relay = EventRelay(send=_send)
        relay.open()
        relay.publish(StartedEvent())
        relay.publish(PartialEvent("x"))
        await relay.aclose()
        return calls, relay

    calls, relay = asyncio.run(run())

    assert len(calls) == 1
    assert relay.transport_closed


def test_publish_after_close_is_ignored():
    async def run():
        transport = RecordingTransport()
        relay = EventRelay(send=transport.send)
        relay.open()
        await relay.aclose()
        relay.publish(StartedEvent())
        await relay.aclose()
        return transport

    transport = asyncio.run(run())

    assert transport.messages == []


def test_publish_requires_open():
    relay = EventRelay(send=RecordingTransport().send)
    with pytest.raises(RuntimeError):
        relay.publish(StartedEvent())
