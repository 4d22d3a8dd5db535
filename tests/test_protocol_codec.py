from __future__ import annotations

import json

import pytest

from speech_bridge.core.protocol.codec import classify_message, encode_event, event_to_dict
from speech_bridge.domain.events import (
    CanceledEvent,
    ErrorEvent,
    FinalEvent,
    PartialEvent,
    SessionStoppedEvent,
    StartedEvent,
)
from speech_bridge.domain.models import AudioFrame, ConfigCommand, StopCommand


def test_config_text_message_is_a_command():
    msg = classify_message('{"cmd":"config","key":"k","region":"eastus","language":"de-DE"}')
    assert msg == ConfigCommand(key="k", region="eastus", language="de-DE")


def test_config_in_binary_frame_is_a_command():
    msg = classify_message(b'{"cmd":"config","key":"k","region":"eastus"}')
    assert isinstance(msg, ConfigCommand)
    assert msg.language == "en-US"


def test_stop_command():
    assert classify_message('{"cmd":"stop"}') == StopCommand()
    assert classify_message(b'{"cmd": "stop", "extra": 1}') == StopCommand()


def test_non_string_credentials_become_missing():
    msg = classify_message('{"cmd":"config","key":123,"region":null,"language":7}')
    assert msg == ConfigCommand(key=None, region=None, language="en-US")
    with pytest.raises(ValueError):
        msg.to_config()


@pytest.mark.parametrize(
    "raw",
    [
        b"\x00\x01\x02\x03",
        b"{not json",
        b'{"cmd":"pause"}',
        b'{"key":"k"}',
        b"{\xff\xfe",
        b"",
        b"[1,2,3]",
    ],
)
def test_anything_else_is_audio(raw):
    msg = classify_message(raw)
    assert isinstance(msg, AudioFrame)
    assert msg.data == raw


def test_pcm_starting_with_brace_byte_is_audio():
    pcm = b"{" + bytes(range(200))
    assert classify_message(pcm) == AudioFrame(pcm)


def test_plain_text_frame_is_audio_bytes():
    assert classify_message("hello") == AudioFrame(b"hello")


def test_event_wire_shapes():
    assert event_to_dict(StartedEvent()) == {"type": "started"}
    assert event_to_dict(PartialEvent("hel")) == {"type": "partial", "text": "hel"}
    assert event_to_dict(FinalEvent("hello.")) == {"type": "final", "text": "hello."}
    assert event_to_dict(CanceledEvent("Error", "bad key")) == {
        "type": "canceled",
        "reason": "Error",
        "details": "bad key",
    }
    assert event_to_dict(SessionStoppedEvent()) == {"type": "sessionStopped"}
    assert event_to_dict(ErrorEvent("boom")) == {"type": "error", "message": "boom"}


def test_encode_event_keeps_unicode():
    encoded = encode_event(FinalEvent("안녕하세요"))
    assert "안녕하세요" in encoded
    assert json.loads(encoded) == {"type": "final", "text": "안녕하세요"}


def test_event_to_dict_rejects_unknown_types():
    with pytest.raises(TypeError):
        event_to_dict(object())  # type: ignore[arg-type]
