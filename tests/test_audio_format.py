from __future__ import annotations

import io
import wave

import numpy as np
import pytest

from speech_bridge.core.audio.format import (
    decode_wav_to_wire_pcm,
    float32_to_pcm16le_bytes,
    iter_pcm_frames,
    mixdown_to_mono_f32,
    pcm16le_bytes_to_float32,
    resample_f32_linear,
)


def _wav_bytes(samples: np.ndarray, *, sample_rate_hz: int, channels: int = 1) -> bytes:
    buf = io.BytesIO()
    with wave.open(buf, "wb") as wav:
        wav.setnchannels(channels)
        wav.setsampwidth(2)
        wav.setframerate(sample_rate_hz)
        wav.writeframes(float32_to_pcm16le_bytes(samples.reshape(-1)))
    return buf.getvalue()


def test_mixdown_to_mono():
    stereo = np.array([[0.0, 1.0], [1.0, 0.0]], dtype=np.float32)
    mono = mixdown_to_mono_f32(stereo)
    assert mono.shape == (2,)
    assert np.allclose(mono, np.array([0.5, 0.5], dtype=np.float32))


def test_float32_pcm16_conversion_stays_in_range():
    samples = np.array([-1.0, -0.5, 0.0, 0.5, 0.9999], dtype=np.float32)
    data = float32_to_pcm16le_bytes(samples)
    assert len(data) == 10
    restored = pcm16le_bytes_to_float32(data)
    assert restored.shape == samples.shape
    assert np.all(restored <= 1.0)
    assert np.all(restored >= -1.0)


def test_pcm16_rejects_odd_length():
    with pytest.raises(ValueError):
        pcm16le_bytes_to_float32(b"\x00\x01\x02")


def test_resample_length_ratio():
    src = np.linspace(-1.0, 1.0, num=480, dtype=np.float32)
    dst = resample_f32_linear(src, from_rate_hz=48000, to_rate_hz=16000)
    assert dst.shape[0] == 160


def test_decode_wav_converts_to_wire_format():
    stereo = np.zeros((4800, 2), dtype=np.float32)
    stereo[:, 0] = 0.5
    pcm = decode_wav_to_wire_pcm(_wav_bytes(stereo, sample_rate_hz=48000, channels=2))

    # 100 ms at 16 kHz mono, 2 bytes per sample.
    assert len(pcm) == 1600 * 2
    samples = pcm16le_bytes_to_float32(pcm)
    assert np.allclose(samples, 0.25, atol=1e-3)


def test_decode_wav_keeps_wire_rate_untouched():
    mono = np.linspace(-0.5, 0.5, num=1600, dtype=np.float32)
    pcm = decode_wav_to_wire_pcm(_wav_bytes(mono, sample_rate_hz=16000))
    assert len(pcm) == 1600 * 2
    assert np.allclose(pcm16le_bytes_to_float32(pcm), mono, atol=1e-3)


def test_iter_pcm_frames_splits_by_duration():
    pcm = bytes(16000 * 2 // 10 * 3 + 100)
    frames = list(iter_pcm_frames(pcm, frame_ms=100))
    assert [len(f) for f in frames] == [3200, 3200, 3200, 100]


def test_iter_pcm_frames_rejects_non_positive_duration():
    with pytest.raises(ValueError):
        list(iter_pcm_frames(b"\x00\x00", frame_ms=0))
