from __future__ import annotations

import io
import math
import wave
from typing import Iterator

import numpy as np

from speech_bridge.core.recognition.provider import WIRE_SAMPLE_RATE_HZ

WIRE_SAMPLE_WIDTH_BYTES = 2


def mixdown_to_mono_f32(samples: np.ndarray) -> np.ndarray:
    if samples.ndim == 1:
        mono = samples
    elif samples.ndim == 2:
        mono = samples.mean(axis=1)
    else:
        raise ValueError("samples must be 1D (mono) or 2D (frames, channels)")

    return np.asarray(mono, dtype=np.float32)


def resample_f32_linear(samples: np.ndarray, *, from_rate_hz: int, to_rate_hz: int) -> np.ndarray:
    if from_rate_hz <= 0 or to_rate_hz <= 0:
        raise ValueError("sample rates must be > 0")
    samples = np.asarray(samples, dtype=np.float32)
    if from_rate_hz == to_rate_hz or samples.size == 0:
        return samples

    src_len = int(samples.shape[0])
    dst_len = max(int(math.floor(src_len * (to_rate_hz / from_rate_hz))), 1)

    x_old = np.arange(src_len, dtype=np.float32)
    x_new = np.linspace(0.0, src_len - 1, num=dst_len, dtype=np.float32)
    return np.interp(x_new, x_old, samples).astype(np.float32)


def float32_to_pcm16le_bytes(samples: np.ndarray) -> bytes:
    clipped = np.clip(np.asarray(samples, dtype=np.float32), -1.0, 1.0)
    return (clipped * 32767.0).astype("<i2").tobytes()


def pcm16le_bytes_to_float32(data: bytes) -> np.ndarray:
    if len(data) % WIRE_SAMPLE_WIDTH_BYTES:
        raise ValueError("PCM16 data must have an even number of bytes")
    return np.frombuffer(data, dtype="<i2").astype(np.float32) / 32768.0


def decode_wav_to_wire_pcm(data: bytes, *, target_sample_rate_hz: int = WIRE_SAMPLE_RATE_HZ) -> bytes:
    """Decode a PCM WAV file into 16-bit mono little-endian PCM at the wire sample rate."""
    with wave.open(io.BytesIO(data), "rb") as wav:
        channels = wav.getnchannels()
        sample_width = wav.getsampwidth()
        sample_rate_hz = wav.getframerate()
        raw = wav.readframes(wav.getnframes())

    if sample_width == 1:
        samples = (np.frombuffer(raw, dtype=np.uint8).astype(np.float32) - 128.0) / 128.0
    elif sample_width == 2:
        samples = np.frombuffer(raw, dtype="<i2").astype(np.float32) / 32768.0
    elif sample_width == 4:
        samples = np.frombuffer(raw, dtype="<i4").astype(np.float32) / 2147483648.0
    else:
        raise ValueError(f"Unsupported WAV sample width: {sample_width} bytes")

    if channels > 1:
        samples = samples.reshape(-1, channels)
    mono = mixdown_to_mono_f32(samples)
    mono = resample_f32_linear(mono, from_rate_hz=sample_rate_hz, to_rate_hz=target_sample_rate_hz)
    return float32_to_pcm16le_bytes(mono)


def iter_pcm_frames(
    pcm16le: bytes,
    *,
    frame_ms: int = 100,
    sample_rate_hz: int = WIRE_SAMPLE_RATE_HZ,
) -> Iterator[bytes]:
    if frame_ms <= 0:
        raise ValueError("frame_ms must be > 0")
    frame_bytes = int(sample_rate_hz * frame_ms / 1000) * WIRE_SAMPLE_WIDTH_BYTES
    for offset in range(0, len(pcm16le), frame_bytes):
        yield pcm16le[offset : offset + frame_bytes]
