from __future__ import annotations

import pytest

from speech_bridge.app.wiring import create_recognition_provider
from speech_bridge.config.settings import (
    AppSettings,
    AzureSpeechSettings,
    DeepgramSettings,
    ProviderName,
    ProviderSettings,
)
from speech_bridge.core.recognition.provider import RecognitionOptions
from speech_bridge.providers.stt.azure_speech import AzureSpeechProvider
from speech_bridge.providers.stt.deepgram import DeepgramProvider


def test_create_recognition_provider_defaults_to_azure() -> None:
    settings = AppSettings(
        azure=AzureSpeechSettings(
            end_silence_timeout_ms=250,
            conversation_transcriber=True,
            stable_partial_threshold=2,
            audio_logging=False,
        )
    )

    provider = create_recognition_provider(settings)
    assert isinstance(provider, AzureSpeechProvider)
    assert provider.end_silence_timeout_ms == 250
    assert provider.conversation_transcriber is True
    assert provider.segmentation_silence_timeout_ms == 100
    assert provider.stable_partial_threshold == 2
    assert provider.sentence_boundary is True
    assert provider.custom_segmentation is True
    assert provider.audio_logging is False


def test_create_recognition_provider_deepgram_uses_settings() -> None:
    settings = AppSettings(
        provider=ProviderSettings(name=ProviderName.DEEPGRAM),
        deepgram=DeepgramSettings(model="nova-2", interim_results=False),
    )

    provider = create_recognition_provider(settings)
    assert isinstance(provider, DeepgramProvider)
    assert provider.model == "nova-2"
    assert provider.interim_results is False


def test_recognition_options_match_wire_format() -> None:
    options = RecognitionOptions()
    options.validate()
    assert (options.sample_rate_hz, options.bits_per_sample, options.channels) == (16000, 16, 1)

    with pytest.raises(ValueError):
        RecognitionOptions(sample_rate_hz=8000).validate()
