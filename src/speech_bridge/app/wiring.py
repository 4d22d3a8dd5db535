from __future__ import annotations

from speech_bridge.config.settings import AppSettings, ProviderName
from speech_bridge.core.recognition.provider import RecognitionProvider
from speech_bridge.providers.stt.azure_speech import AzureSpeechProvider


def create_recognition_provider(settings: AppSettings) -> RecognitionProvider:
    if settings.provider.name == ProviderName.AZURE:
        return AzureSpeechProvider(
            segmentation_silence_timeout_ms=settings.azure.segmentation_silence_timeout_ms,
            initial_silence_timeout_ms=settings.azure.initial_silence_timeout_ms,
            end_silence_timeout_ms=settings.azure.end_silence_timeout_ms,
            word_level_timestamps=settings.azure.word_level_timestamps,
            sentence_boundary=settings.azure.sentence_boundary,
            custom_segmentation=settings.azure.custom_segmentation,
            stable_partial_threshold=settings.azure.stable_partial_threshold,
            raw_profanity=settings.azure.raw_profanity,
            dictation=settings.azure.dictation,
            conversation_transcriber=settings.azure.conversation_transcriber,
            audio_logging=settings.azure.audio_logging,
        )

    if settings.provider.name == ProviderName.DEEPGRAM:
        from speech_bridge.providers.stt.deepgram import DeepgramProvider

        return DeepgramProvider(
            model=settings.deepgram.model,
            endpoint=settings.deepgram.endpoint,
            interim_results=settings.deepgram.interim_results,
        )

    raise ValueError(f"Unsupported recognition provider: {settings.provider.name}")

