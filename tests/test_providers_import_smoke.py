def test_providers_import_smoke():
    from speech_bridge.providers.stt import (
        azure_speech,  # noqa: F401
        deepgram,  # noqa: F401
    )
