from __future__ import annotations

import json

import pytest

from speech_bridge.config.settings import (
    AppSettings,
    DeepgramSettings,
    LoggingSettings,
    ProviderName,
    ServerSettings,
    SessionSettings,
    apply_env_overrides,
    from_dict,
    load_settings,
    save_settings,
    to_dict,
)


def test_settings_roundtrip(tmp_path):
    path = tmp_path / "settings.json"
    settings = AppSettings(server=ServerSettings(port=4000))
    save_settings(path, settings)

    loaded = load_settings(path)
    assert loaded == settings


def test_defaults_match_bridge_behavior():
    settings = AppSettings()
    assert settings.server.port == 3000
    assert settings.provider.name == ProviderName.AZURE
    assert settings.azure.segmentation_silence_timeout_ms == 100
    assert settings.azure.initial_silence_timeout_ms == 3000
    assert settings.azure.end_silence_timeout_ms == 100


def test_from_dict_fills_missing_sections():
    settings = from_dict({"provider": {"name": "deepgram"}})
    assert settings.provider.name == ProviderName.DEEPGRAM
    assert settings.server == ServerSettings()


def test_from_dict_rejects_unknown_provider():
    with pytest.raises(ValueError):
        from_dict({"provider": {"name": "whisper"}})


def test_settings_validation_rejects_invalid_values():
    with pytest.raises(ValueError):
        AppSettings(server=ServerSettings(port=70000)).validate()
    with pytest.raises(ValueError):
        AppSettings(session=SessionSettings(stop_timeout_s=0)).validate()
    with pytest.raises(ValueError):
        AppSettings(deepgram=DeepgramSettings(endpoint="https://api.deepgram.com")).validate()
    with pytest.raises(ValueError):
        AppSettings(logging=LoggingSettings(level="LOUD")).validate()


def test_load_settings_requires_object(tmp_path):
    path = tmp_path / "settings.json"
    path.write_text(json.dumps([1, 2]), encoding="utf-8")
    with pytest.raises(ValueError):
        load_settings(path)


def test_port_env_overrides_settings():
    settings = apply_env_overrides(AppSettings(), {"PORT": "8080"})
    assert settings.server.port == 8080
    assert to_dict(settings)["server"]["port"] == 8080


def test_port_env_absent_keeps_settings():
    settings = AppSettings(server=ServerSettings(port=4000))
    assert apply_env_overrides(settings, {}) is settings


def test_port_env_must_be_integer():
    with pytest.raises(ValueError):
        apply_env_overrides(AppSettings(), {"PORT": "http"})


def test_logging_level_no():
    assert LoggingSettings(level="debug").level_no == 10


def test_null_sections_fall_back_to_defaults():
    settings = from_dict({"provider": None, "server": None})
    assert settings.provider.name == ProviderName.AZURE
    assert settings.server == ServerSettings()


@pytest.mark.parametrize(
    "data",
    [
        {"server": []},
        {"provider": "azure"},
        {"logging": 3},
        {"server": {"port": None}},
        {"provider": {"name": None}},
    ],
)
def test_malformed_settings_raise_value_error(data):
    with pytest.raises(ValueError):
        from_dict(data)


def test_azure_tuning_roundtrip():
    settings = from_dict({"azure": {"stable_partial_threshold": 3, "custom_segmentation": False}})
    assert settings.azure.stable_partial_threshold == 3
    assert settings.azure.custom_segmentation is False
    assert settings.azure.sentence_boundary is True
    assert from_dict(to_dict(settings)) == settings
