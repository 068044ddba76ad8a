"""
Tests for configuration loading.
"""

import pytest

from feelink.config import Config

ENV_VARS = [
    "API_BASE_URL", "REQUEST_TIMEOUT", "REPLY_TIMEOUT", "SILENCE_TIMEOUT", "APP_NAME",
    "MIN_CONVERSATION_ID_LENGTH", "WHISPER_MODEL_SIZE", "WHISPER_LANGUAGE",
    "VAD_AGGRESSIVENESS", "SAMPLE_RATE", "WS_HOST", "WS_PORT", "LOG_LEVEL",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)


class TestConfig:
    """Test cases for Config class."""

    def test_defaults(self):
        config = Config()

        assert config.api_base_url == "http://localhost:8000"
        assert config.request_timeout == 15.0
        assert config.reply_timeout == 10.0
        assert config.silence_timeout == 1.5
        assert config.app_name == "FeelinkApp_screenshot"
        assert config.min_conversation_id_length == 5
        assert config.whisper_model_size == "base"
        assert config.whisper_language == "ko"
        assert config.sample_rate == 16000
        assert config.ws_port == 8765
        assert config.log_level == "INFO"

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("API_BASE_URL", "https://api.feelink.example/")
        monkeypatch.setenv("SILENCE_TIMEOUT", "2.5")
        monkeypatch.setenv("WHISPER_LANGUAGE", "")
        monkeypatch.setenv("LOG_LEVEL", "debug")

        config = Config()

        assert config.api_base_url == "https://api.feelink.example"
        assert config.silence_timeout == 2.5
        assert config.whisper_language is None
        assert config.log_level == "DEBUG"

    @pytest.mark.parametrize("name, value, message", [
        ("API_BASE_URL", "ftp://example.com", "API base URL"),
        ("REQUEST_TIMEOUT", "0", "request_timeout"),
        ("WHISPER_MODEL_SIZE", "huge", "Whisper model size"),
        ("VAD_AGGRESSIVENESS", "4", "VAD aggressiveness"),
        ("SAMPLE_RATE", "44100", "Sample rate"),
    ])
    def test_invalid_values(self, monkeypatch, name, value, message):
        monkeypatch.setenv(name, value)
        with pytest.raises(ValueError, match=message):
            Config()
