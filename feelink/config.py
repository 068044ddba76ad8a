"""
Configuration management for the Feelink voice client.
"""

import os
from typing import Optional
from dotenv import load_dotenv
from loguru import logger

# Load environment variables
load_dotenv()


class Config:
    """
    Configuration class for the Feelink voice client.

    Centralizes backend, capture and server settings and validates them.
    """

    def __init__(self):
        """Initialize configuration with environment variables."""
        self.api_base_url: str = os.getenv("API_BASE_URL", "http://localhost:8000").rstrip("/")
        self.request_timeout: float = float(os.getenv("REQUEST_TIMEOUT", "15"))
        self.reply_timeout: float = float(os.getenv("REPLY_TIMEOUT", "10"))
        self.silence_timeout: float = float(os.getenv("SILENCE_TIMEOUT", "1.5"))
        self.app_name: str = os.getenv("APP_NAME", "FeelinkApp_screenshot")
        self.min_conversation_id_length: int = int(os.getenv("MIN_CONVERSATION_ID_LENGTH", "5"))
        self.whisper_model_size: str = os.getenv("WHISPER_MODEL_SIZE", "base")
        self.whisper_language: Optional[str] = os.getenv("WHISPER_LANGUAGE", "ko") or None
        self.vad_aggressiveness: int = int(os.getenv("VAD_AGGRESSIVENESS", "2"))
        self.sample_rate: int = int(os.getenv("SAMPLE_RATE", "16000"))
        self.ws_host: str = os.getenv("WS_HOST", "localhost")
        self.ws_port: int = int(os.getenv("WS_PORT", "8765"))
        self.log_level: str = os.getenv("LOG_LEVEL", "INFO").upper()

        self._validate_config()

    def _validate_config(self) -> None:
        """
        Validate configuration values.

        Raises:
            ValueError: If configuration values are invalid.
        """
        if not self.api_base_url.startswith(("http://", "https://")):
            raise ValueError(
                f"API base URL must start with http:// or https://, got: {self.api_base_url}"
            )

        for name in ("request_timeout", "reply_timeout", "silence_timeout"):
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got: {getattr(self, name)}")

        valid_whisper_models = ["tiny", "base", "small", "medium", "large"]
        if self.whisper_model_size not in valid_whisper_models:
            raise ValueError(
                f"Invalid Whisper model size: {self.whisper_model_size}. "
                f"Must be one of: {valid_whisper_models}"
            )

        if not 0 <= self.vad_aggressiveness <= 3:
            raise ValueError(
                f"VAD aggressiveness must be between 0-3, got: {self.vad_aggressiveness}"
            )

        if self.sample_rate not in [8000, 16000, 32000, 48000]:
            raise ValueError(
                f"Sample rate must be 8000, 16000, 32000, or 48000 Hz, got: {self.sample_rate}"
            )

        logger.info(f"Configuration loaded successfully:")
        logger.info(f"  - Backend: {self.api_base_url} (timeout {self.request_timeout}s)")
        logger.info(f"  - Whisper model: {self.whisper_model_size} ({self.whisper_language or 'auto'})")
        logger.info(f"  - VAD aggressiveness: {self.vad_aggressiveness}")
        logger.info(f"  - Silence timeout: {self.silence_timeout}s")


# Global configuration instance
config = Config()
