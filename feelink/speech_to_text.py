"""
Speech-to-Text using OpenAI Whisper.

``SpeechToTextProcessor`` wraps the Whisper model; ``WhisperStreamingEngine``
turns a pushed PCM stream into partial transcripts by re-transcribing the
buffered utterance while VAD reports speech.
"""

import asyncio
import whisper
import numpy as np
from typing import AsyncIterator, Optional, Dict, Any
from loguru import logger
import torch

from .audio_utils import AudioBuffer, AudioProcessor
from .errors import TranscriptionError
from .transcription import TranscriptEvent
from .vad import VoiceActivityDetector


class SpeechToTextProcessor:
    """
    Speech-to-Text processor using OpenAI Whisper.
    """

    def __init__(self, model_size: str = "base", device: Optional[str] = None,
                 language: Optional[str] = "ko"):
        """
        Initialize Speech-to-Text processor.

        Args:
            model_size (str): Whisper model size ('tiny', 'base', 'small', 'medium', 'large')
            device (Optional[str]): Device to run model on ('cpu', 'cuda'). Auto-detected if None
            language (Optional[str]): Language code, auto-detected if None

        Raises:
            ValueError: If model size is invalid
        """
        valid_models = ["tiny", "base", "small", "medium", "large"]
        if model_size not in valid_models:
            raise ValueError(f"Model size must be one of {valid_models}, got {model_size}")

        self.model_size = model_size
        self.language = language
        self.device = device or ("cuda" if torch.cuda.is_available() else "cpu")

        logger.info(f"Loading Whisper model '{model_size}' on device '{self.device}'...")
        try:
            self.model = whisper.load_model(model_size, device=self.device)
            logger.info(f"Whisper model '{model_size}' loaded successfully")
        except Exception as e:
            logger.error(f"Failed to load Whisper model: {e}")
            raise

    def transcribe_audio(self, audio_data: np.ndarray, sample_rate: int = 16000) -> Dict[str, Any]:
        """
        Transcribe audio data to text.

        Args:
            audio_data (np.ndarray): Audio data as numpy array (float32)
            sample_rate (int): Sample rate of audio data

        Returns:
            Dict[str, Any]: Whisper result containing text and metadata

        Raises:
            TranscriptionError: If Whisper fails
        """
        if audio_data.dtype != np.float32:
            audio_data = audio_data.astype(np.float32)

        # Whisper expects 16kHz
        audio_data = AudioProcessor.resample_audio(audio_data, sample_rate, 16000)

        options = {
            "task": "transcribe",
            "fp16": self.device == "cuda",
        }
        if self.language:
            options["language"] = self.language

        try:
            result = self.model.transcribe(audio_data, **options)
        except Exception as e:
            logger.error(f"Error during transcription: {e}")
            raise TranscriptionError(f"Whisper transcription failed: {e}") from e

        logger.debug(f"Transcription completed: '{result['text'][:100]}'")
        return result


class WhisperStreamingEngine:
    """
    Streaming speech engine fed with raw PCM chunks.

    Chunks pushed through ``feed()`` while a ``stream()`` pass is open are
    buffered; after every ``partial_interval`` seconds of new speech the
    buffer is re-transcribed and a partial event is yielded. ``end_of_audio()``
    yields a final event for the whole utterance. Closing the generator (as
    the provider does on cancel) ends the pass.
    """

    def __init__(self,
                 model_size: str = "base",
                 language: Optional[str] = "ko",
                 vad_aggressiveness: int = 2,
                 sample_rate: int = 16000,
                 partial_interval: float = 0.6,
                 max_duration: float = 30.0):
        """
        Initialize the streaming engine.

        Args:
            model_size (str): Whisper model size, loaded on first use
            language (Optional[str]): Recognition language
            vad_aggressiveness (int): VAD aggressiveness level (0-3)
            sample_rate (int): Sample rate of the pushed PCM
            partial_interval (float): Seconds of new speech between partials
            max_duration (float): Longest utterance kept in the buffer
        """
        self.model_size = model_size
        self.language = language
        self.sample_rate = sample_rate
        self.partial_interval = partial_interval
        self.max_duration = max_duration
        self.vad = VoiceActivityDetector(vad_aggressiveness, sample_rate)
        self.stt: Optional[SpeechToTextProcessor] = None

        self._queue: Optional[asyncio.Queue] = None

        logger.info(f"WhisperStreamingEngine initialized with SR={sample_rate}, "
                    f"partial interval={partial_interval}s")

    def _load_stt_model(self) -> SpeechToTextProcessor:
        """Lazy load speech-to-text model."""
        if self.stt is None:
            self.stt = SpeechToTextProcessor(self.model_size, language=self.language)
        return self.stt

    @property
    def is_listening(self) -> bool:
        return self._queue is not None

    def feed(self, pcm: bytes) -> None:
        """Push a PCM chunk. Dropped when no recognition pass is open."""
        if self._queue is None:
            logger.debug("Audio chunk dropped, engine is not listening")
            return
        self._queue.put_nowait(("audio", pcm))

    def end_of_audio(self) -> None:
        """Signal that the audio source has finished."""
        if self._queue is not None:
            self._queue.put_nowait(("end", None))

    async def _transcribe(self, audio_data: np.ndarray) -> str:
        stt = self._load_stt_model()
        loop = asyncio.get_running_loop()
        result = await loop.run_in_executor(None, stt.transcribe_audio, audio_data, self.sample_rate)
        return result.get("text", "").strip()

    async def stream(self) -> AsyncIterator[TranscriptEvent]:
        """Open a recognition pass and yield its transcript events."""
        queue: asyncio.Queue = asyncio.Queue()
        self._queue = queue
        audio_buffer = AudioBuffer(self.sample_rate, self.max_duration)
        pending_speech = 0.0
        heard_speech = False
        last_text = ""

        try:
            while True:
                kind, payload = await queue.get()

                if kind == "end":
                    if heard_speech and audio_buffer.get_duration() > 0:
                        last_text = await self._transcribe(audio_buffer.get_buffer()) or last_text
                    # Consumers usually stop iterating at the final event
                    if self._queue is queue:
                        self._queue = None
                    yield TranscriptEvent(last_text, is_final=True)
                    return

                audio_float = AudioProcessor.pcm_to_float(payload)
                if len(audio_float) == 0:
                    continue
                audio_buffer.add_chunk(audio_float)

                if self.vad.contains_speech(payload):
                    heard_speech = True
                    pending_speech += len(audio_float) / self.sample_rate

                if heard_speech and pending_speech >= self.partial_interval:
                    pending_speech = 0.0
                    text = await self._transcribe(audio_buffer.get_buffer())
                    if text and text != last_text:
                        last_text = text
                        yield TranscriptEvent(text)
        finally:
            if self._queue is queue:
                self._queue = None
