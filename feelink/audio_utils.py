"""
Audio utilities for buffering, converting and replaying PCM audio.

Audio travels through the client as 16-bit mono PCM bytes and is converted
to float32 in [-1, 1] for Whisper.
"""

import asyncio
import numpy as np
from typing import Callable, Optional, Tuple
from loguru import logger
from pydub import AudioSegment


class AudioBuffer:
    """
    Buffer for accumulating audio of the current utterance.
    """

    def __init__(self, sample_rate: int = 16000, max_duration: float = 30.0):
        """
        Initialize audio buffer.

        Args:
            sample_rate (int): Audio sample rate
            max_duration (float): Maximum buffer duration in seconds
        """
        self.sample_rate = sample_rate
        self.max_samples = int(sample_rate * max_duration)
        self.buffer = np.array([], dtype=np.float32)

    def add_chunk(self, audio_chunk: np.ndarray) -> None:
        """Add audio chunk to buffer."""
        if len(audio_chunk) == 0:
            return

        self.buffer = np.concatenate([self.buffer, audio_chunk.astype(np.float32)])

        # Keep only the most recent max_samples
        if len(self.buffer) > self.max_samples:
            self.buffer = self.buffer[-self.max_samples:]

    def get_buffer(self) -> np.ndarray:
        """Get current buffer contents."""
        return self.buffer.copy()

    def get_duration(self) -> float:
        """Get current buffer duration in seconds."""
        return len(self.buffer) / self.sample_rate if len(self.buffer) > 0 else 0.0


class AudioProcessor:
    """
    Audio processing utilities for format conversion and manipulation.
    """

    @staticmethod
    def pcm_to_float(pcm: bytes) -> np.ndarray:
        """
        Convert 16-bit PCM bytes to float32 samples in [-1, 1].

        A trailing odd byte is dropped.
        """
        usable = len(pcm) - (len(pcm) % 2)
        samples = np.frombuffer(pcm[:usable], dtype=np.int16)
        return samples.astype(np.float32) / 32768.0

    @staticmethod
    def float_to_pcm(audio_data: np.ndarray) -> bytes:
        """Convert float32 samples in [-1, 1] to 16-bit PCM bytes."""
        clipped = np.clip(audio_data, -1.0, 1.0)
        return (clipped * 32767).astype(np.int16).tobytes()

    @staticmethod
    def load_audio_from_file(filename: str) -> Tuple[np.ndarray, int]:
        """
        Load audio data from a file.

        Args:
            filename (str): Path to audio file

        Returns:
            Tuple[np.ndarray, int]: Mono float32 audio data and sample rate
        """
        try:
            # pydub handles formats beyond WAV when ffmpeg is available
            audio_segment = AudioSegment.from_file(filename)

            if audio_segment.channels > 1:
                audio_segment = audio_segment.set_channels(1)

            sample_rate = audio_segment.frame_rate
            audio_data = np.array(audio_segment.get_array_of_samples(), dtype=np.float32)

            if audio_segment.sample_width == 2:  # 16-bit
                audio_data = audio_data / 32768.0
            elif audio_segment.sample_width == 4:  # 32-bit
                audio_data = audio_data / 2147483648.0

            logger.info(f"Audio loaded from: {filename} ({len(audio_data)} samples, {sample_rate}Hz)")
            return audio_data, sample_rate

        except Exception as e:
            logger.error(f"Error loading audio file: {e}")
            raise

    @staticmethod
    def resample_audio(audio_data: np.ndarray, original_rate: int,
                       target_rate: int) -> np.ndarray:
        """
        Resample audio data to a different sample rate.

        Args:
            audio_data (np.ndarray): Input audio data
            original_rate (int): Original sample rate
            target_rate (int): Target sample rate

        Returns:
            np.ndarray: Resampled audio data
        """
        if original_rate == target_rate:
            return audio_data

        target_length = int(len(audio_data) * target_rate / original_rate)
        resampled = np.interp(
            np.linspace(0, len(audio_data), target_length),
            np.arange(len(audio_data)),
            audio_data
        )

        logger.debug(f"Audio resampled from {original_rate}Hz to {target_rate}Hz")
        return resampled.astype(np.float32)


class FileAudioSource:
    """
    Replays an audio file as a live PCM stream.

    Chunks are delivered at real-time pace so the silence timeout behaves
    as it would with a microphone.
    """

    def __init__(self, filename: str, sample_rate: int = 16000, chunk_ms: int = 30):
        self.filename = filename
        self.sample_rate = sample_rate
        self.chunk_ms = chunk_ms

    def load_pcm(self) -> bytes:
        """Load the file, resample it, and return 16-bit PCM bytes."""
        audio_data, rate = AudioProcessor.load_audio_from_file(self.filename)
        audio_data = AudioProcessor.resample_audio(audio_data, rate, self.sample_rate)
        return AudioProcessor.float_to_pcm(audio_data)

    async def play(self, feed: Callable[[bytes], None],
                   on_end: Optional[Callable[[], None]] = None,
                   realtime: bool = True) -> None:
        """
        Push the file's audio into ``feed`` chunk by chunk.

        Args:
            feed (Callable[[bytes], None]): Receiver of PCM chunks
            on_end (Optional[Callable[[], None]]): Called after the last chunk
            realtime (bool): Sleep between chunks to match playback speed
        """
        pcm = self.load_pcm()
        chunk_bytes = int(self.sample_rate * self.chunk_ms / 1000) * 2
        logger.info(f"Replaying {self.filename} ({len(pcm) / 2 / self.sample_rate:.2f}s)")

        for start in range(0, len(pcm), chunk_bytes):
            feed(pcm[start:start + chunk_bytes])
            await asyncio.sleep(self.chunk_ms / 1000 if realtime else 0)

        if on_end is not None:
            on_end()
