"""
Voice Activity Detection for streamed PCM audio using WebRTC VAD.

The streaming engine uses this to decide whether an incoming chunk carries
speech, so Whisper only re-transcribes while the user is talking.
"""

import webrtcvad
from typing import Iterator, List, Tuple
from loguru import logger


class VoiceActivityDetector:
    """
    Speech detector for 16-bit mono PCM audio.

    Audio is split into fixed 30 ms frames, the frame size WebRTC VAD
    accepts at every supported sample rate.
    """

    def __init__(self, aggressiveness: int = 2, sample_rate: int = 16000):
        """
        Initialize Voice Activity Detector.

        Args:
            aggressiveness (int): VAD aggressiveness level (0-3).
                                0 = least aggressive, 3 = most aggressive
            sample_rate (int): Audio sample rate in Hz. Must be 8000, 16000, 32000, or 48000

        Raises:
            ValueError: If sample rate or aggressiveness level is invalid
        """
        if sample_rate not in [8000, 16000, 32000, 48000]:
            raise ValueError(f"Sample rate must be 8000, 16000, 32000, or 48000 Hz, got {sample_rate}")

        if not 0 <= aggressiveness <= 3:
            raise ValueError(f"Aggressiveness must be 0-3, got {aggressiveness}")

        self.vad = webrtcvad.Vad(aggressiveness)
        self.sample_rate = sample_rate
        self.aggressiveness = aggressiveness

        self.frame_duration_ms = 30
        self.frame_size = int(sample_rate * self.frame_duration_ms / 1000)
        self.frame_bytes = self.frame_size * 2

        logger.info(f"VAD initialized with aggressiveness={aggressiveness}, sample_rate={sample_rate}")

    def is_speech(self, frame: bytes) -> bool:
        """
        Detect if a single 30 ms PCM frame contains speech.

        Args:
            frame (bytes): Raw 16-bit PCM data of exactly one frame

        Returns:
            bool: True if speech is detected, False otherwise
        """
        try:
            return self.vad.is_speech(frame, self.sample_rate)
        except Exception as e:
            logger.error(f"Error in speech detection: {e}")
            return False

    def frames(self, pcm: bytes) -> Iterator[bytes]:
        """Split PCM bytes into whole frames, zero-padding the last one."""
        for start in range(0, len(pcm), self.frame_bytes):
            frame = pcm[start:start + self.frame_bytes]
            if len(frame) < self.frame_bytes:
                frame = frame + b"\x00" * (self.frame_bytes - len(frame))
            yield frame

    def classify_chunk(self, pcm: bytes) -> List[Tuple[int, bool]]:
        """
        Run VAD over every frame of a PCM chunk.

        Args:
            pcm (bytes): Raw 16-bit PCM audio

        Returns:
            List[Tuple[int, bool]]: List of (frame_index, is_speech) tuples
        """
        if len(pcm) == 0:
            logger.warning("Empty audio chunk provided to VAD")
            return []

        results = [(index, self.is_speech(frame)) for index, frame in enumerate(self.frames(pcm))]

        speech_frames = sum(1 for _, speech in results if speech)
        logger.debug(f"VAD processed {len(results)} frames, {speech_frames} detected as speech")
        return results

    def contains_speech(self, pcm: bytes, min_ratio: float = 0.3) -> bool:
        """
        Decide whether a chunk is speech.

        Args:
            pcm (bytes): Raw 16-bit PCM audio
            min_ratio (float): Fraction of frames that must be speech

        Returns:
            bool: True if at least ``min_ratio`` of the frames are speech
        """
        results = self.classify_chunk(pcm)
        if not results:
            return False
        speech_frames = sum(1 for _, speech in results if speech)
        return speech_frames / len(results) >= min_ratio
