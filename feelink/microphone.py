"""
Microphone capture feeding the streaming speech engine.
"""

import asyncio
import threading
import pyaudio
from typing import Callable, Optional
from loguru import logger


class MicrophoneSource:
    """
    Captures 16-bit mono audio from the default input device.

    Reading happens on a daemon thread; every chunk is handed to ``feed``
    on the event loop through ``call_soon_threadsafe``.
    """

    def __init__(self, sample_rate: int = 16000, chunk_size: int = 480,
                 device_index: Optional[int] = None):
        """
        Initialize microphone capture.

        Args:
            sample_rate (int): Audio sample rate in Hz
            chunk_size (int): Frames per read (480 = 30 ms at 16 kHz)
            device_index (Optional[int]): PyAudio input device, default device if None
        """
        self.sample_rate = sample_rate
        self.chunk_size = chunk_size
        self.device_index = device_index

        self.audio = pyaudio.PyAudio()
        self.stream = None
        self.is_recording = False
        self._thread: Optional[threading.Thread] = None

        logger.info(f"MicrophoneSource initialized: {sample_rate}Hz, chunk={chunk_size}")

    def start(self, feed: Callable[[bytes], None],
              loop: Optional[asyncio.AbstractEventLoop] = None) -> None:
        """
        Start capturing and forwarding chunks.

        Raises:
            RuntimeError: If recording is already in progress
        """
        if self.is_recording:
            raise RuntimeError("Recording is already in progress")

        loop = loop or asyncio.get_running_loop()
        self.stream = self.audio.open(
            format=pyaudio.paInt16,
            channels=1,
            rate=self.sample_rate,
            input=True,
            input_device_index=self.device_index,
            frames_per_buffer=self.chunk_size
        )
        self.is_recording = True

        def capture():
            while self.is_recording and self.stream is not None:
                try:
                    data = self.stream.read(self.chunk_size, exception_on_overflow=False)
                except OSError as e:
                    logger.error(f"Microphone read failed: {e}")
                    break
                loop.call_soon_threadsafe(feed, data)
            logger.info("Microphone capture thread finished")

        self._thread = threading.Thread(target=capture, daemon=True)
        self._thread.start()
        logger.info("Microphone capture started")

    def stop(self) -> None:
        """Stop capturing."""
        if not self.is_recording:
            return
        self.is_recording = False
        if self._thread is not None:
            self._thread.join(timeout=1.0)
            self._thread = None
        if self.stream is not None:
            self.stream.stop_stream()
            self.stream.close()
            self.stream = None
        logger.info("Microphone capture stopped")

    def cleanup(self) -> None:
        """Clean up audio resources."""
        self.stop()
        if self.audio:
            self.audio.terminate()
            logger.info("Audio resources cleaned up")
