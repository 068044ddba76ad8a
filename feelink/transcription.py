"""
Transcription provider adapter.

Wraps a streaming speech engine behind a start/stop/cancel contract:
every ``start()`` produces zero or more partial callbacks followed by
exactly one final callback or one error callback. ``cancel()`` ends a
capture without any terminal callback.
"""

import asyncio
from dataclasses import dataclass
from typing import AsyncIterator, Callable, Optional, Protocol

from loguru import logger

from .errors import TranscriptionError


@dataclass(frozen=True)
class TranscriptEvent:
    """A recognized text update from a speech engine."""

    text: str
    is_final: bool = False


class SpeechEngine(Protocol):
    """Anything that can turn the live audio input into transcript events."""

    def stream(self) -> AsyncIterator[TranscriptEvent]:
        """Start a fresh recognition pass and yield its events."""
        ...


PartialCallback = Callable[[str], None]
FinalCallback = Callable[[str], None]
ErrorCallback = Callable[[Exception], None]


class TranscriptionProvider:
    """
    One-capture-at-a-time adapter around a ``SpeechEngine``.

    The silence timer is armed after each partial and fires an implicit
    final with the last known text when no new partial arrives within
    ``silence_timeout`` seconds.
    """

    def __init__(self, engine: SpeechEngine, silence_timeout: float = 1.5):
        """
        Initialize the provider.

        Args:
            engine (SpeechEngine): Engine producing transcript events
            silence_timeout (float): Seconds without a partial before the
                utterance is finalized
        """
        if silence_timeout <= 0:
            raise ValueError(f"silence_timeout must be positive, got {silence_timeout}")

        self.engine = engine
        self.silence_timeout = silence_timeout

        self._generation = 0
        self._active = False
        self._task: Optional[asyncio.Task] = None
        self._silence_timer: Optional[asyncio.TimerHandle] = None
        self._last_text = ""
        self._on_partial: Optional[PartialCallback] = None
        self._on_final: Optional[FinalCallback] = None
        self._on_error: Optional[ErrorCallback] = None

    @property
    def is_active(self) -> bool:
        return self._active

    @property
    def last_text(self) -> str:
        return self._last_text

    def start(self, on_partial: PartialCallback, on_final: FinalCallback,
              on_error: ErrorCallback) -> None:
        """
        Begin a new capture. Must be called from the running event loop.

        A capture that is still active is cancelled first.
        """
        if self._active:
            logger.info("New capture requested, cancelling the active one")
            self.cancel()

        self._generation += 1
        self._active = True
        self._last_text = ""
        self._on_partial = on_partial
        self._on_final = on_final
        self._on_error = on_error

        self._task = asyncio.ensure_future(self._run(self._generation))
        logger.info(f"Capture {self._generation} started")

    def stop(self) -> None:
        """Finalize the active capture with the last known text. No-op when inactive."""
        if not self._active:
            return
        logger.info(f"Capture {self._generation} stopped explicitly")
        self._finish(self._generation, self._last_text)

    def cancel(self) -> None:
        """Abort the active capture without a final or error callback."""
        if not self._active:
            return
        logger.info(f"Capture {self._generation} cancelled")
        self._teardown()

    async def _run(self, generation: int) -> None:
        try:
            async for event in self.engine.stream():
                if generation != self._generation or not self._active:
                    return
                if event.is_final:
                    self._finish(generation, event.text or self._last_text)
                    return
                self._handle_partial(generation, event.text)
            # Engine ran out of audio without an explicit final
            self._finish(generation, self._last_text)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Speech engine failed: {e}")
            self._fail(generation, e)

    def _handle_partial(self, generation: int, text: str) -> None:
        self._last_text = text
        self._arm_silence_timer(generation)
        logger.debug(f"Partial transcript: '{text}'")
        if self._on_partial is not None:
            self._on_partial(text)

    def _arm_silence_timer(self, generation: int) -> None:
        if self._silence_timer is not None:
            self._silence_timer.cancel()
        loop = asyncio.get_running_loop()
        self._silence_timer = loop.call_later(self.silence_timeout, self._on_silence, generation)

    def _on_silence(self, generation: int) -> None:
        if generation != self._generation or not self._active:
            return
        logger.info(f"Silence detected after {self.silence_timeout}s, finalizing capture")
        self._finish(generation, self._last_text)

    def _finish(self, generation: int, text: str) -> None:
        if generation != self._generation or not self._active:
            return
        callback = self._on_final
        self._teardown()
        logger.info(f"Capture {generation} final: '{text}'")
        if callback is not None:
            callback(text)

    def _fail(self, generation: int, error: Exception) -> None:
        if generation != self._generation or not self._active:
            return
        callback = self._on_error
        self._teardown()
        if callback is not None:
            if not isinstance(error, TranscriptionError):
                wrapped = TranscriptionError(str(error))
                wrapped.__cause__ = error
                error = wrapped
            callback(error)

    def _teardown(self) -> None:
        self._active = False
        if self._silence_timer is not None:
            self._silence_timer.cancel()
            self._silence_timer = None

        task = self._task
        self._task = None
        if task is not None and not task.done():
            try:
                current = asyncio.current_task()
            except RuntimeError:
                current = None
            if task is not current:
                task.cancel()

        self._on_partial = None
        self._on_final = None
        self._on_error = None
