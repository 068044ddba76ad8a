"""
Tests for the transcription provider adapter.
"""

import asyncio

import pytest

from conftest import ScriptedEngine, settle
from feelink.errors import TranscriptionCancelled, TranscriptionError
from feelink.transcription import TranscriptionProvider


class CallbackRecorder:
    def __init__(self):
        self.partials = []
        self.finals = []
        self.errors = []

    def start(self, provider: TranscriptionProvider) -> None:
        provider.start(self.partials.append, self.finals.append, self.errors.append)

    @property
    def terminal_count(self) -> int:
        return len(self.finals) + len(self.errors)


class TestTranscriptionProvider:
    """Test cases for TranscriptionProvider class."""

    def test_invalid_silence_timeout(self):
        """Non-positive silence timeouts are rejected."""
        with pytest.raises(ValueError, match="silence_timeout"):
            TranscriptionProvider(ScriptedEngine(), silence_timeout=0)

    @pytest.mark.asyncio
    async def test_partials_then_final(self):
        """Partials are forwarded and the engine final ends the capture."""
        engine = ScriptedEngine()
        provider = TranscriptionProvider(engine, silence_timeout=5.0)
        recorder = CallbackRecorder()

        recorder.start(provider)
        engine.partial("오늘")
        engine.partial("오늘 날씨")
        engine.final("오늘 날씨 어때")
        await settle()

        assert recorder.partials == ["오늘", "오늘 날씨"]
        assert recorder.finals == ["오늘 날씨 어때"]
        assert recorder.errors == []
        assert not provider.is_active

    @pytest.mark.asyncio
    async def test_silence_timeout_finalizes_last_text(self):
        """No new partial within the timeout yields an implicit final."""
        engine = ScriptedEngine()
        provider = TranscriptionProvider(engine, silence_timeout=0.05)
        recorder = CallbackRecorder()

        recorder.start(provider)
        engine.partial("조용해지면")
        await settle()
        await asyncio.sleep(0.15)

        assert recorder.finals == ["조용해지면"]
        assert not provider.is_active

    @pytest.mark.asyncio
    async def test_silence_timer_not_armed_before_first_partial(self):
        """The timer only starts once something was heard."""
        engine = ScriptedEngine()
        provider = TranscriptionProvider(engine, silence_timeout=0.05)
        recorder = CallbackRecorder()

        recorder.start(provider)
        await asyncio.sleep(0.15)

        assert recorder.terminal_count == 0
        assert provider.is_active
        provider.cancel()

    @pytest.mark.asyncio
    async def test_stop_delivers_exactly_one_final(self):
        """A late engine final after stop() is ignored."""
        engine = ScriptedEngine()
        provider = TranscriptionProvider(engine, silence_timeout=5.0)
        recorder = CallbackRecorder()

        recorder.start(provider)
        engine.partial("여기까지")
        await settle()

        provider.stop()
        engine.final("더 긴 결과")
        await settle()

        assert recorder.finals == ["여기까지"]
        assert recorder.terminal_count == 1

    @pytest.mark.asyncio
    async def test_stop_when_inactive_is_noop(self):
        """stop() without a capture does nothing."""
        provider = TranscriptionProvider(ScriptedEngine(), silence_timeout=5.0)
        provider.stop()
        assert not provider.is_active

    @pytest.mark.asyncio
    async def test_cancel_delivers_nothing(self):
        """cancel() ends the capture without a terminal callback."""
        engine = ScriptedEngine()
        provider = TranscriptionProvider(engine, silence_timeout=0.05)
        recorder = CallbackRecorder()

        recorder.start(provider)
        engine.partial("취소될 문장")
        await settle()

        provider.cancel()
        await asyncio.sleep(0.15)

        assert recorder.partials == ["취소될 문장"]
        assert recorder.terminal_count == 0

    @pytest.mark.asyncio
    async def test_engine_exception_is_wrapped(self):
        """Unexpected engine errors arrive as TranscriptionError."""
        engine = ScriptedEngine()
        provider = TranscriptionProvider(engine, silence_timeout=5.0)
        recorder = CallbackRecorder()
        cause = RuntimeError("device lost")

        recorder.start(provider)
        engine.fail(cause)
        await settle()

        assert recorder.finals == []
        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], TranscriptionError)
        assert recorder.errors[0].__cause__ is cause

    @pytest.mark.asyncio
    async def test_cancelled_error_passes_through(self):
        """TranscriptionCancelled is delivered unchanged."""
        engine = ScriptedEngine()
        provider = TranscriptionProvider(engine, silence_timeout=5.0)
        recorder = CallbackRecorder()

        recorder.start(provider)
        engine.fail(TranscriptionCancelled("aborted"))
        await settle()

        assert len(recorder.errors) == 1
        assert isinstance(recorder.errors[0], TranscriptionCancelled)

    @pytest.mark.asyncio
    async def test_engine_end_without_final(self):
        """An engine that runs dry finalizes with the last partial."""
        engine = ScriptedEngine()
        provider = TranscriptionProvider(engine, silence_timeout=5.0)
        recorder = CallbackRecorder()

        recorder.start(provider)
        engine.partial("끝난 스트림")
        engine.end()
        await settle()

        assert recorder.finals == ["끝난 스트림"]

    @pytest.mark.asyncio
    async def test_restart_cancels_previous_capture(self):
        """Starting again silences the previous capture's callbacks."""
        engine = ScriptedEngine()
        provider = TranscriptionProvider(engine, silence_timeout=5.0)
        first = CallbackRecorder()
        second = CallbackRecorder()

        first.start(provider)
        await settle()
        second.start(provider)
        engine.final("두 번째")
        await settle()

        assert first.terminal_count == 0
        assert second.finals == ["두 번째"]
        assert engine.streams_opened == 2
