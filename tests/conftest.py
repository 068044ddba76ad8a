"""
Shared fakes for the session, router and server tests.
"""

import asyncio
import sys
from pathlib import Path
from typing import Any, List, Optional

import pytest

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from feelink.announcer import AnnouncementSink, Priority
from feelink.models import AnalysisResult, ChatResponse, parse_timestamp
from feelink.transcription import TranscriptEvent, TranscriptionProvider


async def settle(rounds: int = 10) -> None:
    """Let pending callbacks and tasks on the loop run."""
    for _ in range(rounds):
        await asyncio.sleep(0)


class ScriptedEngine:
    """Speech engine whose events are pushed by the test."""

    def __init__(self):
        self._queue: Optional[asyncio.Queue] = None
        self.streams_opened = 0

    def _get_queue(self) -> asyncio.Queue:
        if self._queue is None:
            self._queue = asyncio.Queue()
        return self._queue

    async def stream(self):
        self.streams_opened += 1
        queue = self._get_queue()
        while True:
            item = await queue.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield item

    def partial(self, text: str) -> None:
        self._get_queue().put_nowait(TranscriptEvent(text))

    def final(self, text: str) -> None:
        self._get_queue().put_nowait(TranscriptEvent(text, is_final=True))

    def fail(self, error: Exception) -> None:
        self._get_queue().put_nowait(error)

    def end(self) -> None:
        self._get_queue().put_nowait(None)


class FakeGateway:
    """Records calls and answers with preset results or exceptions."""

    def __init__(self):
        self.calls: List[tuple] = []
        self.chat_result: Any = ChatResponse("테스트 응답입니다", "conv-123456")
        self.analysis_result: Any = make_result("analysis-1")
        self.submit_result: Any = "스크린샷 분석 결과"
        self.register_result = True
        self.gate: Optional[asyncio.Event] = None
        self.closed = False

    async def _respond(self, result):
        if self.gate is not None:
            await self.gate.wait()
        if isinstance(result, Exception):
            raise result
        return result

    async def continue_chat(self, message, conversation_id, timeout=None):
        self.calls.append(("continue_chat", message, conversation_id, timeout))
        return await self._respond(self.chat_result)

    async def send_chat_turn(self, message, analysis_id, image_bytes=None):
        self.calls.append(("send_chat_turn", message, analysis_id, image_bytes))
        return await self._respond(self.chat_result)

    async def fetch_analysis(self, analysis_id):
        self.calls.append(("fetch_analysis", analysis_id))
        return await self._respond(self.analysis_result)

    async def submit_analysis(self, image_bytes, question=None):
        self.calls.append(("submit_analysis", image_bytes, question))
        return await self._respond(self.submit_result)

    async def register_device(self, installation_id, device_token, **kwargs):
        self.calls.append(("register_device", installation_id, device_token))
        return self.register_result

    async def close(self):
        self.closed = True


class RecordingAnnouncer(AnnouncementSink):
    """Sink that keeps every rendered announcement."""

    def __init__(self):
        self.announcements: List[tuple] = []

    def _render(self, text: str, priority: Priority) -> None:
        self.announcements.append((text, priority))

    @property
    def texts(self) -> List[str]:
        return [text for text, _ in self.announcements]


def make_result(result_id: str = "analysis-1", summary: str = "화면에 버튼이 있습니다") -> AnalysisResult:
    return AnalysisResult(
        id=result_id,
        timestamp=parse_timestamp("2024-05-01T10:00:00Z"),
        summary=summary,
        confidence=0.8,
    )


@pytest.fixture
def engine():
    return ScriptedEngine()


@pytest.fixture
def provider(engine):
    # Long silence timeout so tests decide when utterances end
    return TranscriptionProvider(engine, silence_timeout=5.0)


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture
def announcer():
    return RecordingAnnouncer()


@pytest.fixture
def events():
    return []
