"""
Announcement sinks: out-of-band text for speech or accessibility output.

Announcing is fire-and-forget. A sink never raises into the caller; render
failures are logged and dropped.
"""

from enum import Enum
from typing import Any, Callable, Dict
from loguru import logger


class Priority(str, Enum):
    """How urgently the front end should interrupt ongoing speech."""

    ANNOUNCEMENT = "announcement"
    SCREEN_CHANGED = "screen_changed"


class AnnouncementSink:
    """
    Base class for announcement sinks.

    Subclasses implement ``_render``.
    """

    def announce(self, text: str, priority: Priority = Priority.ANNOUNCEMENT) -> None:
        """Render ``text``. Errors are logged, never raised."""
        logger.info(f"Announce [{priority.value}]: {text}")
        try:
            self._render(text, priority)
        except Exception as e:
            logger.error(f"Announcement failed: {e}")

    def _render(self, text: str, priority: Priority) -> None:
        raise NotImplementedError

    def announce_analysis_result(self, content: str) -> None:
        """Announce a newly shown analysis result."""
        self.announce(f"분석되었습니다. {content}", Priority.SCREEN_CHANGED)

    def announce_chat_response(self, response: str) -> None:
        self.announce(response, Priority.ANNOUNCEMENT)

    def announce_recording_state(self, is_recording: bool) -> None:
        message = "음성 인식을 시작합니다. 질문해 주세요." if is_recording else "음성 인식이 완료되었습니다."
        self.announce(message, Priority.SCREEN_CHANGED)


class LoggingAnnouncer(AnnouncementSink):
    """Sink that only logs; used when no front end is attached."""

    def _render(self, text: str, priority: Priority) -> None:
        pass


class CallbackAnnouncer(AnnouncementSink):
    """Sink that hands announcement events to a callback, e.g. a WebSocket broadcast."""

    def __init__(self, callback: Callable[[Dict[str, Any]], None]):
        self.callback = callback

    def _render(self, text: str, priority: Priority) -> None:
        self.callback({"type": "announcement", "text": text, "priority": priority.value})
