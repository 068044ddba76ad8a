"""
Session host: owns the single foreground conversation session.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from loguru import logger

from .announcer import AnnouncementSink
from .errors import ApiError
from .gateway import DEFAULT_QUESTION, BackendGateway
from .models import AnalysisResult, ChatResponse, SessionTarget
from .session import CHAT_FAILURE_MESSAGE, ConversationSession, EventCallback
from .transcription import TranscriptionProvider

SCREENSHOT_APP_NAME = "최근 스크린샷 분석"
ERROR_APP_NAME = "오류"


class SessionHost:
    """
    Opens, replaces and dismisses conversation sessions.

    At most one session exists at a time; opening a new one closes the
    previous session so its late replies are dropped.
    """

    def __init__(self,
                 gateway: BackendGateway,
                 announcer: AnnouncementSink,
                 provider: TranscriptionProvider,
                 on_event: Optional[EventCallback] = None,
                 reply_timeout: float = 10.0):
        """
        Initialize the host.

        Args:
            gateway (BackendGateway): Backend client shared by all sessions
            announcer (AnnouncementSink): Where spoken feedback goes
            provider (TranscriptionProvider): Voice capture shared by all sessions
            on_event (Optional[EventCallback]): Presentation event callback
            reply_timeout (float): Timeout for notification reply requests
        """
        self.gateway = gateway
        self.announcer = announcer
        self.provider = provider
        self.on_event = on_event
        self.reply_timeout = reply_timeout
        self._current: Optional[ConversationSession] = None

    @property
    def current(self) -> Optional[ConversationSession]:
        return self._current

    def _emit(self, event: Dict[str, Any]) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception as e:
            logger.error(f"Presentation callback failed for {event.get('type')}: {e}")

    def _open(self, target: SessionTarget, image_bytes: Optional[bytes] = None) -> ConversationSession:
        if self._current is not None:
            self._current.close()
        session = ConversationSession(
            target,
            self.gateway,
            self.provider,
            self.announcer,
            on_event=self.on_event,
            image_bytes=image_bytes,
        )
        self._current = session
        self._emit({"type": "session", "target": target.to_dict()})
        return session

    def open_conversation(self, conversation_id: str) -> ConversationSession:
        """Open a live session bound to a server-side conversation."""
        return self._open(SessionTarget.conversation(conversation_id))

    async def open_analysis(self, analysis_id: str) -> ConversationSession:
        """Open a session for a stored analysis and load it."""
        session = self._open(SessionTarget.analysis(analysis_id))
        await session.open_analysis()
        return session

    def show_result(self, result: AnalysisResult,
                    image_bytes: Optional[bytes] = None) -> ConversationSession:
        """Open a session that displays ``result`` without a backend call."""
        session = self._open(SessionTarget.analysis(result.id), image_bytes=image_bytes)
        session.show_result(result)
        return session

    async def reply_to_conversation(self, conversation_id: str, text: str) -> ConversationSession:
        """
        Send a typed notification reply, then open the conversation.

        A blank reply is not sent. A failed reply is announced and the
        conversation is opened anyway.
        """
        response: Optional[ChatResponse] = None
        if not text.strip():
            logger.warning(f"Blank reply for conversation '{conversation_id}' not sent")
        else:
            try:
                response = await self.gateway.continue_chat(
                    text, conversation_id, timeout=self.reply_timeout
                )
            except ApiError as e:
                logger.error(f"Notification reply failed: {e}")
                self.announcer.announce(CHAT_FAILURE_MESSAGE)

        session = self.open_conversation(conversation_id)
        if response is not None:
            session.publish_response(response)
            self.announcer.announce_chat_response(response.message)
        return session

    async def analyze_screenshot(self, image_bytes: bytes,
                                 question: str = DEFAULT_QUESTION) -> ConversationSession:
        """
        Submit a screenshot and show the answer as a local analysis result.

        Follow-up questions in the opened session carry the same image.
        """
        now = datetime.now(timezone.utc)
        try:
            answer = await self.gateway.submit_analysis(image_bytes, question)
        except ApiError as e:
            logger.error(f"Screenshot analysis failed: {e}")
            result = AnalysisResult(
                id=f"error-{uuid.uuid4()}",
                timestamp=now,
                summary=f"이미지 분석에 실패했습니다: {e}",
                confidence=0.0,
                app_name=ERROR_APP_NAME,
            )
        else:
            result = AnalysisResult(
                id=f"guest-{uuid.uuid4()}",
                timestamp=now,
                summary=answer,
                confidence=0.9,
                app_name=SCREENSHOT_APP_NAME,
            )
        return self.show_result(result, image_bytes=image_bytes)

    def dismiss(self) -> None:
        """Close the foreground session, if any."""
        if self._current is None:
            return
        self._current.close()
        self._current = None
        self._emit({"type": "dismissed"})

    def snapshot(self) -> Dict[str, Any]:
        return {
            "session": self._current.snapshot() if self._current else None,
            "capturing": self.provider.is_active,
        }
