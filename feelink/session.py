"""
Conversation session: the state machine behind one foreground conversation.

States::

    IDLE -> LISTENING -> AWAITING_REPLY -> IDLE
    IDLE -> DISPLAYING (stored or synthesized analysis result)

All transitions run on the event loop thread. Every voice turn gets a
number from a monotonically increasing counter; callbacks and replies that
carry an old number are dropped, which is how cancelled captures and stale
responses are discarded.
"""

import asyncio
from enum import Enum
from functools import partial
from typing import Any, Callable, Dict, Optional

from loguru import logger

from .announcer import AnnouncementSink
from .errors import ApiError, TranscriptionCancelled
from .gateway import BackendGateway
from .models import AnalysisResult, ChatResponse, IdentifierKind, SessionTarget
from .transcription import TranscriptionProvider

CHAT_FAILURE_MESSAGE = "응답을 받아오는데 실패했습니다"
LOAD_FAILURE_MESSAGE = "분석 결과를 불러오는데 실패했습니다."
TRANSCRIPTION_FAILURE_MESSAGE = "음성 인식에 실패했습니다"

EventCallback = Callable[[Dict[str, Any]], None]


class SessionState(str, Enum):
    IDLE = "idle"
    LISTENING = "listening"
    AWAITING_REPLY = "awaiting_reply"
    DISPLAYING = "displaying"


class ConversationSession:
    """
    Mediates between voice capture, the backend, and the presentation layer.

    Conversation targets send turns through ``continue_chat``; analysis
    targets through ``send_chat_turn`` with the optional screenshot bytes.
    Presentation events are plain dicts handed to ``on_event``.
    """

    def __init__(self,
                 target: SessionTarget,
                 gateway: BackendGateway,
                 provider: TranscriptionProvider,
                 announcer: AnnouncementSink,
                 on_event: Optional[EventCallback] = None,
                 image_bytes: Optional[bytes] = None):
        self._target = target
        self.gateway = gateway
        self.provider = provider
        self.announcer = announcer
        self.on_event = on_event
        self.image_bytes = image_bytes

        self._state = SessionState.IDLE
        self._turn = 0
        self._pending_final: Optional[tuple] = None
        self._reply_task: Optional[asyncio.Task] = None
        self._closed = False

        self.result: Optional[AnalysisResult] = None
        self.last_response: Optional[ChatResponse] = None

        logger.info(f"Session opened for {target.kind.value} '{target.id}'")

    @property
    def target(self) -> SessionTarget:
        return self._target

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_closed(self) -> bool:
        return self._closed

    @property
    def reply_task(self) -> Optional[asyncio.Task]:
        """The in-flight chat request, if any."""
        return self._reply_task

    def snapshot(self) -> Dict[str, Any]:
        """Current session state for the presentation layer."""
        return {
            "target": self._target.to_dict(),
            "state": self._state.value,
            "closed": self._closed,
            "result": self.result.to_dict() if self.result else None,
            "last_response": self.last_response.to_dict() if self.last_response else None,
        }

    def _publish(self, event: Dict[str, Any]) -> None:
        if self.on_event is None:
            return
        try:
            self.on_event(event)
        except Exception as e:
            logger.error(f"Presentation callback failed for {event.get('type')}: {e}")

    def _set_state(self, state: SessionState) -> None:
        if state is self._state:
            return
        logger.info(f"Session '{self._target.id}': {self._state.value} -> {state.value}")
        self._state = state
        self._publish({"type": "state", "state": state.value, "target": self._target.to_dict()})

    def _is_current(self, turn: int, state: SessionState) -> bool:
        return not self._closed and turn == self._turn and self._state is state

    # Voice turns

    def start_listening(self) -> bool:
        """
        Start a voice turn.

        Returns:
            bool: True if the session is listening afterwards
        """
        if self._closed:
            logger.warning("start_listening on a closed session ignored")
            return False
        if self._state is SessionState.LISTENING:
            logger.debug("Already listening, start request ignored")
            return True
        if self._state is SessionState.AWAITING_REPLY:
            logger.warning("A reply is still pending, start request rejected")
            return False

        self._turn += 1
        turn = self._turn
        self._pending_final = None
        self._set_state(SessionState.LISTENING)
        self.announcer.announce_recording_state(True)
        self.provider.start(
            on_partial=partial(self._on_partial, turn),
            on_final=partial(self._on_final, turn),
            on_error=partial(self._on_error, turn),
        )
        return True

    def stop_listening(self) -> None:
        """Finalize the utterance captured so far."""
        if self._state is not SessionState.LISTENING:
            return
        self.provider.stop()

    def cancel_listening(self) -> bool:
        """
        Abort the voice turn without contacting the backend.

        Wins over a final transcript delivered in the same loop iteration.
        """
        if self._closed or self._state is not SessionState.LISTENING:
            return False

        self._turn += 1
        self._pending_final = None
        self.provider.cancel()
        self._set_state(SessionState.IDLE)
        logger.info(f"Voice turn cancelled for '{self._target.id}'")
        return True

    def _on_partial(self, turn: int, text: str) -> None:
        if self._is_current(turn, SessionState.LISTENING):
            self._publish({"type": "partial", "text": text})

    def _on_final(self, turn: int, text: str) -> None:
        if not self._is_current(turn, SessionState.LISTENING):
            return
        # Commit on the next loop iteration so a cancel in this one still wins
        self._pending_final = (turn, text)
        asyncio.get_running_loop().call_soon(self._commit_final, turn)

    def _commit_final(self, turn: int) -> None:
        pending = self._pending_final
        if pending is None or pending[0] != turn or not self._is_current(turn, SessionState.LISTENING):
            return
        self._pending_final = None
        text = pending[1].strip()

        if not text:
            logger.info("Empty transcript, nothing to send")
            self._set_state(SessionState.IDLE)
            return

        self._publish({"type": "transcript", "text": text})
        self.announcer.announce_recording_state(False)
        self._set_state(SessionState.AWAITING_REPLY)
        self._reply_task = asyncio.ensure_future(self._send_turn(turn, text))

    def _on_error(self, turn: int, error: Exception) -> None:
        if not self._is_current(turn, SessionState.LISTENING):
            return
        self._pending_final = None
        self._set_state(SessionState.IDLE)

        if isinstance(error, TranscriptionCancelled):
            logger.info(f"Voice capture cancelled: {error}")
            return

        logger.error(f"Voice capture failed: {error}")
        self.announcer.announce(TRANSCRIPTION_FAILURE_MESSAGE)
        self._publish({"type": "error", "kind": "transcription", "message": str(error)})

    async def _send_turn(self, turn: int, text: str) -> None:
        logger.info(f"Sending chat turn {turn} for '{self._target.id}': '{text}'")
        try:
            if self._target.kind is IdentifierKind.CONVERSATION:
                response = await self.gateway.continue_chat(text, self._target.id)
            else:
                response = await self.gateway.send_chat_turn(text, self._target.id, self.image_bytes)
        except ApiError as e:
            self._fail_turn(turn, e.kind, e)
            return
        except Exception as e:
            logger.exception(f"Unexpected error in chat turn {turn}")
            self._fail_turn(turn, "unexpected", e)
            return

        if not self._is_current(turn, SessionState.AWAITING_REPLY):
            logger.info(f"Dropping stale reply for turn {turn}")
            return

        self.last_response = response
        self._set_state(SessionState.IDLE)
        self.announcer.announce_chat_response(response.message)
        self._publish({"type": "response", **response.to_dict()})

    def _fail_turn(self, turn: int, kind: str, error: Exception) -> None:
        if not self._is_current(turn, SessionState.AWAITING_REPLY):
            logger.info(f"Dropping failure of stale turn {turn}: {error}")
            return
        logger.error(f"Chat turn {turn} failed: {error}")
        self._set_state(SessionState.IDLE)
        self.announcer.announce(CHAT_FAILURE_MESSAGE)
        self._publish({"type": "error", "kind": kind, "message": str(error)})

    # Analysis display

    async def open_analysis(self) -> Optional[AnalysisResult]:
        """
        Fetch the bound analysis and display it.

        Returns:
            Optional[AnalysisResult]: The shown result, or None on failure
        """
        if self._target.kind is not IdentifierKind.ANALYSIS:
            raise ValueError(f"Session '{self._target.id}' is not bound to an analysis")
        if self._closed or self._state is not SessionState.IDLE:
            logger.warning(f"open_analysis ignored in state {self._state.value}")
            return None

        self._turn += 1
        turn = self._turn
        try:
            result = await self.gateway.fetch_analysis(self._target.id)
        except ApiError as e:
            if not self._is_current(turn, SessionState.IDLE):
                return None
            logger.error(f"Loading analysis '{self._target.id}' failed: {e}")
            self.announcer.announce(LOAD_FAILURE_MESSAGE)
            self._publish({"type": "error", "kind": e.kind, "message": str(e)})
            return None

        if not self._is_current(turn, SessionState.IDLE):
            logger.info(f"Dropping stale analysis '{result.id}'")
            return None

        self.show_result(result)
        return result

    def show_result(self, result: AnalysisResult) -> bool:
        """Enter DISPLAYING with ``result``, no backend call."""
        if self._closed or self._state not in (SessionState.IDLE, SessionState.DISPLAYING):
            logger.warning(f"show_result ignored in state {self._state.value}")
            return False

        self.result = result
        self._set_state(SessionState.DISPLAYING)
        self.announcer.announce_analysis_result(result.summary)
        self._publish({"type": "result", "result": result.to_dict()})
        return True

    def publish_response(self, response: ChatResponse) -> None:
        """Show a reply obtained outside a voice turn (e.g. a notification reply)."""
        if self._closed:
            return
        self.last_response = response
        self._publish({"type": "response", **response.to_dict()})

    def close(self) -> None:
        """Dismiss the session. Pending captures are cancelled and replies dropped."""
        if self._closed:
            return
        self._closed = True
        self._turn += 1
        self._pending_final = None
        self.provider.cancel()
        logger.info(f"Session for '{self._target.id}' closed")
        self._publish({"type": "closed", "target": self._target.to_dict()})
