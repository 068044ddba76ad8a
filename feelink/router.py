"""
Notification routing.

A push payload is decoded once into one of the route types below and then
dispatched to the session host. Classification is pure; only ``route()``
has side effects.
"""

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Union

from loguru import logger

from .host import SessionHost
from .models import AnalysisResult

REPLY_ACTION_IDENTIFIER = "FEELINK_REPLY"
LEGACY_APP_NAME = "푸시 분석 요청"


@dataclass(frozen=True)
class ReplyWithText:
    conversation_id: str
    text: str


@dataclass(frozen=True)
class OpenConversation:
    conversation_id: str
    announcement: Optional[str] = None


@dataclass(frozen=True)
class ShowLegacyAnalysis:
    analysis_id: str
    image_url: str
    question: str

    def to_result(self, now: Optional[datetime] = None) -> AnalysisResult:
        """Build the synthetic result shown for this notification."""
        return AnalysisResult(
            id=self.analysis_id,
            timestamp=now or datetime.now(timezone.utc),
            summary=f"질문: {self.question}",
            confidence=1.0,
            screenshot_url=self.image_url,
            app_name=LEGACY_APP_NAME,
        )


@dataclass(frozen=True)
class OpenAnalysis:
    analysis_id: str


@dataclass(frozen=True)
class Unrecognized:
    reason: str


Route = Union[ReplyWithText, OpenConversation, ShowLegacyAnalysis, OpenAnalysis, Unrecognized]


def _string_field(payload: Dict[str, Any], key: str) -> Optional[str]:
    value = payload.get(key)
    return value if isinstance(value, str) else None


def alert_body(payload: Dict[str, Any]) -> Optional[str]:
    """Extract the visible alert text from ``aps.alert`` or a top-level ``body``."""
    aps = payload.get("aps")
    if isinstance(aps, dict):
        alert = aps.get("alert")
        if isinstance(alert, str):
            return alert
        if isinstance(alert, dict) and isinstance(alert.get("body"), str):
            return alert["body"]
    return _string_field(payload, "body")


def classify(payload: Dict[str, Any],
             action_identifier: Optional[str] = None,
             user_text: Optional[str] = None,
             min_conversation_id_length: int = 5) -> Route:
    """
    Decode a notification into a route. First matching rule wins.

    Args:
        payload (Dict[str, Any]): Notification user info
        action_identifier (Optional[str]): Action the user picked, if any
        user_text (Optional[str]): Text typed into a reply action
        min_conversation_id_length (int): Reply ids must be longer than this

    Returns:
        Route: The decoded route
    """
    if not isinstance(payload, dict):
        return Unrecognized("payload is not a mapping")

    conversation_id = _string_field(payload, "conversation_id")

    if (action_identifier == REPLY_ACTION_IDENTIFIER
            and isinstance(user_text, str)
            and conversation_id is not None
            and len(conversation_id) > min_conversation_id_length):
        return ReplyWithText(conversation_id, user_text)

    if conversation_id is not None:
        return OpenConversation(conversation_id, alert_body(payload))

    analysis_id = _string_field(payload, "analysisId")
    image_url = _string_field(payload, "imageUrl")
    question = _string_field(payload, "question")

    if analysis_id is not None and image_url is not None and question is not None:
        return ShowLegacyAnalysis(analysis_id, image_url, question)

    if analysis_id is not None:
        return OpenAnalysis(analysis_id)

    return Unrecognized(f"no routable fields in {sorted(payload)}")


class NotificationRouter:
    """Classifies notifications and hands them to a ``SessionHost``."""

    def __init__(self, host: SessionHost, min_conversation_id_length: int = 5):
        self.host = host
        self.min_conversation_id_length = min_conversation_id_length

    async def route(self, payload: Dict[str, Any],
                    action_identifier: Optional[str] = None,
                    user_text: Optional[str] = None) -> Route:
        route = classify(payload, action_identifier, user_text, self.min_conversation_id_length)
        logger.info(f"Notification routed as {type(route).__name__}")

        if isinstance(route, ReplyWithText):
            await self.host.reply_to_conversation(route.conversation_id, route.text)
        elif isinstance(route, OpenConversation):
            self.host.open_conversation(route.conversation_id)
            if route.announcement:
                self.host.announcer.announce_analysis_result(route.announcement)
        elif isinstance(route, ShowLegacyAnalysis):
            self.host.show_result(route.to_result())
        elif isinstance(route, OpenAnalysis):
            await self.host.open_analysis(route.analysis_id)
        else:
            logger.warning(f"Discarding notification: {route.reason}")

        return route
