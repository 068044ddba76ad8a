"""
Value objects exchanged with the analysis backend.

All models are immutable. JSON mapping follows the backend field names
(``screenshot_url``, ``app_name``, ``answer``, ``analysis_id``,
``conversation_id``); optional fields that are absent are omitted on encode.
Decoding raises ``KeyError``, ``TypeError`` or ``ValueError`` on shape
mismatch, which the gateway reports as a decode failure.
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union


def parse_timestamp(value: Union[str, int, float]) -> datetime:
    """Decode an ISO-8601 string or epoch seconds into an aware datetime."""
    if isinstance(value, bool):
        raise TypeError("timestamp must be a string or a number")
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError) as e:
            raise ValueError(f"Epoch timestamp out of range: {value!r}") from e
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)
        if parsed.tzinfo is None:
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed
    raise TypeError(f"Unsupported timestamp value: {value!r}")


def _check_confidence(value: float, owner: str) -> None:
    if not 0.0 <= value <= 1.0:
        raise ValueError(f"{owner} confidence must be within [0, 1], got {value}")


def _optional_str(data: Dict[str, Any], key: str) -> Optional[str]:
    value = data.get(key)
    if value is None:
        return None
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string, got {type(value).__name__}")
    return value


def _require_dict(data: Any, owner: str) -> Dict[str, Any]:
    if not isinstance(data, dict):
        raise TypeError(f"{owner} must be a JSON object, got {type(data).__name__}")
    return data


def _require_str(data: Dict[str, Any], key: str) -> str:
    value = data[key]
    if not isinstance(value, str):
        raise TypeError(f"{key} must be a string, got {type(value).__name__}")
    return value


class IdentifierKind(str, Enum):
    """Which id space a session identifier belongs to."""

    CONVERSATION = "conversation"
    ANALYSIS = "analysis"


@dataclass(frozen=True)
class SessionTarget:
    """Identity a conversation session is bound to, with an explicit kind."""

    id: str
    kind: IdentifierKind

    @classmethod
    def conversation(cls, conversation_id: str) -> "SessionTarget":
        return cls(conversation_id, IdentifierKind.CONVERSATION)

    @classmethod
    def analysis(cls, analysis_id: str) -> "SessionTarget":
        return cls(analysis_id, IdentifierKind.ANALYSIS)

    def to_dict(self) -> Dict[str, str]:
        return {"id": self.id, "kind": self.kind.value}


@dataclass(frozen=True)
class BoundingBox:
    x: float
    y: float
    width: float
    height: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "BoundingBox":
        data = _require_dict(data, "position")
        return cls(
            x=float(data["x"]),
            y=float(data["y"]),
            width=float(data["width"]),
            height=float(data["height"]),
        )

    def to_dict(self) -> Dict[str, float]:
        return {"x": self.x, "y": self.y, "width": self.width, "height": self.height}


@dataclass(frozen=True)
class DetectedObject:
    """An object the backend found in the analysed image."""

    name: str
    confidence: float
    position: Optional[BoundingBox] = None

    def __post_init__(self):
        _check_confidence(self.confidence, f"Object '{self.name}'")

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DetectedObject":
        data = _require_dict(data, "object")
        position = data.get("position")
        return cls(
            name=_require_str(data, "name"),
            confidence=float(data["confidence"]),
            position=BoundingBox.from_dict(position) if position is not None else None,
        )

    def to_dict(self) -> Dict[str, Any]:
        encoded: Dict[str, Any] = {"name": self.name, "confidence": self.confidence}
        if self.position is not None:
            encoded["position"] = self.position.to_dict()
        return encoded


@dataclass(frozen=True)
class AnalysisResult:
    """
    A computed analysis of a screenshot.

    Never mutated after construction; use ``dataclasses.replace`` to derive
    an updated copy.
    """

    id: str
    timestamp: datetime
    summary: str
    objects: Tuple[DetectedObject, ...] = field(default_factory=tuple)
    text: Optional[str] = None
    confidence: float = 0.0
    screenshot_url: Optional[str] = None
    app_name: Optional[str] = None

    def __post_init__(self):
        _check_confidence(self.confidence, "Analysis")
        if not isinstance(self.objects, tuple):
            object.__setattr__(self, "objects", tuple(self.objects))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisResult":
        """
        Decode a backend analysis payload.

        Raises:
            KeyError, TypeError, ValueError: If the payload does not match
                the expected shape.
        """
        if not isinstance(data, dict):
            raise TypeError("analysis payload must be a JSON object")
        objects = data.get("objects") or []
        if not isinstance(objects, list):
            raise TypeError("objects must be a list")
        return cls(
            id=_require_str(data, "id"),
            timestamp=parse_timestamp(data["timestamp"]),
            summary=_require_str(data, "summary"),
            objects=tuple(DetectedObject.from_dict(item) for item in objects),
            text=_optional_str(data, "text"),
            confidence=float(data["confidence"]),
            screenshot_url=_optional_str(data, "screenshot_url"),
            app_name=_optional_str(data, "app_name"),
        )

    def to_dict(self) -> Dict[str, Any]:
        encoded: Dict[str, Any] = {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "summary": self.summary,
            "objects": [item.to_dict() for item in self.objects],
            "confidence": self.confidence,
        }
        if self.text is not None:
            encoded["text"] = self.text
        if self.screenshot_url is not None:
            encoded["screenshot_url"] = self.screenshot_url
        if self.app_name is not None:
            encoded["app_name"] = self.app_name
        return encoded


@dataclass(frozen=True)
class ChatResponse:
    """One completed chat turn as returned by the backend."""

    message: str
    conversation_id: str
    timestamp: Optional[datetime] = None
    analysis_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any],
                  default_conversation_id: Optional[str] = None) -> "ChatResponse":
        """
        Decode a chat reply.

        The reply text is read from ``answer`` and falls back to ``message``.
        ``default_conversation_id`` fills in a missing ``conversation_id``.
        """
        if not isinstance(data, dict):
            raise TypeError("chat payload must be a JSON object")
        message = data.get("answer")
        if message is None:
            message = data.get("message")
        if not isinstance(message, str):
            raise KeyError("answer")

        conversation_id = _optional_str(data, "conversation_id") or default_conversation_id
        if conversation_id is None:
            raise KeyError("conversation_id")

        timestamp = data.get("timestamp")
        return cls(
            message=message,
            conversation_id=conversation_id,
            timestamp=parse_timestamp(timestamp) if timestamp is not None else None,
            analysis_id=_optional_str(data, "analysis_id"),
        )

    def to_dict(self) -> Dict[str, Any]:
        encoded: Dict[str, Any] = {
            "answer": self.message,
            "conversation_id": self.conversation_id,
        }
        if self.timestamp is not None:
            encoded["timestamp"] = self.timestamp.isoformat()
        if self.analysis_id is not None:
            encoded["analysis_id"] = self.analysis_id
        return encoded
