"""
Tests for notification classification and routing.
"""

from datetime import datetime, timezone

import pytest

from feelink.host import SessionHost
from feelink.models import IdentifierKind
from feelink.router import (
    REPLY_ACTION_IDENTIFIER,
    NotificationRouter,
    OpenAnalysis,
    OpenConversation,
    ReplyWithText,
    ShowLegacyAnalysis,
    Unrecognized,
    alert_body,
    classify,
)
from feelink.session import SessionState


class TestClassify:
    """Test cases for the classify function."""

    def test_reply_with_text(self):
        """Reply action, typed text and a long conversation id."""
        route = classify({"conversation_id": "conv-123456"}, REPLY_ACTION_IDENTIFIER, "고마워")
        assert route == ReplyWithText("conv-123456", "고마워")

    def test_reply_requires_id_longer_than_threshold(self):
        """A five character id is too short for a reply and opens the conversation."""
        route = classify({"conversation_id": "abcde"}, REPLY_ACTION_IDENTIFIER, "고마워")
        assert route == OpenConversation("abcde")

        route = classify({"conversation_id": "abcdef"}, REPLY_ACTION_IDENTIFIER, "고마워")
        assert route == ReplyWithText("abcdef", "고마워")

    def test_reply_without_text_opens_conversation(self):
        """Missing typed text does not match the reply rule."""
        route = classify({"conversation_id": "conv-123456"}, REPLY_ACTION_IDENTIFIER, None)
        assert route == OpenConversation("conv-123456")

    def test_other_action_opens_conversation(self):
        route = classify({"conversation_id": "conv-123456"}, "com.apple.UNNotificationDefaultActionIdentifier", "텍스트")
        assert isinstance(route, OpenConversation)

    def test_open_conversation_with_alert_body(self):
        """The alert body is carried along for announcement."""
        payload = {"conversation_id": "conv-1", "aps": {"alert": {"title": "Feelink", "body": "새 분석"}}}
        assert classify(payload) == OpenConversation("conv-1", "새 분석")

    def test_conversation_wins_over_analysis_fields(self):
        """First match wins."""
        payload = {"conversation_id": "conv-1", "analysisId": "a-1", "imageUrl": "u", "question": "q"}
        assert isinstance(classify(payload), OpenConversation)

    def test_legacy_analysis(self):
        """imageUrl, question and analysisId build a synthetic result."""
        payload = {"analysisId": "a-1", "imageUrl": "https://cdn.example.com/a.jpg", "question": "이게 뭐야?"}
        route = classify(payload)

        assert route == ShowLegacyAnalysis("a-1", "https://cdn.example.com/a.jpg", "이게 뭐야?")

        now = datetime(2024, 5, 1, tzinfo=timezone.utc)
        result = route.to_result(now)
        assert result.id == "a-1"
        assert result.timestamp == now
        assert result.summary == "질문: 이게 뭐야?"
        assert result.objects == ()
        assert result.confidence == 1.0
        assert result.screenshot_url == "https://cdn.example.com/a.jpg"
        assert result.app_name == "푸시 분석 요청"

    def test_analysis_id_only(self):
        assert classify({"analysisId": "a-1"}) == OpenAnalysis("a-1")

    def test_partial_legacy_fields_open_analysis(self):
        """Without a question the stored analysis is fetched."""
        assert classify({"analysisId": "a-1", "imageUrl": "https://x"}) == OpenAnalysis("a-1")

    def test_non_string_values_are_absent(self):
        """Numbers in id fields are treated as missing."""
        assert isinstance(classify({"conversation_id": 123456}), Unrecognized)
        assert classify({"conversation_id": 123456, "analysisId": "a-2"}) == OpenAnalysis("a-2")
        assert isinstance(classify({"analysisId": ["a-1"]}), Unrecognized)

    def test_unrecognized(self):
        assert isinstance(classify({}), Unrecognized)
        assert isinstance(classify({"aps": {"alert": "hello"}}), Unrecognized)


class TestAlertBody:
    """Test cases for alert text extraction."""

    @pytest.mark.parametrize("payload, expected", [
        ({"aps": {"alert": {"body": "본문"}}}, "본문"),
        ({"aps": {"alert": "문자열 알림"}}, "문자열 알림"),
        ({"body": "최상위 본문"}, "최상위 본문"),
        ({"aps": {"alert": {"title": "제목"}}}, None),
        ({}, None),
    ])
    def test_alert_body(self, payload, expected):
        assert alert_body(payload) == expected


class TestNotificationRouter:
    """Routing into a real session host."""

    @pytest.fixture
    def host(self, gateway, announcer, provider, events):
        return SessionHost(gateway, announcer, provider, on_event=events.append, reply_timeout=10.0)

    @pytest.mark.asyncio
    async def test_reply_continues_chat_then_opens_conversation(self, host, gateway):
        router = NotificationRouter(host)
        route = await router.route({"conversation_id": "conv-123456"}, REPLY_ACTION_IDENTIFIER, "고마워")

        assert isinstance(route, ReplyWithText)
        assert gateway.calls == [("continue_chat", "고마워", "conv-123456", 10.0)]
        assert host.current.target.kind is IdentifierKind.CONVERSATION
        assert host.current.last_response.message == "테스트 응답입니다"

    @pytest.mark.asyncio
    async def test_open_conversation_announces_alert(self, host, gateway, announcer):
        router = NotificationRouter(host)
        await router.route({"conversation_id": "conv-1", "aps": {"alert": {"body": "분석 완료"}}})

        assert host.current.target.id == "conv-1"
        assert host.current.state is SessionState.IDLE
        assert "분석되었습니다. 분석 완료" in announcer.texts
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_legacy_payload_shows_result_without_backend(self, host, gateway):
        router = NotificationRouter(host)
        await router.route({"analysisId": "a-1", "imageUrl": "https://x/a.jpg", "question": "뭐야?"})

        assert host.current.state is SessionState.DISPLAYING
        assert host.current.result.summary == "질문: 뭐야?"
        assert gateway.calls == []

    @pytest.mark.asyncio
    async def test_open_analysis_fetches(self, host, gateway):
        router = NotificationRouter(host)
        await router.route({"analysisId": "analysis-1"})

        assert gateway.calls == [("fetch_analysis", "analysis-1")]
        assert host.current.state is SessionState.DISPLAYING

    @pytest.mark.asyncio
    async def test_unrecognized_is_discarded(self, host, gateway, events):
        router = NotificationRouter(host)
        route = await router.route({"unrelated": True})

        assert isinstance(route, Unrecognized)
        assert host.current is None
        assert gateway.calls == []
        assert events == []
