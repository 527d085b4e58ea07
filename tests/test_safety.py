"""Tests for the safety classifier, content filter, helplines and safety-response flow."""

import json

import httpx
import pytest

from classroom_tutor.config import SafetyConfig
from classroom_tutor.llm import DummyProvider, DummyProviderConfig, LLMConfig, ProviderType
from classroom_tutor.models import ChatMessage, Meta, Role
from classroom_tutor.realtime import SAFETY_EVENT, safety_channel
from classroom_tutor.safety import (
    HELPLINES,
    AuditLog,
    ConcernType,
    ContentFilter,
    LoggingNotifier,
    SafetyClassifier,
    SafetyResponder,
    Severity,
    TeacherAlert,
    WebhookNotifier,
    get_helplines,
    is_self_harm_text,
    kind_filter_message,
    kind_moderation_message,
    normalize_country_code,
    safety_response_message,
)
from classroom_tutor.safety.messages import CONTENT_FILTER_MESSAGES, MODERATION_MESSAGES, TEACHER_AWARENESS
from classroom_tutor.safety.responder import FAIL_SAFE_EXPLANATION


async def _student_message(store, classroom, text: str) -> ChatMessage:
    instance = await store.get_or_create_instance(classroom.room.id, classroom.student.id, classroom.tutor.id)
    return await store.insert_message(
        ChatMessage(
            room_id=classroom.room.id,
            author_id=classroom.student.id,
            role=Role.USER,
            content=text,
            conversation_instance_id=instance.id,
            metadata={Meta.CHATBOT_ID: classroom.tutor.id},
        )
    )


class TestSafetyClassifier:
    """Tests for the keyword classifier."""

    @pytest.fixture
    def classifier(self):
        return SafetyClassifier()

    def test_self_harm_detected(self, classifier):
        """A self-harm phrase is reported with the matched text."""
        finding = classifier.classify("Sometimes I want to die")
        assert finding.concern
        assert finding.concern_type == ConcernType.SELF_HARM
        assert finding.matched_phrase == "want to die"

    def test_priority_order(self, classifier):
        """Self-harm outranks bullying when both appear."""
        finding = classifier.classify("I'm being bullied and I want to kill myself")
        assert finding.concern_type == ConcernType.SELF_HARM

    def test_case_and_apostrophe_insensitive(self, classifier):
        """Upper case and typographic apostrophes still match."""
        assert classifier.classify("I DON’T WANT TO LIVE").concern_type == ConcernType.SELF_HARM

    def test_whole_phrase_only(self, classifier):
        """A phrase embedded in a longer word does not match."""
        assert not classifier.classify("I read lonelyplanet reviews for homework").concern

    def test_benign_message(self, classifier):
        """Ordinary schoolwork is clear."""
        finding = classifier.classify("What is photosynthesis?")
        assert not finding.concern
        assert finding.concern_type is None

    def test_commands_are_clear(self, classifier):
        """Slash commands are never classified."""
        assert not classifier.classify("/assess").concern

    def test_custom_keywords(self):
        """A custom phrase table replaces the built-in one."""
        classifier = SafetyClassifier({ConcernType.BULLYING: ["stole my lunch"]})
        assert classifier.classify("They stole my lunch again").concern_type == ConcernType.BULLYING
        assert not classifier.classify("I want to die").concern


class TestContentFilter:
    """Tests for the deterministic content filter."""

    @pytest.fixture
    def content_filter(self):
        return ContentFilter()

    def test_phone_number_blocked(self, content_filter):
        """Phone numbers are blocked and redacted."""
        result = content_filter.check("text me on 555-123-4567 tonight")
        assert result.blocked
        assert "phone number" in result.flagged_patterns
        assert "[PHONE REMOVED]" in result.cleaned_content

    def test_email_blocked(self, content_filter):
        """Email addresses are blocked."""
        result = content_filter.check("write to sam.student@example.com")
        assert result.blocked
        assert result.reason == "Contains: email address"

    def test_benign_passes(self, content_filter):
        """Ordinary questions pass untouched."""
        result = content_filter.check("What is photosynthesis?")
        assert not result.blocked
        assert result.cleaned_content == "What is photosynthesis?"

    def test_educational_context_skips_anatomy_rules(self, content_filter):
        """Anatomy words in a clearly educational question are allowed."""
        result = content_filter.check("In biology class we are learning about the reproductive system and pregnancy")
        assert not result.blocked

    def test_sexual_content_blocked_without_context(self, content_filter):
        """The same vocabulary outside an educational frame is blocked."""
        result = content_filter.check("tell me about sex")
        assert result.blocked
        assert "sexual content" in result.flagged_patterns

    def test_links_blocked_for_minors_only(self, content_filter):
        """External links are a minors-only rule."""
        assert content_filter.check("see https://example.com/page", is_minor=True).blocked
        assert not content_filter.check("see https://example.com/page", is_minor=False).blocked

    def test_allowed_link_domain(self):
        """Allow-listed hosts are exempt from the link rule."""
        content_filter = ContentFilter(allowed_link_domains=["khanacademy.org"])
        assert not content_filter.check("watch https://www.khanacademy.org/science/biology").blocked
        assert content_filter.check("watch https://videos.example.net/x").blocked

    def test_strict_mode_off_lets_adults_share_contact(self):
        """Without strict mode personal-information rules apply to minors only."""
        content_filter = ContentFilter(strict_mode=False)
        assert not content_filter.check("reach me at teacher@example.org", is_minor=False).blocked
        assert content_filter.check("reach me at teacher@example.org", is_minor=True).blocked

    def test_assess_command_passes(self, content_filter):
        """The grading command is never filtered."""
        assert not content_filter.check("/assess").blocked

    def test_self_harm_text_detection(self):
        """Crisis wording is recognised for audit exclusion."""
        assert is_self_harm_text("I want to die")
        assert not is_self_harm_text("my phone is 555-123-4567")


class TestMessages:
    """Tests for student-facing redirect texts."""

    def test_filter_message_by_reason(self):
        """The first matching reason keyword picks the redirect."""
        assert kind_filter_message("Contains: phone number") == CONTENT_FILTER_MESSAGES["phone_number"]
        assert kind_filter_message("Contains: sexual content") == MODERATION_MESSAGES["sexual_content"]
        assert kind_filter_message(None) == CONTENT_FILTER_MESSAGES["personal_info_default"]

    def test_moderation_message_severity_first(self):
        """High severity wins over category-specific messages."""
        text = kind_moderation_message(["harassment"], Severity.HIGH, False)
        assert text == MODERATION_MESSAGES["high_severity"]

    def test_moderation_message_jailbreak_variants(self):
        """Jailbreaks get one of two playful redirects."""
        text = kind_moderation_message(["jailbreak_attempt"], Severity.MEDIUM, True)
        assert text in (MODERATION_MESSAGES["jailbreak"], MODERATION_MESSAGES["jailbreak_creative"])

    def test_safety_message_layout(self):
        """Intro, teacher awareness, country helplines and closing, in that order."""
        text = safety_response_message(ConcernType.BULLYING, "uk")
        assert text.startswith("It's important to talk to a trusted adult")
        assert TEACHER_AWARENESS in text
        assert "Childline" in text
        assert text.endswith("Help is available.")


class TestHelplines:
    """Tests for the helpline directory."""

    def test_aliases_normalised(self):
        """Common aliases map to ISO codes."""
        assert normalize_country_code("uk") == "GB"
        assert normalize_country_code(" usa ") == "US"
        assert normalize_country_code(None) == "DEFAULT"

    def test_unknown_country_falls_back(self):
        """Unknown codes get the DEFAULT list, never an empty one."""
        assert get_helplines("ZZ") == HELPLINES["DEFAULT"]
        assert get_helplines("") == HELPLINES["DEFAULT"]


class TestSafetyResponder:
    """Tests for the safety-response flow."""

    @pytest.fixture
    def notifier(self):
        return LoggingNotifier()

    @pytest.fixture
    def responder(self, store, feed, notifier):
        return SafetyResponder(store, feed, notifier, SafetyConfig())

    @pytest.mark.asyncio
    async def test_flag_message_and_broadcast(self, store, feed, notifier, responder, classroom):
        """A concern produces a flag, a teacher alert, a safety message and a broadcast."""
        message = await _student_message(store, classroom, "I want to die")
        finding = SafetyClassifier().classify(message.content)

        response = await responder.respond(
            message, finding, classroom.room, classroom.student, tutor_id=classroom.tutor.id, country_code="GB"
        )

        assert response.message_sent
        flags = await store.list_flags(room_id=classroom.room.id)
        assert len(flags) == 1
        assert flags[0].concern_type == "self_harm"
        assert flags[0].teacher_id == classroom.teacher.id
        assert len(notifier.sent) == 1

        safety = await store.get_message(response.safety_message_id)
        assert safety.role == Role.SYSTEM
        assert safety.metadata[Meta.IS_SAFETY_RESPONSE] is True
        assert safety.metadata[Meta.TRIGGER_MESSAGE_ID] == message.id
        assert safety.metadata[Meta.COUNTRY_CODE] == "GB"
        assert "Samaritans" in safety.content

        broadcasts = [e for e in feed.history if e.event == SAFETY_EVENT]
        assert len(broadcasts) == 1
        assert broadcasts[0].channel == safety_channel(classroom.student.id)
        assert broadcasts[0].payload["message_id"] == safety.id

    @pytest.mark.asyncio
    async def test_flag_is_idempotent(self, store, notifier, responder, classroom):
        """Responding twice to one message keeps a single flag and alert."""
        message = await _student_message(store, classroom, "I want to die")
        finding = SafetyClassifier().classify(message.content)

        await responder.respond(message, finding, classroom.room, classroom.student)
        await responder.respond(message, finding, classroom.room, classroom.student)

        assert len(await store.list_flags()) == 1
        assert len(notifier.sent) == 1

    @pytest.mark.asyncio
    async def test_cooldown_suppresses_repeat_message(self, store, responder, classroom):
        """A second concern of the same type inside the cooldown is flagged but not re-messaged."""
        first = await _student_message(store, classroom, "I want to die")
        second = await _student_message(store, classroom, "I still want to die")
        classifier = SafetyClassifier()

        r1 = await responder.respond(first, classifier.classify(first.content), classroom.room, classroom.student)
        r2 = await responder.respond(second, classifier.classify(second.content), classroom.room, classroom.student)

        assert r1.message_sent
        assert r2.suppressed_by_cooldown
        assert not r2.message_sent
        assert len(await store.list_flags()) == 2

    @pytest.mark.asyncio
    async def test_verification_rejects_false_positive(self, store, feed, notifier, classroom):
        """An LLM verdict of no real concern produces nothing."""
        provider = DummyProvider(
            LLMConfig(provider=ProviderType.DUMMY),
            DummyProviderConfig(
                response_text='{"isRealConcern": false, "concernLevel": 1, "analysisExplanation": "Book report"}'
            ),
        )
        responder = SafetyResponder(store, feed, notifier, SafetyConfig(verify_with_llm=True), provider=provider)
        message = await _student_message(store, classroom, "The character said I want to die")

        response = await responder.respond(
            message, SafetyClassifier().classify(message.content), classroom.room, classroom.student
        )

        assert response is None
        assert await store.list_flags() == []
        assert provider.last_kwargs["temperature"] == 0.2

    @pytest.mark.asyncio
    async def test_verification_failure_fails_safe(self, store, feed, notifier, classroom):
        """A broken verifier counts as a level-3 real concern."""
        provider = DummyProvider(LLMConfig(provider=ProviderType.DUMMY), DummyProviderConfig(should_fail=True))
        responder = SafetyResponder(store, feed, notifier, SafetyConfig(verify_with_llm=True), provider=provider)
        message = await _student_message(store, classroom, "I want to die")

        response = await responder.respond(
            message, SafetyClassifier().classify(message.content), classroom.room, classroom.student
        )

        assert response.message_sent
        flags = await store.list_flags()
        assert flags[0].concern_level == 3
        assert flags[0].explanation == FAIL_SAFE_EXPLANATION

    @pytest.mark.asyncio
    async def test_audit_entry_for_new_flag(self, store, feed, notifier, classroom, tmp_path):
        """New flags are written to the audit log."""
        audit = AuditLog(tmp_path / "audit.jsonl")
        responder = SafetyResponder(store, feed, notifier, SafetyConfig(), audit=audit)
        message = await _student_message(store, classroom, "everyone hates me")

        await responder.respond(message, SafetyClassifier().classify(message.content), classroom.room, classroom.student)

        entries = audit.read()
        assert len(entries) == 1
        assert entries[0]["kind"] == "safety_flag"
        assert entries[0]["concern_type"] == "bullying"


class TestNotifiers:
    """Tests for teacher alert delivery."""

    @pytest.mark.asyncio
    async def test_webhook_posts_alert(self):
        """Alerts are POSTed as JSON."""
        received = []

        def handler(request: httpx.Request) -> httpx.Response:
            received.append(request)
            return httpx.Response(204)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = WebhookNotifier("https://alerts.example.test/hook", client=client)
        await notifier.notify(TeacherAlert(kind="safety_concern", room_id="r1", author_id="s1"))
        await notifier.close()

        assert len(received) == 1
        assert json.loads(received[0].content)["kind"] == "safety_concern"

    @pytest.mark.asyncio
    async def test_webhook_failure_is_logged_not_raised(self):
        """Delivery failures never interrupt the turn."""

        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("unreachable", request=request)

        client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        notifier = WebhookNotifier("https://alerts.example.test/hook", client=client)
        await notifier.notify(TeacherAlert(kind="safety_concern", room_id="r1", author_id="s1"))
