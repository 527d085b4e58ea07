"""Tests for the HTTP surface."""

import json

import pytest
from fastapi.testclient import TestClient

from classroom_tutor.api import SSE_HEADERS, TokenAuthenticator, create_app, parse_bearer
from classroom_tutor.config import PipelineConfig
from classroom_tutor.llm import DummyProvider, DummyProviderConfig, LLMConfig, ProviderType
from classroom_tutor.pipeline import AuthError, MessageOrchestrator

STUDENT = {"Authorization": "Bearer demo-student-token"}
TEACHER = {"Authorization": "Bearer demo-teacher-token"}

SUMMARY_JSON = json.dumps(
    {
        "summary": "Discussed how leaves capture light.",
        "keyTopics": ["photosynthesis"],
        "learningInsights": {"understood": [], "struggling": [], "progress": "steady"},
        "nextSteps": "Respiration",
    }
)


@pytest.fixture
def client(tmp_path, store, feed, classroom):
    config = PipelineConfig.from_dict(
        {
            "llm": {"provider": "dummy", "model": "dummy-model"},
            "memory": {"store_dir": str(tmp_path / "memory")},
        }
    )
    provider = DummyProvider(
        LLMConfig(provider=ProviderType.DUMMY),
        DummyProviderConfig(stream_chunks=["Plants ", "use light."], response_text=SUMMARY_JSON),
    )
    orchestrator = MessageOrchestrator.from_config(config, store, feed, provider=provider)
    app = create_app(orchestrator, store, TokenAuthenticator(classroom.tokens, store))
    with TestClient(app) as test_client:
        yield test_client


def _sse_payloads(text: str) -> list:
    payloads = []
    for block in text.split("\n\n"):
        if block.startswith("data: "):
            data = block[len("data: "):]
            payloads.append(data if data == "[DONE]" else json.loads(data))
    return payloads


class TestParseBearer:
    """Tests for header parsing."""

    def test_valid(self):
        """The token follows the Bearer scheme."""
        assert parse_bearer("Bearer abc") == "abc"
        assert parse_bearer("bearer  abc ") == "abc"

    @pytest.mark.parametrize("header", [None, "", "Basic abc", "Bearer "])
    def test_invalid(self, header):
        """Missing or non-bearer headers are rejected."""
        with pytest.raises(AuthError):
            parse_bearer(header)


class TestHealth:
    """Tests for the health route."""

    def test_health(self, client):
        """Health reports the configured collaborators."""
        body = client.get("/health").json()
        assert body["ok"] is True
        assert body["model"] == "dummy-model"
        assert body["moderation"] is False
        assert body["memory"] is True
        assert body["assessment"] is False


class TestChat:
    """Tests for the chat routes."""

    def test_requires_auth(self, client, classroom):
        """Unknown or missing tokens get 401."""
        body = {"content": "Hi", "tutor_id": classroom.tutor.id}
        assert client.post(f"/chat/{classroom.room.id}", json=body).status_code == 401
        response = client.post(
            f"/chat/{classroom.room.id}", json=body, headers={"Authorization": "Bearer nope"}
        )
        assert response.status_code == 401
        assert response.json() == {"error": "Authentication required"}

    def test_stream(self, client, classroom):
        """A normal turn streams SSE frames with the message ids in headers."""
        response = client.post(
            f"/chat/{classroom.room.id}",
            json={"content": "What is photosynthesis?", "chatbot_id": classroom.tutor.id},
            headers=STUDENT,
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert response.headers["cache-control"] == SSE_HEADERS["Cache-Control"]
        assert response.headers["x-message-id"]
        assert response.headers["x-assistant-message-id"]
        assert _sse_payloads(response.text) == [{"content": "Plants "}, {"content": "use light."}, "[DONE]"]

        transcript = client.get(
            f"/chat/{classroom.room.id}", params={"tutor_id": classroom.tutor.id}, headers=STUDENT
        ).json()
        assert [(row["role"], row["content"]) for row in transcript] == [
            ("user", "What is photosynthesis?"),
            ("assistant", "Plants use light."),
        ]
        assert transcript[1]["message_id"] == response.headers["x-assistant-message-id"]

    def test_empty_content_rejected(self, client, classroom):
        """Blank content is a 400."""
        response = client.post(
            f"/chat/{classroom.room.id}", json={"content": " ", "tutor_id": classroom.tutor.id}, headers=STUDENT
        )
        assert response.status_code == 400

    def test_unknown_room(self, client, classroom):
        """Unknown rooms are 404."""
        response = client.post("/chat/missing", json={"content": "Hi", "tutor_id": classroom.tutor.id}, headers=STUDENT)
        assert response.status_code == 404

    def test_blocked_message(self, client, classroom):
        """Blocked turns return 400 with the redirect payload."""
        response = client.post(
            f"/chat/{classroom.room.id}",
            json={"content": "text me on 555-123-4567", "tutor_id": classroom.tutor.id},
            headers=STUDENT,
        )
        assert response.status_code == 400
        body = response.json()
        assert body["type"] == "content_blocked"
        assert body["systemMessageId"]

    def test_safety_intervention(self, client, classroom):
        """Concerns are acknowledged with a JSON outcome, not a stream."""
        response = client.post(
            f"/chat/{classroom.room.id}",
            json={"content": "Sometimes I want to die", "tutor_id": classroom.tutor.id},
            headers=STUDENT,
        )
        assert response.status_code == 200
        body = response.json()
        assert body["type"] == "safety_intervention_triggered"
        assert body["country_code"] == "GB"

    def test_teacher_reads_own_rows(self, client, classroom):
        """Teachers can read the room transcript for a tutor."""
        response = client.get(
            f"/chat/{classroom.room.id}", params={"tutor_id": classroom.tutor.id}, headers=TEACHER
        )
        assert response.status_code == 200
        assert response.json() == []


class TestMemory:
    """Tests for the memory route."""

    def test_snapshot(self, client, classroom):
        """Posted turns are summarised and stored."""
        response = client.post(
            "/memory",
            json={
                "chatbot_id": classroom.tutor.id,
                "room_id": classroom.room.id,
                "tutor_name": classroom.tutor.name,
                "messages": [
                    {"role": "user", "content": "How do leaves capture light?"},
                    {"role": "assistant", "content": "With chlorophyll."},
                ],
            },
            headers=STUDENT,
        )
        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "summary": "Discussed how leaves capture light.",
            "keyTopics": ["photosynthesis"],
        }

    def test_nothing_to_save(self, client, classroom):
        """An empty session is not stored."""
        response = client.post("/memory", json={"tutor_id": classroom.tutor.id}, headers=STUDENT)
        assert response.json()["success"] is False
