"""Tests for the text-generation client (no network access)."""
import asyncio
import json
from types import SimpleNamespace

import pytest
from google.genai import errors as genai_errors
from tenacity import wait_none

from app.config import settings
from app.services import llm_client
from app.services.difficulty import DifficultyTier

QUESTIONS = {
    "mcqs": [
        {"id": 1, "question": "What is 2 + 2?", "options": ["3", "4", "5", "6"], "correct": 1,
         "explanation": "Basic addition."},
        {"id": 2, "question": "What is 3 * 3?", "options": ["6", "9", "12", "8"], "correct": 1,
         "explanation": "Multiplication."},
    ]
}


def fake_model(reply):
    """Replacement for call_model returning a fixed reply."""
    async def _call(prompt, max_tokens=None):
        return reply
    return _call


def failing_model(exc):
    async def _call(prompt, max_tokens=None):
        raise exc
    return _call


class FakeModels:
    """Stands in for client.aio.models, failing a set number of times first."""

    def __init__(self, failures, error_text="429 RESOURCE_EXHAUSTED"):
        self.failures = failures
        self.error_text = error_text
        self.calls = 0

    async def generate_content(self, model, contents, config):
        self.calls += 1
        if self.calls <= self.failures:
            raise RuntimeError(self.error_text)
        return SimpleNamespace(text=" ok ")


@pytest.fixture
def fake_client(monkeypatch):
    """Install a fake Gemini client and remove retry waits."""
    def _install(models):
        client = SimpleNamespace(aio=SimpleNamespace(models=models))
        monkeypatch.setattr(llm_client, "_get_client", lambda: client)
        monkeypatch.setattr(llm_client._generate.retry, "wait", wait_none())
        return models
    return _install


class TestParsing:
    def test_plain_json(self):
        assert llm_client.parse_json_reply('{"a": 1}') == {"a": 1}

    def test_fenced_json(self):
        raw = '```json\n{"a": [1, 2]}\n```'
        assert llm_client.parse_json_reply(raw) == {"a": [1, 2]}

    def test_uppercase_fence(self):
        assert llm_client.parse_json_reply('```JSON {"a": 1} ```') == {"a": 1}

    def test_invalid_json_raises(self):
        with pytest.raises(ValueError):
            llm_client.parse_json_reply("Sure! Here are your questions.")


class TestRateLimitDetection:
    def test_429_message(self):
        assert llm_client.is_rate_limited(RuntimeError("429 Too Many Requests"))

    def test_other_error(self):
        assert not llm_client.is_rate_limited(RuntimeError("500 Internal Server Error"))

    def test_429_elsewhere_in_message_is_not_rate_limit(self):
        assert not llm_client.is_rate_limited(RuntimeError("Request 84291 failed after 4290 tokens"))

    def test_api_error_judged_by_status_code(self):
        rate_limited = genai_errors.APIError(429, {"error": {"message": "Quota exceeded", "status": "RESOURCE_EXHAUSTED"}})
        invalid = genai_errors.APIError(400, {"error": {"message": "Prompt has 4290 tokens, limit 429", "status": "INVALID_ARGUMENT"}})

        assert llm_client.is_rate_limited(rate_limited)
        assert not llm_client.is_rate_limited(invalid)


class TestCallModel:
    def test_missing_api_key(self, monkeypatch):
        monkeypatch.setattr(settings, "GEMINI_API_KEY", "")
        llm_client._get_client.cache_clear()

        with pytest.raises(llm_client.LLMConfigurationError):
            asyncio.run(llm_client.call_model("hello"))

    def test_retries_after_rate_limit(self, fake_client):
        models = fake_client(FakeModels(failures=2))

        assert asyncio.run(llm_client.call_model("hello")) == "ok"
        assert models.calls == 3

    def test_gives_up_after_max_retries(self, fake_client):
        models = fake_client(FakeModels(failures=100))

        with pytest.raises(llm_client.LLMRateLimitError):
            asyncio.run(llm_client.call_model("hello"))
        assert models.calls == settings.LLM_MAX_RETRIES + 1

    def test_other_errors_not_retried(self, fake_client):
        models = fake_client(FakeModels(failures=1, error_text="400 INVALID_ARGUMENT"))

        with pytest.raises(llm_client.LLMError, match="API error"):
            asyncio.run(llm_client.call_model("hello"))
        assert models.calls == 1


class TestGenerators:
    def test_generate_questions(self, monkeypatch):
        monkeypatch.setattr(llm_client, "call_model", fake_model("```json\n" + json.dumps(QUESTIONS) + "\n```"))

        result = asyncio.run(llm_client.generate_questions("Arithmetic", DifficultyTier.BEGINNER, 2))

        assert result["fallback"] is False
        assert result["difficulty"] == "beginner"
        assert [q["correct"] for q in result["mcqs"]] == [1, 1]

    def test_generate_questions_fallback_on_error(self, monkeypatch):
        monkeypatch.setattr(llm_client, "call_model", failing_model(llm_client.LLMRateLimitError("429")))

        result = asyncio.run(llm_client.generate_questions("Arithmetic", "advanced"))

        assert result["fallback"] is True
        assert result["difficulty"] == "advanced"
        assert len(result["mcqs"]) == 1
        assert "Arithmetic" in result["mcqs"][0]["question"]

    def test_generate_questions_rejects_bad_answer_index(self, monkeypatch):
        bad = {"mcqs": [{"id": 1, "question": "Q", "options": ["a", "b"], "correct": 3}]}
        monkeypatch.setattr(llm_client, "call_model", fake_model(json.dumps(bad)))

        assert asyncio.run(llm_client.generate_questions("Q", "beginner"))["fallback"] is True

    def test_generate_questions_rejects_non_json(self, monkeypatch):
        monkeypatch.setattr(llm_client, "call_model", fake_model("I cannot do that."))
        assert asyncio.run(llm_client.generate_questions("Q", "beginner"))["fallback"] is True

    def test_topic_explanation(self, monkeypatch):
        reply = {"explanation": "Recursion is...", "example": "Mirrors", "microTask": "Write factorial"}
        monkeypatch.setattr(llm_client, "call_model", fake_model(json.dumps(reply)))

        result = asyncio.run(llm_client.get_topic_explanation("Recursion", "intermediate"))

        assert result["explanation"] == "Recursion is..."
        assert result["microTask"] == "Write factorial"
        assert result["fallback"] is False

    def test_topic_explanation_fallback(self, monkeypatch):
        monkeypatch.setattr(llm_client, "call_model", failing_model(llm_client.LLMError("API error: boom")))

        result = asyncio.run(llm_client.get_topic_explanation("Recursion", "beginner"))

        assert result["fallback"] is True
        assert "boom" in result["explanation"]

    def test_revision_notes_fallback(self, monkeypatch):
        monkeypatch.setattr(llm_client, "call_model", fake_model('{"summary": "no notes"}'))

        result = asyncio.run(llm_client.get_revision_notes("Recursion", "beginner"))

        assert result["fallback"] is True
        assert result["notes"][0]["heading"] == "Error"

    def test_answer_doubt_fallback(self, monkeypatch):
        monkeypatch.setattr(llm_client, "call_model", failing_model(llm_client.LLMError("down")))

        result = asyncio.run(llm_client.answer_doubt("Why?"))

        assert result["fallback"] is True
        assert "rephrasing" in result["answer"]

    def test_weekly_plan(self, monkeypatch):
        reply = {
            "subjects": ["Physics"],
            "plan": [{"day": "Monday", "tasks": [{"time": "9:00 AM", "task": "Kinematics", "duration": "60 min",
                                                  "type": "study"}]}],
            "tips": ["Sleep well"]
        }
        monkeypatch.setattr(llm_client, "call_model", fake_model(json.dumps(reply)))

        result = asyncio.run(llm_client.generate_weekly_plan(["Physics"], "beginner"))

        assert result["fallback"] is False
        assert result["plan"][0]["tasks"][0]["task"] == "Kinematics"


class TestConversationContext:
    def test_single_message_has_no_context(self):
        assert llm_client.build_conversation_context([{"text": "hi", "is_user": True}]) == ""

    def test_keeps_last_six_messages(self):
        history = [{"text": f"m{i}", "is_user": i % 2 == 0} for i in range(10)]

        context = llm_client.build_conversation_context(history)

        assert "m3" not in context
        assert "Student: m4" in context
        assert "Tutor: m9" in context
