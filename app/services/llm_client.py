"""Gemini text-generation client for explanations, notes, quizzes and doubts.

Usage:
    from app.services.llm_client import generate_questions

    quiz = await generate_questions("Binary search", DifficultyTier.BEGINNER)
    # {"topic": ..., "difficulty": "beginner", "mcqs": [...], "fallback": False}

A single ``call_model`` call retries only on HTTP 429 (rate limited), waiting
2s, 4s and 8s. Any other API error is raised at once. The public generators
never raise: on any failure they log and return placeholder content with
``fallback`` set, so callers always receive a well-formed payload.
"""
import json
import re
from functools import lru_cache
from typing import Dict, List, Optional

from google import genai
from google.genai import errors as genai_errors
from pydantic import BaseModel, Field, ValidationError
from tenacity import retry, retry_if_exception, stop_after_attempt, wait_exponential

from app.config import settings
from app.constants import (
    DEFAULT_QUESTION_COUNT,
    DOUBT_CONTEXT_MESSAGES,
    LLM_BACKOFF_MAX,
    LLM_BACKOFF_MIN,
    LLM_BACKOFF_MULTIPLIER,
    LLM_DEFAULT_MAX_TOKENS,
    LLM_PLAN_MAX_TOKENS,
    LLM_TEMPERATURE
)
from app.logging_config import get_logger
from app.services.difficulty import DifficultyTier

logger = get_logger(__name__)

_FENCE_RE = re.compile(r"```(?:json)?\s*", re.IGNORECASE)


class LLMError(Exception):
    """Text generation failed."""


class LLMConfigurationError(LLMError):
    """No API key configured."""


class LLMRateLimitError(LLMError):
    """Still rate limited after all retries."""


class MultipleChoiceQuestion(BaseModel):
    id: int
    question: str
    options: List[str] = Field(..., min_length=2)
    correct: int = Field(..., ge=0)
    explanation: str = ""


class QuestionSet(BaseModel):
    mcqs: List[MultipleChoiceQuestion] = Field(..., min_length=1)


class TopicExplanation(BaseModel):
    explanation: str
    example: str = ""
    microTask: str = ""


class RevisionSection(BaseModel):
    heading: str
    content: str


class RevisionNotes(BaseModel):
    notes: List[RevisionSection] = Field(..., min_length=1)
    summary: str = ""


class PlanTask(BaseModel):
    time: str = ""
    task: str
    duration: str = ""
    type: str = "study"


class PlanDay(BaseModel):
    day: str
    tasks: List[PlanTask]


class WeeklyPlan(BaseModel):
    subjects: List[str] = []
    plan: List[PlanDay] = Field(..., min_length=1)
    tips: List[str] = []


def is_rate_limited(exc: BaseException) -> bool:
    """True for HTTP 429 responses from the API.

    API errors are judged by their status code; the message is only checked
    for exceptions that carry no code.
    """
    if isinstance(exc, genai_errors.APIError):
        return exc.code == 429
    return str(exc).lstrip().startswith("429") or "Too Many Requests" in str(exc)


def parse_json_reply(raw: str) -> Dict:
    """Parse a JSON reply, stripping markdown code fences if present."""
    cleaned = _FENCE_RE.sub("", raw or "").replace("```", "").strip()
    return json.loads(cleaned)


@lru_cache(maxsize=1)
def _get_client() -> genai.Client:
    if not settings.GEMINI_API_KEY:
        raise LLMConfigurationError("GEMINI_API_KEY is not set")
    return genai.Client(api_key=settings.GEMINI_API_KEY)


@retry(
    stop=stop_after_attempt(settings.LLM_MAX_RETRIES + 1),
    wait=wait_exponential(multiplier=LLM_BACKOFF_MULTIPLIER, min=LLM_BACKOFF_MIN, max=LLM_BACKOFF_MAX),
    retry=retry_if_exception(is_rate_limited),
    before_sleep=lambda retry_state: logger.warning(
        "Rate limited (429), retrying in %.0fs (attempt %d/%d)",
        retry_state.next_action.sleep,
        retry_state.attempt_number,
        settings.LLM_MAX_RETRIES,
    ),
    reraise=True,
)
async def _generate(prompt: str, max_tokens: int) -> str:
    client = _get_client()
    response = await client.aio.models.generate_content(
        model=settings.LLM_MODEL,
        contents=prompt,
        config={
            "temperature": LLM_TEMPERATURE,
            "max_output_tokens": max_tokens,
        },
    )
    return (getattr(response, "text", None) or "").strip()


async def call_model(prompt: str, max_tokens: int = LLM_DEFAULT_MAX_TOKENS) -> str:
    """
    Run one text completion.

    Raises:
        LLMConfigurationError: No API key configured
        LLMRateLimitError: Still rate limited after all retries
        LLMError: Any other API failure
    """
    try:
        return await _generate(prompt, max_tokens)
    except LLMError:
        raise
    except Exception as e:
        if is_rate_limited(e):
            raise LLMRateLimitError(
                "Rate limit exceeded (429). Please wait a moment and try again."
            ) from e
        raise LLMError(f"API error: {str(e)[:200]}") from e


async def get_topic_explanation(topic: str, difficulty: DifficultyTier) -> Dict:
    """Student-friendly explanation with an example and a short study task."""
    tier = DifficultyTier.parse(difficulty).value
    prompt = f"""You are a friendly, encouraging college tutor. Explain "{topic}" at the {tier} level for a college student.

Return your response as JSON with this exact structure (no markdown fences):
{{
  "explanation": "A clear, multi-paragraph explanation. Use **bold** for key terms.",
  "example": "A relatable real-world analogy or example.",
  "microTask": "A specific, actionable 10-minute study task the student can do right now."
}}
Only return valid JSON."""

    try:
        parsed = TopicExplanation(**parse_json_reply(await call_model(prompt)))
        return {"topic": topic, "difficulty": tier, **parsed.model_dump(), "fallback": False}
    except (LLMError, ValueError, TypeError, ValidationError) as e:
        logger.error(f"get_topic_explanation failed: {e}", extra={"topic": topic})
        return {
            "topic": topic,
            "difficulty": tier,
            "explanation": f"**AI Error:** {e}\n\nPlease check the API key and try again.",
            "example": "Unable to generate. See error above.",
            "microTask": "Review your own notes on this topic for 10 minutes.",
            "fallback": True,
        }


async def get_revision_notes(topic: str, difficulty: DifficultyTier) -> Dict:
    """Concise revision notes split into headed sections."""
    tier = DifficultyTier.parse(difficulty).value
    prompt = f"""Create concise revision notes for "{topic}" at the {tier} level for a college student.

Return JSON (no markdown fences):
{{
  "notes": [
    {{ "heading": "Definition", "content": "..." }},
    {{ "heading": "Key Concepts", "content": "Use bullet points" }},
    {{ "heading": "Important Formulas / Rules", "content": "..." }},
    {{ "heading": "Common Mistakes", "content": "..." }},
    {{ "heading": "Quick Tips", "content": "..." }}
  ],
  "summary": "A one-line summary encouraging the student."
}}
Only return valid JSON."""

    try:
        parsed = RevisionNotes(**parse_json_reply(await call_model(prompt)))
        return {"topic": topic, "difficulty": tier, **parsed.model_dump(), "fallback": False}
    except (LLMError, ValueError, TypeError, ValidationError) as e:
        logger.error(f"get_revision_notes failed: {e}", extra={"topic": topic})
        return {
            "topic": topic,
            "difficulty": tier,
            "notes": [{"heading": "Error", "content": "Could not generate revision notes. Please try again."}],
            "summary": "Please try again in a moment.",
            "fallback": True,
        }


async def generate_questions(
    topic: str,
    difficulty: DifficultyTier,
    count: int = DEFAULT_QUESTION_COUNT
) -> Dict:
    """Multiple-choice questions; ``correct`` is the 0-based option index."""
    tier = DifficultyTier.parse(difficulty).value
    prompt = f"""Generate exactly {count} multiple choice questions about "{topic}" at the {tier} level for a college student.

Return JSON (no markdown fences):
{{
  "mcqs": [
    {{
      "id": 1,
      "question": "The question text",
      "options": ["Option A", "Option B", "Option C", "Option D"],
      "correct": 0,
      "explanation": "Why this answer is correct"
    }}
  ]
}}
"correct" is the 0-based index of the right option (0, 1, 2, or 3).
Make questions progressively harder. Only return valid JSON."""

    try:
        parsed = QuestionSet(**parse_json_reply(await call_model(prompt)))
        for mcq in parsed.mcqs:
            if mcq.correct >= len(mcq.options):
                raise ValueError(f"Question {mcq.id} has no option {mcq.correct}")
        return {"topic": topic, "difficulty": tier, **parsed.model_dump(), "fallback": False}
    except (LLMError, ValueError, TypeError, ValidationError) as e:
        logger.error(f"generate_questions failed: {e}", extra={"topic": topic, "difficulty": tier})
        return {
            "topic": topic,
            "difficulty": tier,
            "mcqs": [{
                "id": 1,
                "question": f'Could not generate questions for "{topic}". Please try again.',
                "options": ["Try again", "Refresh", "Change topic", "Check connection"],
                "correct": 0,
                "explanation": "There was an API error. Please try again.",
            }],
            "fallback": True,
        }


def build_conversation_context(history: Optional[List[Dict]]) -> str:
    """Render the last few chat messages as a transcript."""
    if not history or len(history) <= 1:
        return ""
    recent = history[-DOUBT_CONTEXT_MESSAGES:]
    lines = [
        f"{'Student' if message.get('is_user') else 'Tutor'}: {message.get('text', '')}"
        for message in recent
    ]
    return "\n\nPrevious conversation:\n" + "\n".join(lines) + "\n\n"


async def answer_doubt(question: str, topic: str = "", history: Optional[List[Dict]] = None) -> Dict:
    """Chat-style answer to a student's question."""
    context = f'The student is currently studying "{topic}". ' if topic else ""
    prompt = (
        f"You are a friendly, encouraging AI tutor for college students. {context}"
        f"{build_conversation_context(history)}"
        f'The student asks: "{question}"\n\n'
        "Respond helpfully and clearly:\n"
        "- Use **bold** for key terms\n"
        "- Keep the response concise but thorough\n"
        "- Use bullet points when listing things\n"
        "- Be encouraging and supportive\n"
        "- If the question is vague, ask a clarifying follow-up question"
    )

    try:
        return {"answer": await call_model(prompt), "fallback": False}
    except LLMError as e:
        logger.error(f"answer_doubt failed: {e}", extra={"topic": topic})
        return {
            "answer": "Oops! I had trouble processing that. Could you try rephrasing your question?",
            "fallback": True,
        }


async def generate_weekly_plan(subjects: List[str], difficulty: DifficultyTier) -> Dict:
    """Seven-day study plan across the given subjects."""
    tier = DifficultyTier.parse(difficulty).value
    subject_list = ", ".join(subjects)
    prompt = f"""Create a detailed 7-day study plan at the {tier} level for a college student studying: {subject_list}.

Return JSON (no markdown fences):
{{
  "subjects": {json.dumps(subjects)},
  "plan": [
    {{
      "day": "Monday",
      "tasks": [
        {{ "time": "9:00 AM", "task": "Study task description", "duration": "60 min", "type": "study" }}
      ]
    }}
  ],
  "tips": ["tip1", "tip2", "tip3", "tip4"]
}}

Rules:
- Include all 7 days (Monday through Sunday)
- type must be one of: "study", "practice", "revision", "review", "break"
- Sunday should be a lighter revision day
- Each day should have 4-6 tasks including breaks
Only return valid JSON."""

    try:
        parsed = WeeklyPlan(**parse_json_reply(await call_model(prompt, LLM_PLAN_MAX_TOKENS)))
        return {"difficulty": tier, **parsed.model_dump(), "fallback": False}
    except (LLMError, ValueError, TypeError, ValidationError) as e:
        logger.error(f"generate_weekly_plan failed: {e}")
        return {
            "difficulty": tier,
            "subjects": subjects,
            "plan": [],
            "tips": ["Could not generate a plan right now. Please try again in a moment."],
            "fallback": True,
        }
