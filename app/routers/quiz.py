"""Adaptive quiz endpoints: generate, submit, adjust, attempt history."""
from typing import List, Optional
from fastapi import APIRouter, Depends, Request, HTTPException
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.constants import COOKIE_NAME, DEFAULT_QUESTION_COUNT, MAX_QUESTION_COUNT
from app.db.database import get_db
from app.logging_config import get_logger
from app.services import persistence
from app.services.difficulty import DifficultyTier, adjust_difficulty, get_score_band
from app.services.llm_client import generate_questions
from app.services.quiz_scoring import score_quiz

router = APIRouter(prefix="/api/quiz", tags=["quiz"])
logger = get_logger(__name__)


def _parse_tier(v):
    if v is None:
        return None
    return DifficultyTier.parse(v)


class GenerateQuizRequest(BaseModel):
    """Request body for generating a quiz."""
    topic: str = Field(..., min_length=1, max_length=200)
    difficulty: Optional[DifficultyTier] = None
    count: int = Field(DEFAULT_QUESTION_COUNT, ge=1, le=MAX_QUESTION_COUNT)

    @field_validator('topic')
    @classmethod
    def validate_topic(cls, v):
        if not v.strip():
            raise ValueError('topic cannot be empty')
        return v.strip()

    @field_validator('difficulty', mode='before')
    @classmethod
    def parse_difficulty(cls, v):
        return _parse_tier(v)


class AnswerItem(BaseModel):
    """One answered question. ``selected`` is None when skipped."""
    question_id: int
    selected: Optional[int] = Field(None, ge=0)
    correct: int = Field(..., ge=0)


class QuizSubmission(BaseModel):
    """Request body for submitting a completed quiz."""
    topic: str = Field(..., min_length=1, max_length=200)
    difficulty: DifficultyTier
    answers: List[AnswerItem] = Field(..., min_length=1, max_length=MAX_QUESTION_COUNT)

    @field_validator('topic')
    @classmethod
    def validate_topic(cls, v):
        if not v.strip():
            raise ValueError('topic cannot be empty')
        return v.strip()

    @field_validator('difficulty', mode='before')
    @classmethod
    def parse_difficulty(cls, v):
        return _parse_tier(v)


class AdjustRequest(BaseModel):
    """Request body for a stateless difficulty adjustment."""
    score: int = Field(..., ge=0, le=100)
    difficulty: DifficultyTier

    @field_validator('difficulty', mode='before')
    @classmethod
    def parse_difficulty(cls, v):
        return _parse_tier(v)


def get_user_id_from_cookie(request: Request) -> Optional[str]:
    """Extract user ID from cookie; None when no session exists."""
    return request.cookies.get(COOKIE_NAME)


@router.post("/generate")
async def generate_quiz(
    quiz_request: GenerateQuizRequest,
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Generate multiple-choice questions for a topic.

    Uses the requested difficulty, or the user's current tier when omitted.
    """
    user_id = get_user_id_from_cookie(request)
    tier = quiz_request.difficulty or persistence.get_current_difficulty(db, user_id)
    return await generate_questions(quiz_request.topic, tier, quiz_request.count)


@router.post("/adjust")
async def preview_adjustment(body: AdjustRequest):
    """Next tier for a score, without saving anything."""
    return adjust_difficulty(body.score, body.difficulty).to_dict()


@router.post("/submit")
async def submit_quiz(
    submission: QuizSubmission,
    request: Request,
    db: Session = Depends(get_db)
):
    """
    Score a quiz, adjust the difficulty tier and persist the result.

    Persists, in one transaction:
    - a quiz activity event (at the tier the quiz was taken)
    - a quiz attempt record
    - quizzes_completed + 1 on the progress snapshot
    - the user's new tier

    A storage failure, or a cookie naming no stored user, is logged and
    reported as ``saved: false``; the score and adjustment are still returned.
    """
    user_id = get_user_id_from_cookie(request)

    result = score_quiz(submission.answers)
    adjustment = adjust_difficulty(result["score_percent"], submission.difficulty)

    saved = False
    if user_id:
        saved = _persist_quiz(db, user_id, submission, result, adjustment.new_tier)
    else:
        logger.warning("Quiz result not saved: no user session")

    return {
        **result,
        "band": get_score_band(result["score_percent"]),
        "adjustment": adjustment.to_dict(),
        "saved": saved
    }


def _persist_quiz(db: Session, user_id: str, submission: QuizSubmission, result: dict, new_tier: DifficultyTier) -> bool:
    try:
        if persistence.get_user(db, user_id) is None:
            logger.warning("Quiz result not saved: unknown user", extra={"user_id": user_id})
            return False
        event = persistence.save_history(
            db, user_id,
            topic=submission.topic,
            event_type="quiz",
            difficulty=submission.difficulty,
            score=result["score_percent"]
        )
        persistence.save_quiz_attempt(
            db, user_id,
            topic=submission.topic,
            difficulty=submission.difficulty,
            score=result["score_percent"],
            total_questions=result["total_questions"],
            correct_answers=result["correct_count"],
            attempt_id=event.id
        )
        progress = persistence.get_progress(db, user_id)
        persistence.save_progress(
            db, user_id,
            {"quizzes_completed": (progress["quizzes_completed"] or 0) + 1}
        )
        persistence.set_current_difficulty(db, user_id, new_tier)
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Saving quiz result failed: {e}", extra={"user_id": user_id}, exc_info=True)
        return False


@router.get("/attempts")
async def list_attempts(request: Request, db: Session = Depends(get_db)):
    """Quiz attempts, newest first."""
    user_id = get_user_id_from_cookie(request)
    attempts = persistence.get_quiz_attempts(db, user_id)
    return {"attempts": [persistence.attempt_to_dict(a) for a in attempts]}
