"""AI-generated learning content: explanations, revision notes, doubts, weekly plans."""
from typing import List, Optional
from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.constants import COOKIE_NAME, DOUBT_DEFAULT_TOPIC
from app.db.database import get_db
from app.logging_config import get_logger
from app.services import llm_client, persistence
from app.services.difficulty import DifficultyTier

router = APIRouter(prefix="/api/learn", tags=["learn"])
logger = get_logger(__name__)


class TopicRequest(BaseModel):
    topic: str = Field(..., min_length=1, max_length=200)
    difficulty: Optional[DifficultyTier] = None

    @field_validator('topic')
    @classmethod
    def validate_topic(cls, v):
        if not v.strip():
            raise ValueError('topic cannot be empty')
        return v.strip()

    @field_validator('difficulty', mode='before')
    @classmethod
    def parse_difficulty(cls, v):
        return None if v is None else DifficultyTier.parse(v)


class ChatMessage(BaseModel):
    text: str = Field(..., max_length=4000)
    is_user: bool = False


class DoubtRequest(BaseModel):
    question: str = Field(..., min_length=1, max_length=2000)
    topic: str = Field("", max_length=200)
    history: List[ChatMessage] = []


class WeeklyPlanRequest(BaseModel):
    subjects: List[str] = Field(..., min_length=1, max_length=10)
    difficulty: Optional[DifficultyTier] = None

    @field_validator('subjects')
    @classmethod
    def validate_subjects(cls, v):
        subjects = [s.strip() for s in v if s.strip()]
        if not subjects:
            raise ValueError('at least one subject is required')
        return subjects

    @field_validator('difficulty', mode='before')
    @classmethod
    def parse_difficulty(cls, v):
        return None if v is None else DifficultyTier.parse(v)


def record_activity(
    db: Session,
    user_id: Optional[str],
    topic: str,
    event_type: str,
    difficulty: DifficultyTier
) -> bool:
    """Log an activity event. Failures are logged, never raised."""
    if not user_id:
        return False
    try:
        if persistence.get_user(db, user_id) is None:
            logger.warning(f"{event_type} activity not saved: unknown user", extra={"user_id": user_id})
            return False
        persistence.save_history(db, user_id, topic=topic, event_type=event_type, difficulty=difficulty)
        db.commit()
        return True
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Recording {event_type} activity failed: {e}", extra={"user_id": user_id, "topic": topic})
        return False


def _tier_for(db: Session, user_id: Optional[str], requested: Optional[DifficultyTier]) -> DifficultyTier:
    return requested or persistence.get_current_difficulty(db, user_id)


@router.post("/explanation")
async def explain_topic(body: TopicRequest, request: Request, db: Session = Depends(get_db)):
    """Explain a topic and log a learning session."""
    user_id = request.cookies.get(COOKIE_NAME)
    tier = _tier_for(db, user_id, body.difficulty)
    content = await llm_client.get_topic_explanation(body.topic, tier)
    content["saved"] = record_activity(db, user_id, body.topic, "learning", tier)
    return content


@router.post("/revision")
async def revision_notes(body: TopicRequest, request: Request, db: Session = Depends(get_db)):
    """Revision notes for a topic; logs a revision event."""
    user_id = request.cookies.get(COOKIE_NAME)
    tier = _tier_for(db, user_id, body.difficulty)
    content = await llm_client.get_revision_notes(body.topic, tier)
    content["saved"] = record_activity(db, user_id, body.topic, "revision", tier)
    return content


@router.post("/doubt")
async def ask_doubt(body: DoubtRequest, request: Request, db: Session = Depends(get_db)):
    """Answer a student question; logs a doubt event at intermediate tier."""
    user_id = request.cookies.get(COOKIE_NAME)
    history = [message.model_dump() for message in body.history]
    content = await llm_client.answer_doubt(body.question, body.topic, history)
    content["saved"] = record_activity(
        db, user_id, body.topic.strip() or DOUBT_DEFAULT_TOPIC, "doubt", DifficultyTier.INTERMEDIATE
    )
    return content


@router.post("/weekly-plan")
async def weekly_plan(body: WeeklyPlanRequest, request: Request, db: Session = Depends(get_db)):
    """Seven-day study plan. Not recorded in the activity log."""
    tier = _tier_for(db, request.cookies.get(COOKIE_NAME), body.difficulty)
    return await llm_client.generate_weekly_plan(body.subjects, tier)
