"""User session, dashboard, history, progress, bookmark and note endpoints."""
import uuid
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.config import settings
from app.constants import COOKIE_NAME, USER_ID_PREFIX, RECENT_ACTIVITY_LIMIT
from app.db.database import get_db, get_session_factory
from app.db.models import User
from app.logging_config import get_logger
from app.services import persistence
from app.services.dashboard import load_history_and_progress
from app.services.difficulty import DifficultyTier
from app.services.stats import derive_stats, resolve_timezone

router = APIRouter(prefix="/api", tags=["user"])
logger = get_logger(__name__)


class ProgressUpdate(BaseModel):
    """Progress overrides to merge. An explicit null clears an override."""
    topics_studied: Optional[int] = Field(None, ge=0)
    quizzes_completed: Optional[int] = Field(None, ge=0)
    streak: Optional[int] = Field(None, ge=0)
    total_study_time: Optional[int] = Field(None, ge=0)


class BookmarkCreate(BaseModel):
    topic: str = Field(..., min_length=1, max_length=200)
    difficulty: DifficultyTier = DifficultyTier.BEGINNER
    id: Optional[str] = Field(None, min_length=1, max_length=64)

    @field_validator('topic')
    @classmethod
    def strip_topic(cls, v):
        if not v.strip():
            raise ValueError('topic cannot be empty')
        return v.strip()

    @field_validator('difficulty', mode='before')
    @classmethod
    def parse_difficulty(cls, v):
        return DifficultyTier.parse(v)


class NoteCreate(BaseModel):
    topic: str = Field(..., min_length=1, max_length=200)
    content: str = Field(..., min_length=1, max_length=10000)

    @field_validator('topic', 'content')
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError('value cannot be empty')
        return v.strip()


def get_user_id_from_cookie(request: Request) -> Optional[str]:
    """User id from the session cookie, or None when absent."""
    return request.cookies.get(COOKIE_NAME)


def require_user_id(request: Request, db: Session) -> str:
    """User id from the session cookie; 401 when absent or unknown."""
    user_id = get_user_id_from_cookie(request)
    if not user_id:
        raise HTTPException(status_code=401, detail="No user session found")
    if persistence.get_user(db, user_id) is None:
        logger.warning("Rejected session for unknown user", extra={"user_id": user_id})
        raise HTTPException(status_code=401, detail="Unknown user session")
    return user_id


def get_or_create_user(request: Request, response: Response, db: Session) -> User:
    """
    Get or create anonymous user based on cookie.

    Args:
        request: FastAPI request
        response: FastAPI response (to set cookie)
        db: Database session

    Returns:
        User row
    """
    user_id = get_user_id_from_cookie(request)

    if user_id:
        user = db.query(User).filter(User.id == user_id).first()
        if user:
            user.last_active_at = datetime.utcnow()
            db.commit()
            return user

    user = User(id=f"{USER_ID_PREFIX}{uuid.uuid4()}", current_difficulty=DifficultyTier.BEGINNER.value)
    db.add(user)
    db.commit()
    logger.info("Created anonymous user", extra={"user_id": user.id})

    response.set_cookie(
        key=COOKIE_NAME,
        value=user.id,
        max_age=settings.COOKIE_MAX_AGE,
        httponly=settings.COOKIE_HTTPONLY,
        samesite=settings.COOKIE_SAMESITE,
        secure=settings.COOKIE_SECURE
    )
    return user


def _derive(history, progress):
    return derive_stats(history, progress, tz=resolve_timezone(settings.STATS_TIMEZONE))


@router.get("/bootstrap")
async def bootstrap(
    request: Request,
    response: Response,
    db: Session = Depends(get_db)
):
    """
    Bootstrap user session and return initial data.

    Returns:
    - user id and the tier for the next quiz
    - derived dashboard statistics
    """
    user = get_or_create_user(request, response, db)
    stats = _derive(persistence.get_history(db, user.id), persistence.get_progress(db, user.id))

    return {
        "user_id": user.id,
        "current_difficulty": user.current_difficulty,
        "stats": stats.to_dict()
    }


@router.get("/dashboard")
async def dashboard(
    request: Request,
    db: Session = Depends(get_db),
    session_factory=Depends(get_session_factory)
):
    """
    Dashboard statistics, recent activity and bookmarks.

    History and progress are fetched concurrently; either side failing
    degrades to its default. Without a session every figure is zero.
    """
    user_id = get_user_id_from_cookie(request)
    history, progress = await load_history_and_progress(session_factory, user_id)
    stats = _derive(history, progress)

    return {
        "stats": stats.to_dict(),
        "current_difficulty": persistence.get_current_difficulty(db, user_id).value,
        "recent_activity": [persistence.event_to_dict(e) for e in history[:RECENT_ACTIVITY_LIMIT]],
        "bookmarks": [persistence.bookmark_to_dict(b) for b in persistence.get_bookmarks(db, user_id)]
    }


@router.get("/history")
async def history(
    request: Request,
    event_type: Optional[str] = Query(None, alias="type"),
    db: Session = Depends(get_db)
):
    """Activity log, newest first, optionally limited to one event type."""
    if event_type is not None and event_type not in persistence.EVENT_TYPES:
        raise HTTPException(
            status_code=422,
            detail=f"type must be one of: {', '.join(persistence.EVENT_TYPES)}"
        )
    user_id = get_user_id_from_cookie(request)
    events = persistence.get_history(db, user_id, event_type=event_type)
    return {"history": [persistence.event_to_dict(e) for e in events]}


@router.get("/progress")
async def get_progress(request: Request, db: Session = Depends(get_db)):
    """Stored progress overrides (null = derived from history)."""
    return {"progress": persistence.get_progress(db, get_user_id_from_cookie(request))}


@router.put("/progress")
async def update_progress(
    update: ProgressUpdate,
    request: Request,
    db: Session = Depends(get_db)
):
    """Merge progress overrides. Only fields sent in the body change."""
    user_id = require_user_id(request, db)
    partial = update.model_dump(exclude_unset=True)

    try:
        stored = persistence.save_progress(db, user_id, partial, merge=True)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Progress update failed: {e}", extra={"user_id": user_id})
        raise HTTPException(status_code=500, detail="Error saving progress")

    return {"progress": stored}


@router.get("/bookmarks")
async def list_bookmarks(request: Request, db: Session = Depends(get_db)):
    user_id = get_user_id_from_cookie(request)
    return {"bookmarks": [persistence.bookmark_to_dict(b) for b in persistence.get_bookmarks(db, user_id)]}


@router.post("/bookmarks", status_code=201)
async def create_bookmark(
    bookmark: BookmarkCreate,
    request: Request,
    db: Session = Depends(get_db)
):
    user_id = require_user_id(request, db)
    try:
        saved = persistence.save_bookmark(db, user_id, bookmark.topic, bookmark.difficulty, bookmark.id)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Bookmark save failed: {e}", extra={"user_id": user_id})
        raise HTTPException(status_code=500, detail="Error saving bookmark")
    return persistence.bookmark_to_dict(saved)


@router.delete("/bookmarks/{bookmark_id}")
async def delete_bookmark(bookmark_id: str, request: Request, db: Session = Depends(get_db)):
    user_id = require_user_id(request, db)
    if not persistence.remove_bookmark(db, user_id, bookmark_id):
        raise HTTPException(status_code=404, detail="Bookmark not found")
    db.commit()
    return {"deleted": bookmark_id}


@router.get("/notes")
async def list_notes(request: Request, topic: Optional[str] = None, db: Session = Depends(get_db)):
    user_id = get_user_id_from_cookie(request)
    return {"notes": [persistence.note_to_dict(n) for n in persistence.get_notes(db, user_id, topic)]}


@router.post("/notes", status_code=201)
async def create_note(note: NoteCreate, request: Request, db: Session = Depends(get_db)):
    user_id = require_user_id(request, db)
    try:
        saved = persistence.save_note(db, user_id, note.topic, note.content)
        db.commit()
    except SQLAlchemyError as e:
        db.rollback()
        logger.error(f"Note save failed: {e}", extra={"user_id": user_id})
        raise HTTPException(status_code=500, detail="Error saving note")
    return persistence.note_to_dict(saved)


@router.delete("/notes/{note_id}")
async def remove_note(note_id: str, request: Request, db: Session = Depends(get_db)):
    user_id = require_user_id(request, db)
    if not persistence.delete_note(db, user_id, note_id):
        raise HTTPException(status_code=404, detail="Note not found")
    db.commit()
    return {"deleted": note_id}
