"""User-scoped storage operations for history, progress, quizzes, bookmarks and notes.

Every function takes the user id explicitly. A ``None`` user id means nobody
is identified: reads return empty/default values and writes are skipped, so
callers never have to special-case a missing identity.

Reads catch store errors, log them and return the default for that fetch.
Writes add to the session and flush; committing is left to the caller so one
request can persist several records atomically. Write errors propagate.
"""
import uuid
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy import desc
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from app.db.models import ActivityEvent, Bookmark, Note, ProgressSnapshot, QuizAttempt, User
from app.logging_config import get_logger
from app.services.difficulty import DifficultyTier
from app.services.quiz_scoring import subject_slug
from app.services.stats import OVERRIDE_FIELDS

logger = get_logger(__name__)

EVENT_TYPES = ("learning", "quiz", "revision", "doubt")


def new_record_id() -> str:
    return uuid.uuid4().hex


def default_progress() -> Dict[str, Optional[int]]:
    """Progress snapshot for a user with nothing stored: no overrides."""
    return {field: None for field in OVERRIDE_FIELDS}


# ---------------------------------------------------------------------------
# Serialization
# ---------------------------------------------------------------------------

def event_to_dict(event: ActivityEvent) -> Dict:
    return {
        "id": event.id,
        "topic": event.topic,
        "type": event.type,
        "difficulty": event.difficulty,
        "score": event.score,
        "timestamp": event.timestamp.isoformat(),
    }


def attempt_to_dict(attempt: QuizAttempt) -> Dict:
    return {
        "id": attempt.id,
        "topic": attempt.topic,
        "subject_id": attempt.subject_id,
        "difficulty": attempt.difficulty,
        "score": attempt.score,
        "total_questions": attempt.total_questions,
        "correct_answers": attempt.correct_answers,
        "quiz_date": attempt.quiz_date.isoformat(),
    }


def bookmark_to_dict(bookmark: Bookmark) -> Dict:
    return {
        "id": bookmark.id,
        "topic": bookmark.topic,
        "difficulty": bookmark.difficulty,
        "saved_at": bookmark.saved_at.isoformat(),
    }


def note_to_dict(note: Note) -> Dict:
    return {
        "id": note.id,
        "topic": note.topic,
        "content": note.content,
        "saved_at": note.saved_at.isoformat(),
    }


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def get_user(db: Session, user_id: Optional[str]) -> Optional[User]:
    if not user_id:
        return None
    return db.query(User).filter(User.id == user_id).first()


def get_current_difficulty(db: Session, user_id: Optional[str]) -> DifficultyTier:
    """Tier for the user's next quiz; beginner when unknown."""
    try:
        user = get_user(db, user_id)
    except SQLAlchemyError as e:
        logger.error(f"get_current_difficulty failed: {e}", extra={"user_id": user_id})
        return DifficultyTier.BEGINNER
    if user is None:
        return DifficultyTier.BEGINNER
    return DifficultyTier.parse(user.current_difficulty)


def set_current_difficulty(db: Session, user_id: Optional[str], tier: DifficultyTier) -> None:
    user = get_user(db, user_id)
    if user is None:
        return
    user.current_difficulty = tier.value
    db.flush()


# ---------------------------------------------------------------------------
# History (activity log)
# ---------------------------------------------------------------------------

def save_history(
    db: Session,
    user_id: Optional[str],
    topic: str,
    event_type: str,
    difficulty: DifficultyTier,
    score: Optional[int] = None,
    event_id: Optional[str] = None,
    timestamp: Optional[datetime] = None
) -> Optional[ActivityEvent]:
    """
    Append an activity event to the user's log.

    Args:
        db: Database session
        user_id: Owner of the event, or None to skip
        topic: Free-form topic
        event_type: One of learning, quiz, revision, doubt
        difficulty: Tier the activity was done at
        score: Quiz score (quiz events only)
        event_id: Id to store under; generated when omitted
        timestamp: Creation time; now when omitted

    Returns:
        The new ActivityEvent, or None when no user is identified
    """
    if not user_id:
        logger.warning("save_history skipped: no user identified")
        return None

    if event_type not in EVENT_TYPES:
        raise ValueError(f"Unknown activity type: {event_type!r}")
    if event_type != "quiz":
        score = None

    event = ActivityEvent(
        id=event_id or new_record_id(),
        user_id=user_id,
        topic=topic,
        type=event_type,
        difficulty=DifficultyTier.parse(difficulty).value,
        score=score,
        timestamp=timestamp or datetime.utcnow(),
    )
    db.add(event)
    db.flush()
    logger.info(
        f"History saved: {event.type} '{event.topic}'",
        extra={"user_id": user_id, "event_id": event.id, "topic": event.topic}
    )
    return event


def get_history(
    db: Session,
    user_id: Optional[str],
    event_type: Optional[str] = None
) -> List[ActivityEvent]:
    """Activity events of the user, newest first; [] on failure.

    ``event_type`` limits the result to one of EVENT_TYPES.
    """
    if not user_id:
        return []
    try:
        query = db.query(ActivityEvent).filter(ActivityEvent.user_id == user_id)
        if event_type:
            query = query.filter(ActivityEvent.type == event_type)
        events = query.order_by(desc(ActivityEvent.timestamp)).all()
    except SQLAlchemyError as e:
        logger.error(f"get_history failed: {e}", extra={"user_id": user_id})
        return []
    logger.debug(f"Loaded {len(events)} history entries", extra={"user_id": user_id})
    return events


# ---------------------------------------------------------------------------
# Quiz attempts
# ---------------------------------------------------------------------------

def save_quiz_attempt(
    db: Session,
    user_id: Optional[str],
    topic: str,
    difficulty: DifficultyTier,
    score: int,
    total_questions: int,
    correct_answers: int,
    attempt_id: Optional[str] = None
) -> Optional[QuizAttempt]:
    if not user_id:
        return None

    attempt = QuizAttempt(
        id=attempt_id or new_record_id(),
        user_id=user_id,
        topic=topic,
        subject_id=subject_slug(topic),
        difficulty=DifficultyTier.parse(difficulty).value,
        score=score,
        total_questions=total_questions,
        correct_answers=correct_answers,
        quiz_date=datetime.utcnow(),
    )
    db.add(attempt)
    db.flush()
    logger.info("Quiz attempt saved", extra={"user_id": user_id, "event_id": attempt.id})
    return attempt


def get_quiz_attempts(db: Session, user_id: Optional[str]) -> List[QuizAttempt]:
    if not user_id:
        return []
    try:
        return db.query(QuizAttempt).filter(
            QuizAttempt.user_id == user_id
        ).order_by(desc(QuizAttempt.quiz_date)).all()
    except SQLAlchemyError as e:
        logger.error(f"get_quiz_attempts failed: {e}", extra={"user_id": user_id})
        return []


# ---------------------------------------------------------------------------
# Progress snapshot
# ---------------------------------------------------------------------------

def get_progress(db: Session, user_id: Optional[str]) -> Dict[str, Optional[int]]:
    """
    Stored progress overrides for the user.

    Returns:
        Mapping of override field to value; None marks a field with no
        override. All None for new or unidentified users and on failure.
    """
    if not user_id:
        return default_progress()
    try:
        snapshot = db.query(ProgressSnapshot).filter(ProgressSnapshot.user_id == user_id).first()
    except SQLAlchemyError as e:
        logger.error(f"get_progress failed: {e}", extra={"user_id": user_id})
        return default_progress()

    if snapshot is None:
        logger.debug("No progress snapshot yet (new user)", extra={"user_id": user_id})
        return default_progress()
    return {field: getattr(snapshot, field) for field in OVERRIDE_FIELDS}


def save_progress(
    db: Session,
    user_id: Optional[str],
    partial: Dict[str, Optional[int]],
    merge: bool = True
) -> Optional[Dict[str, Optional[int]]]:
    """
    Write progress overrides.

    With ``merge`` only the fields present in ``partial`` change; an explicit
    None clears that override. Without ``merge`` the snapshot is replaced and
    fields missing from ``partial`` are cleared.

    Returns:
        The stored overrides, or None when no user is identified

    Raises:
        ValueError: On unknown fields or negative values
    """
    if not user_id:
        return None

    unknown = set(partial) - set(OVERRIDE_FIELDS)
    if unknown:
        raise ValueError(f"Unknown progress fields: {', '.join(sorted(unknown))}")
    for field, value in partial.items():
        if value is not None and value < 0:
            raise ValueError(f"{field} cannot be negative")

    snapshot = db.query(ProgressSnapshot).filter(ProgressSnapshot.user_id == user_id).first()
    if snapshot is None:
        snapshot = ProgressSnapshot(user_id=user_id)
        db.add(snapshot)

    fields = partial.keys() if merge else OVERRIDE_FIELDS
    for field in fields:
        setattr(snapshot, field, partial.get(field))
    snapshot.updated_at = datetime.utcnow()

    db.flush()
    logger.info("Progress saved", extra={"user_id": user_id})
    return {field: getattr(snapshot, field) for field in OVERRIDE_FIELDS}


# ---------------------------------------------------------------------------
# Bookmarks
# ---------------------------------------------------------------------------

def get_bookmarks(db: Session, user_id: Optional[str]) -> List[Bookmark]:
    if not user_id:
        return []
    try:
        return db.query(Bookmark).filter(
            Bookmark.user_id == user_id
        ).order_by(desc(Bookmark.saved_at)).all()
    except SQLAlchemyError as e:
        logger.error(f"get_bookmarks failed: {e}", extra={"user_id": user_id})
        return []


def save_bookmark(
    db: Session,
    user_id: Optional[str],
    topic: str,
    difficulty: DifficultyTier,
    bookmark_id: Optional[str] = None
) -> Optional[Bookmark]:
    """Create or overwrite a bookmark."""
    if not user_id:
        return None
    bookmark = db.merge(Bookmark(
        id=bookmark_id or new_record_id(),
        user_id=user_id,
        topic=topic,
        difficulty=DifficultyTier.parse(difficulty).value,
        saved_at=datetime.utcnow(),
    ))
    db.flush()
    logger.info("Bookmark saved", extra={"user_id": user_id, "event_id": bookmark.id})
    return bookmark


def remove_bookmark(db: Session, user_id: Optional[str], bookmark_id: str) -> bool:
    """Delete a bookmark. Returns False when it does not exist."""
    if not user_id:
        return False
    bookmark = db.query(Bookmark).filter(
        Bookmark.user_id == user_id,
        Bookmark.id == bookmark_id
    ).first()
    if bookmark is None:
        return False
    db.delete(bookmark)
    db.flush()
    logger.info("Bookmark removed", extra={"user_id": user_id, "event_id": bookmark_id})
    return True


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------

def get_notes(db: Session, user_id: Optional[str], topic: Optional[str] = None) -> List[Note]:
    if not user_id:
        return []
    try:
        query = db.query(Note).filter(Note.user_id == user_id)
        if topic:
            query = query.filter(Note.topic == topic)
        return query.order_by(desc(Note.saved_at)).all()
    except SQLAlchemyError as e:
        logger.error(f"get_notes failed: {e}", extra={"user_id": user_id})
        return []


def save_note(db: Session, user_id: Optional[str], topic: str, content: str) -> Optional[Note]:
    if not user_id:
        return None
    note = Note(
        id=new_record_id(),
        user_id=user_id,
        topic=topic,
        content=content,
        saved_at=datetime.utcnow(),
    )
    db.add(note)
    db.flush()
    logger.info("Note saved", extra={"user_id": user_id, "event_id": note.id, "topic": topic})
    return note


def delete_note(db: Session, user_id: Optional[str], note_id: str) -> bool:
    """Delete a note. Returns False when it does not exist."""
    if not user_id:
        return False
    note = db.query(Note).filter(Note.user_id == user_id, Note.id == note_id).first()
    if note is None:
        return False
    db.delete(note)
    db.flush()
    logger.info("Note deleted", extra={"user_id": user_id, "event_id": note_id})
    return True
