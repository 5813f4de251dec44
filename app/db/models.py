"""SQLAlchemy models for the SparkLearn study companion."""
from datetime import datetime
from sqlalchemy import Column, Integer, Text, DateTime, ForeignKey, CheckConstraint, Index
from sqlalchemy.orm import relationship
from app.db.database import Base


class User(Base):
    """Anonymous user tracked by id cookie."""
    __tablename__ = "users"

    id = Column(Text, primary_key=True)  # from sl_uid cookie
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_active_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)
    current_difficulty = Column(
        Text,
        CheckConstraint("current_difficulty IN ('beginner', 'intermediate', 'advanced')"),
        nullable=False,
        default="beginner"
    )

    # Relationships
    activity_events = relationship("ActivityEvent", back_populates="user", cascade="all, delete-orphan")
    quiz_attempts = relationship("QuizAttempt", back_populates="user", cascade="all, delete-orphan")
    progress = relationship("ProgressSnapshot", back_populates="user", uselist=False, cascade="all, delete-orphan")
    bookmarks = relationship("Bookmark", back_populates="user", cascade="all, delete-orphan")
    notes = relationship("Note", back_populates="user", cascade="all, delete-orphan")


class ActivityEvent(Base):
    """One immutable record of a user action (learning, quiz, revision, doubt)."""
    __tablename__ = "activity_events"

    id = Column(Text, primary_key=True)
    user_id = Column(Text, ForeignKey("users.id"), primary_key=True)
    topic = Column(Text, nullable=False)
    type = Column(
        Text,
        CheckConstraint("type IN ('learning', 'quiz', 'revision', 'doubt')"),
        nullable=False
    )
    difficulty = Column(Text, nullable=False, default="beginner")
    score = Column(Integer, CheckConstraint("score IS NULL OR (score >= 0 AND score <= 100)"), nullable=True)
    timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_activity_user_timestamp', 'user_id', 'timestamp'),
    )

    user = relationship("User", back_populates="activity_events")


class QuizAttempt(Base):
    """A scored quiz submission."""
    __tablename__ = "quiz_attempts"

    id = Column(Text, primary_key=True)
    user_id = Column(Text, ForeignKey("users.id"), primary_key=True)
    topic = Column(Text, nullable=False)
    subject_id = Column(Text, nullable=False)  # slug of topic, e.g. "binary-search"
    difficulty = Column(Text, nullable=False)
    score = Column(Integer, nullable=False)
    total_questions = Column(Integer, nullable=False)
    correct_answers = Column(Integer, nullable=False)
    quiz_date = Column(DateTime, default=datetime.utcnow, nullable=False)

    __table_args__ = (
        Index('idx_quiz_user_date', 'user_id', 'quiz_date'),
    )

    user = relationship("User", back_populates="quiz_attempts")


class ProgressSnapshot(Base):
    """Per-user override layer for dashboard counters.

    A NULL column means "no override"; the aggregator derives the value from
    the activity log instead. A stored zero is a real override.
    """
    __tablename__ = "progress_snapshots"

    user_id = Column(Text, ForeignKey("users.id"), primary_key=True)
    topics_studied = Column(Integer, nullable=True)
    quizzes_completed = Column(Integer, nullable=True)
    streak = Column(Integer, nullable=True)
    total_study_time = Column(Integer, nullable=True)  # minutes
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="progress")


class Bookmark(Base):
    """Topic saved for later."""
    __tablename__ = "bookmarks"

    id = Column(Text, primary_key=True)
    user_id = Column(Text, ForeignKey("users.id"), primary_key=True)
    topic = Column(Text, nullable=False)
    difficulty = Column(Text, nullable=False, default="beginner")
    saved_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="bookmarks")


class Note(Base):
    """Free-text note attached to a topic."""
    __tablename__ = "notes"

    id = Column(Text, primary_key=True)
    user_id = Column(Text, ForeignKey("users.id"), primary_key=True)
    topic = Column(Text, nullable=False)
    content = Column(Text, nullable=False)
    saved_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    user = relationship("User", back_populates="notes")
