"""Unit tests for user-scoped storage operations."""
from datetime import datetime

import pytest
from sqlalchemy.exc import OperationalError

from app.db.models import ActivityEvent, ProgressSnapshot
from app.services import persistence
from app.services.difficulty import DifficultyTier


def _broken_query(*args, **kwargs):
    raise OperationalError("SELECT", {}, Exception("database is locked"))


class TestAnonymousCalls:
    """Without a user every read is empty and every write is skipped."""

    def test_reads_return_defaults(self, test_db):
        assert persistence.get_history(test_db, None) == []
        assert persistence.get_quiz_attempts(test_db, None) == []
        assert persistence.get_bookmarks(test_db, None) == []
        assert persistence.get_notes(test_db, None) == []
        assert persistence.get_progress(test_db, None) == {
            "topics_studied": None,
            "quizzes_completed": None,
            "streak": None,
            "total_study_time": None,
        }
        assert persistence.get_current_difficulty(test_db, None) == DifficultyTier.BEGINNER

    def test_writes_are_skipped(self, test_db):
        assert persistence.save_history(test_db, None, "Sets", "learning", "beginner") is None
        assert persistence.save_progress(test_db, None, {"streak": 3}) is None
        assert persistence.save_bookmark(test_db, None, "Sets", "beginner") is None
        assert persistence.save_note(test_db, None, "Sets", "text") is None
        assert persistence.remove_bookmark(test_db, None, "x") is False
        assert test_db.query(ActivityEvent).count() == 0


class TestHistory:
    def test_save_and_get_newest_first(self, test_db, test_user):
        persistence.save_history(test_db, test_user.id, "Graphs", "learning", "beginner",
                                 timestamp=datetime(2026, 10, 1, 9, 0))
        persistence.save_history(test_db, test_user.id, "Graphs", "quiz", "intermediate", score=70,
                                 timestamp=datetime(2026, 10, 2, 9, 0))
        test_db.commit()

        history = persistence.get_history(test_db, test_user.id)

        assert [e.type for e in history] == ["quiz", "learning"]
        assert history[0].score == 70
        assert history[0].difficulty == "intermediate"

    def test_score_dropped_for_non_quiz(self, test_db, test_user):
        event = persistence.save_history(test_db, test_user.id, "Graphs", "revision", "beginner", score=50)
        assert event.score is None

    def test_explicit_event_id(self, test_db, test_user):
        event = persistence.save_history(test_db, test_user.id, "Graphs", "doubt", "intermediate", event_id="e-1")
        assert event.id == "e-1"

    def test_unknown_type_rejected(self, test_db, test_user):
        with pytest.raises(ValueError):
            persistence.save_history(test_db, test_user.id, "Graphs", "exam", "beginner")

    def test_history_scoped_to_user(self, test_db, test_user):
        persistence.save_history(test_db, test_user.id, "Mine", "learning", "beginner")
        persistence.save_history(test_db, "sl_someone_else", "Theirs", "learning", "beginner")
        test_db.commit()

        assert [e.topic for e in persistence.get_history(test_db, test_user.id)] == ["Mine"]

    def test_filter_by_type(self, test_db, test_user):
        persistence.save_history(test_db, test_user.id, "Graphs", "learning", "beginner")
        persistence.save_history(test_db, test_user.id, "Graphs", "quiz", "beginner", score=90)
        test_db.commit()

        quizzes = persistence.get_history(test_db, test_user.id, event_type="quiz")

        assert [e.type for e in quizzes] == ["quiz"]
        assert persistence.get_history(test_db, test_user.id, event_type="doubt") == []

    def test_store_failure_returns_empty(self, test_db, test_user, monkeypatch):
        persistence.save_history(test_db, test_user.id, "Graphs", "learning", "beginner")
        monkeypatch.setattr(test_db, "query", _broken_query)

        assert persistence.get_history(test_db, test_user.id) == []


class TestProgress:
    def test_new_user_has_no_overrides(self, test_db, test_user):
        progress = persistence.get_progress(test_db, test_user.id)
        assert all(value is None for value in progress.values())

    def test_merge_keeps_other_fields(self, test_db, test_user):
        persistence.save_progress(test_db, test_user.id, {"streak": 4, "topics_studied": 2})
        stored = persistence.save_progress(test_db, test_user.id, {"quizzes_completed": 1})

        assert stored == {"topics_studied": 2, "quizzes_completed": 1, "streak": 4, "total_study_time": None}
        assert test_db.query(ProgressSnapshot).count() == 1

    def test_explicit_none_clears_override(self, test_db, test_user):
        persistence.save_progress(test_db, test_user.id, {"streak": 4})
        stored = persistence.save_progress(test_db, test_user.id, {"streak": None})
        assert stored["streak"] is None

    def test_zero_is_stored(self, test_db, test_user):
        stored = persistence.save_progress(test_db, test_user.id, {"topics_studied": 0})
        assert stored["topics_studied"] == 0

    def test_replace_clears_missing_fields(self, test_db, test_user):
        persistence.save_progress(test_db, test_user.id, {"streak": 4, "topics_studied": 2})
        stored = persistence.save_progress(test_db, test_user.id, {"streak": 1}, merge=False)
        assert stored == {"topics_studied": None, "quizzes_completed": None, "streak": 1, "total_study_time": None}

    def test_unknown_field_rejected(self, test_db, test_user):
        with pytest.raises(ValueError):
            persistence.save_progress(test_db, test_user.id, {"average_score": 90})

    def test_negative_value_rejected(self, test_db, test_user):
        with pytest.raises(ValueError):
            persistence.save_progress(test_db, test_user.id, {"streak": -1})

    def test_store_failure_returns_defaults(self, test_db, test_user, monkeypatch):
        persistence.save_progress(test_db, test_user.id, {"streak": 4})
        monkeypatch.setattr(test_db, "query", _broken_query)

        assert persistence.get_progress(test_db, test_user.id) == persistence.default_progress()


class TestQuizAttempts:
    def test_save_quiz_attempt(self, test_db, test_user):
        attempt = persistence.save_quiz_attempt(
            test_db, test_user.id,
            topic="Binary Search", difficulty="beginner",
            score=80, total_questions=5, correct_answers=4
        )
        test_db.commit()

        assert attempt.subject_id == "binary-search"
        stored = persistence.get_quiz_attempts(test_db, test_user.id)
        assert len(stored) == 1
        assert persistence.attempt_to_dict(stored[0])["correct_answers"] == 4


class TestDifficulty:
    def test_set_and_get_current_difficulty(self, test_db, test_user):
        persistence.set_current_difficulty(test_db, test_user.id, DifficultyTier.ADVANCED)
        assert persistence.get_current_difficulty(test_db, test_user.id) == DifficultyTier.ADVANCED

    def test_unknown_user_defaults_to_beginner(self, test_db):
        assert persistence.get_current_difficulty(test_db, "sl_missing") == DifficultyTier.BEGINNER


class TestBookmarksAndNotes:
    def test_bookmark_lifecycle(self, test_db, test_user):
        saved = persistence.save_bookmark(test_db, test_user.id, "Recursion", "intermediate", bookmark_id="b-1")
        test_db.commit()
        assert saved.id == "b-1"
        assert [b.topic for b in persistence.get_bookmarks(test_db, test_user.id)] == ["Recursion"]

        assert persistence.remove_bookmark(test_db, test_user.id, "b-1") is True
        assert persistence.remove_bookmark(test_db, test_user.id, "b-1") is False
        assert persistence.get_bookmarks(test_db, test_user.id) == []

    def test_bookmark_same_id_overwrites(self, test_db, test_user):
        persistence.save_bookmark(test_db, test_user.id, "Recursion", "beginner", bookmark_id="b-1")
        persistence.save_bookmark(test_db, test_user.id, "Recursion", "advanced", bookmark_id="b-1")
        test_db.commit()

        bookmarks = persistence.get_bookmarks(test_db, test_user.id)
        assert len(bookmarks) == 1
        assert bookmarks[0].difficulty == "advanced"

    def test_notes_filtered_by_topic(self, test_db, test_user):
        persistence.save_note(test_db, test_user.id, "Recursion", "Base case first")
        persistence.save_note(test_db, test_user.id, "Sorting", "Merge sort is stable")
        test_db.commit()

        notes = persistence.get_notes(test_db, test_user.id, topic="Sorting")
        assert [n.content for n in notes] == ["Merge sort is stable"]
        assert len(persistence.get_notes(test_db, test_user.id)) == 2

    def test_delete_note(self, test_db, test_user):
        note = persistence.save_note(test_db, test_user.id, "Recursion", "Base case first")
        assert persistence.delete_note(test_db, test_user.id, note.id) is True
        assert persistence.delete_note(test_db, test_user.id, note.id) is False
