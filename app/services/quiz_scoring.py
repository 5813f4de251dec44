"""Multiple-choice quiz scoring."""
import re
from typing import Dict, Iterable, Optional
from app.services.stats import round_half_up


def score_quiz(answers: Iterable) -> Dict[str, int]:
    """
    Score a submitted multiple-choice quiz.

    Each answer carries the ``selected`` option index (None when skipped) and
    the ``correct`` option index. Skipped questions count as wrong.

    Args:
        answers: Objects or mappings with ``selected`` and ``correct``

    Returns:
        {"correct_count": 3, "total_questions": 5, "score_percent": 60}

    Raises:
        ValueError: If the quiz has no questions
    """
    total = 0
    correct = 0
    for answer in answers:
        total += 1
        selected = _field(answer, "selected")
        if selected is not None and selected == _field(answer, "correct"):
            correct += 1

    if total == 0:
        raise ValueError("Cannot score a quiz with no questions")

    return {
        "correct_count": correct,
        "total_questions": total,
        "score_percent": round_half_up(correct / total * 100),
    }


def _field(answer, name: str) -> Optional[int]:
    if isinstance(answer, dict):
        return answer.get(name)
    return getattr(answer, name)


def subject_slug(topic: str) -> str:
    """Lower-case a topic and join its words with hyphens."""
    return re.sub(r"\s+", "-", topic.strip().lower())
