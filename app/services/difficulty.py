"""Difficulty tiers and score-driven tier adjustment."""
from dataclasses import dataclass, asdict
from enum import Enum
from typing import Dict, Union
from app.constants import (
    PROMOTION_THRESHOLD,
    DEMOTION_THRESHOLD,
    SCORE_BAND_SUCCESS,
    SCORE_BAND_WARNING
)


class DifficultyTier(str, Enum):
    """Difficulty tier, ordered from easiest to hardest."""
    BEGINNER = "beginner"
    INTERMEDIATE = "intermediate"
    ADVANCED = "advanced"

    @classmethod
    def parse(cls, value: Union["DifficultyTier", str]) -> "DifficultyTier":
        """Parse a tier name case-insensitively.

        Raises:
            ValueError: If the value is not a known tier
        """
        if isinstance(value, cls):
            return value
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown difficulty tier: {value!r}") from None

    @property
    def rank(self) -> int:
        return TIER_ORDER.index(self)


TIER_ORDER = (DifficultyTier.BEGINNER, DifficultyTier.INTERMEDIATE, DifficultyTier.ADVANCED)


@dataclass(frozen=True)
class DifficultyAdjustment:
    """Outcome of a quiz for the learner's tier."""
    new_tier: DifficultyTier
    message: str
    changed: bool

    def to_dict(self) -> Dict:
        data = asdict(self)
        data["new_tier"] = self.new_tier.value
        return data


def adjust_difficulty(score_percent: int, current_tier: Union[DifficultyTier, str]) -> DifficultyAdjustment:
    """
    Decide the next difficulty tier from a quiz score.

    Rules (first match wins):
    - score >= 80 and not at the top tier: move up one tier
    - score <= 40 and not at the bottom tier: move down one tier
    - otherwise: stay at the current tier

    A perfect score at advanced or a zero at beginner stays put.

    Args:
        score_percent: Quiz score, 0-100
        current_tier: Tier the quiz was taken at

    Returns:
        DifficultyAdjustment with the new tier, a learner-facing message and
        whether the tier changed
    """
    tier = DifficultyTier.parse(current_tier)
    rank = tier.rank

    if score_percent >= PROMOTION_THRESHOLD and rank < len(TIER_ORDER) - 1:
        new_tier = TIER_ORDER[rank + 1]
        return DifficultyAdjustment(
            new_tier=new_tier,
            message=f"Great job! You scored {score_percent}%. Moving up to {new_tier.value} level!",
            changed=True
        )

    if score_percent <= DEMOTION_THRESHOLD and rank > 0:
        new_tier = TIER_ORDER[rank - 1]
        return DifficultyAdjustment(
            new_tier=new_tier,
            message=f"No worries! Let's strengthen your basics. Adjusting to {new_tier.value} level.",
            changed=True
        )

    return DifficultyAdjustment(
        new_tier=tier,
        message=f"Good effort! You scored {score_percent}%. Keep practicing at the {tier.value} level.",
        changed=False
    )


def get_score_band(score_percent: int) -> str:
    """Classify a score as 'success', 'warning' or 'error' for display."""
    if score_percent >= SCORE_BAND_SUCCESS:
        return "success"
    if score_percent >= SCORE_BAND_WARNING:
        return "warning"
    return "error"
