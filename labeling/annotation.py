"""
Per-summary annotation: four quality ratings plus the label collection.
"""

from dataclasses import dataclass, field
from typing import Optional

from .labels import LabelStore

SCORE_UNSET = 0
SCORE_MIN = 1
SCORE_MAX = 5

# Rating aspects shown to annotators, in display order
ASPECTS = {
    "comprehensiveness": "Is all necessary information captured in the summary?",
    "layness": "How easy is it for a non-expert to understand the summary?",
    "factuality": "How accurately does the summary represent the facts from the original text?",
    "usefulness": "How valuable is this summary for understanding the key points of the original text?",
}


def is_valid_score(value: int) -> bool:
    return SCORE_MIN <= value <= SCORE_MAX


@dataclass
class Annotation:
    """Ratings and labels for one summary, mutated in place while annotating."""
    comprehensiveness: int = SCORE_UNSET
    layness: int = SCORE_UNSET
    factuality: int = SCORE_UNSET
    usefulness: int = SCORE_UNSET
    labels: LabelStore = field(default_factory=LabelStore)

    def set_score(self, aspect: str, value: int) -> None:
        """Set one rating. Raises ValueError for unknown aspects or out-of-range values."""
        if aspect not in ASPECTS:
            raise ValueError(f"Unknown aspect: {aspect}. Must be one of {', '.join(ASPECTS)}")
        if not is_valid_score(value):
            raise ValueError(f"Score for {aspect} must be between {SCORE_MIN} and {SCORE_MAX}, got {value}")
        setattr(self, aspect, value)

    def scores(self) -> dict[str, int]:
        return {aspect: getattr(self, aspect) for aspect in ASPECTS}

    def is_complete(self) -> bool:
        """All four ratings set. Labels do not matter."""
        return all(is_valid_score(score) for score in self.scores().values())

    def is_started(self) -> bool:
        return any(score != SCORE_UNSET for score in self.scores().values())

    def missing_aspects(self) -> list[str]:
        return [aspect for aspect, score in self.scores().items() if not is_valid_score(score)]

    @classmethod
    def from_payload(cls, scores: Optional[dict], labels=None) -> "Annotation":
        """Build from persisted scores and wire-format labels."""
        scores = scores or {}
        return cls(
            **{aspect: int(scores.get(aspect) or SCORE_UNSET) for aspect in ASPECTS},
            labels=LabelStore.from_dicts(labels),
        )
