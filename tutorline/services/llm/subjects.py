"""Canonical subject labels and normalization.

Classification and summary lookup share one taxonomy. Classification is
closed: anything unrecognized becomes ``FALLBACK_SUBJECT``. Subject names
spoken by the caller for a summary are open-ended: unrecognized text passes
through capitalized so callers can still reach subjects the classifier
produced before the taxonomy grew.
"""
import re
from typing import Dict, Iterable, List, Optional

FALLBACK_SUBJECT = "General Knowledge"

SUBJECT_LABELS: List[str] = [
    "Mathematics",
    "Physics",
    "Chemistry",
    "Organic Chemistry",
    "Inorganic Chemistry",
    "Biology",
    "Botany",
    "Zoology",
    "Human Biology",
    "English",
    "Grammar",
    "Literature",
    "Composition",
    "History",
    "World History",
    "Indian History",
    "Ancient History",
    "Geography",
    "Computer Science",
    "Economics",
    "Political Science",
    "Social Studies",
    "Environmental Science",
    "General Science",
    "General Knowledge",
]

# Spoken variants mapped onto a canonical label
SUBJECT_ALIASES: Dict[str, str] = {
    "math": "Mathematics",
    "maths": "Mathematics",
    "algebra": "Mathematics",
    "geometry": "Mathematics",
    "trigonometry": "Mathematics",
    "calculus": "Mathematics",
    "statistics": "Mathematics",
    "programming": "Computer Science",
    "it": "Computer Science",
    "computers": "Computer Science",
    "science": "General Science",
    "gk": "General Knowledge",
    "civics": "Political Science",
}

# Phrases callers wrap around a subject name when asking for a summary
_FILLER_PATTERNS = [
    r"give me (?:the |a )?summary",
    r"i want (?:a |the )?summary",
    r"summary (?:of|on|for|about)",
    r"summari[sz]e",
    r"\b(?:uh|um|ah|er)\b",
    r"\bplease\b",
]

_LOOKUP: Dict[str, str] = {label.lower(): label for label in SUBJECT_LABELS}
_LOOKUP.update(SUBJECT_ALIASES)


def clean_subject_text(text: str) -> str:
    """Lowercase, strip filler phrases and trailing punctuation."""
    cleaned = text.lower()
    for pattern in _FILLER_PATTERNS:
        cleaned = re.sub(pattern, "", cleaned)
    cleaned = re.sub(r"[.,!?;:\"']+", " ", cleaned)
    return re.sub(r"\s+", " ", cleaned).strip()


def _substring_match(cleaned: str, labels: Iterable[str]) -> Optional[str]:
    """Find the longest known label or alias contained in the text."""
    # Short aliases ("it", "gk") only count as exact matches
    candidates = {
        key: value for key, value in _LOOKUP.items() if value in labels and len(key) > 2
    }
    for key in sorted(candidates, key=len, reverse=True):
        if re.search(rf"\b{re.escape(key)}\b", cleaned):
            return candidates[key]
    return None


def normalize_subject(
    text: Optional[str],
    labels: Optional[Iterable[str]] = None,
    open_ended: bool = False,
) -> str:
    """
    Map free text onto a canonical subject label.

    Order: exact match (label or alias), then substring heuristic, then
    fallback. The fallback is ``FALLBACK_SUBJECT`` for closed classification,
    or the capitalized text itself when ``open_ended`` is set.
    """
    allowed = set(labels) if labels is not None else set(SUBJECT_LABELS)
    cleaned = clean_subject_text(text or "")
    if not cleaned:
        return FALLBACK_SUBJECT

    exact = _LOOKUP.get(cleaned)
    if exact and exact in allowed:
        return exact

    partial = _substring_match(cleaned, allowed)
    if partial:
        return partial

    if open_ended:
        return " ".join(word.capitalize() for word in cleaned.split(" "))
    return FALLBACK_SUBJECT
