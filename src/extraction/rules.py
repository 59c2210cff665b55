"""Deterministic rule-based action-item detection.

Each cue rule carries a base confidence.  A turn matching any cue yields one
detection, however weak: filtering by confidence is a downstream decision.
"""

from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass

from src.extraction.models import Detection
from src.ingestion.models import TranscriptSegment


@dataclass(frozen=True)
class PatternRule:
    """A named action cue with its base confidence."""

    name: str
    pattern: str
    confidence: float


ACTION_RULES: tuple[PatternRule, ...] = (
    PatternRule("scheduling", r"\b(let's|let us)\s+(schedule|set up|book|arrange|plan)\b", 0.85),
    PatternRule("commitment", r"\b(i'll|i will|i'm going to|we'll|we will)\b", 0.8),
    PatternRule("request", r"\b(can you|could you|would you|please)\b", 0.7),
    PatternRule("follow_up", r"\bfollow[\s-]?up\b", 0.65),
    PatternRule("obligation", r"\b(need to|needs to|have to|has to|must)\b", 0.6),
    PatternRule("suggestion", r"\b(we should|should we|maybe we|might want to|consider)\b", 0.4),
)

# Ordered: the first category whose keyword appears wins.
CATEGORY_KEYWORDS: tuple[tuple[str, tuple[str, ...]], ...] = (
    ("Scheduling", ("schedule", "meeting", "call", "follow-up", "follow up", "calendar", "book")),
    ("Tax Planning", ("tax",)),
    ("Investment", ("proposal", "invest", "portfolio", "esg", "fund", "allocation")),
    ("Documentation", ("document", "questionnaire", "kyc", "form", "paperwork", "update")),
    ("Analysis", ("review", "analy", "assess", "look at", "explore")),
)

_WEEKDAYS = "monday|tuesday|wednesday|thursday|friday|saturday|sunday"
_DUE_RE = re.compile(
    r"\b(?:by|before|until|no later than)\s+"
    r"((?:next\s+|this\s+)?(?:" + _WEEKDAYS + r"|tomorrow|tonight|week|month|quarter|year)"
    r"|end of (?:the )?(?:day|week|month|quarter|year)"
    r"|\d{4}-\d{2}-\d{2})\b"
    r"|\b(tomorrow|next\s+(?:" + _WEEKDAYS + r"|week|month|quarter))\b",
    re.IGNORECASE,
)
_FIRST_PERSON_RE = re.compile(r"\b(i'll|i will|i'm going to|we'll|we will)\b", re.IGNORECASE)
_VOCATIVE_RE = re.compile(
    r"^([A-Z][a-z]+(?:\s[A-Z][a-z]+)?),\s+(?:can|could|would|will|please)\b"
)
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")

_CONFIDENCE_BOOST = 0.05


def find_due_date(text: str) -> str | None:
    match = _DUE_RE.search(text)
    if not match:
        return None
    return (match.group(1) or match.group(2)).strip()


def classify_category(text: str) -> str:
    lowered = text.lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(k in lowered for k in keywords):
            return category
    return "General"


def find_owner(sentence: str, speaker_id: str) -> str | None:
    """Owner heuristics: first-person commitments belong to the speaker,
    a leading vocative (``"David, can you..."``) names the addressee."""
    vocative = _VOCATIVE_RE.match(sentence)
    if vocative:
        return vocative.group(1)
    if _FIRST_PERSON_RE.search(sentence):
        return speaker_id
    return None


class RuleBasedDetector:
    """Regex cue detector; one detection per turn that contains any cue."""

    def __init__(self, rules: tuple[PatternRule, ...] | None = None) -> None:
        self._compiled = [
            (re.compile(rule.pattern, re.IGNORECASE), rule) for rule in (rules or ACTION_RULES)
        ]

    def _matching_rules(self, text: str) -> list[PatternRule]:
        return [rule for compiled, rule in self._compiled if compiled.search(text)]

    def detect(self, turn: Sequence[TranscriptSegment]) -> list[Detection]:
        if not turn:
            return []
        speaker = turn[0].speaker_id
        full_text = " ".join(s.text for s in turn)

        best_sentence: str | None = None
        best_score = 0.0
        matched: set[str] = set()
        for sentence in _SENTENCE_SPLIT_RE.split(full_text):
            rules = self._matching_rules(sentence)
            if not rules:
                continue
            matched.update(r.name for r in rules)
            score = max(r.confidence for r in rules)
            if score > best_score:
                best_sentence, best_score = sentence, score

        if best_sentence is None:
            return []

        owner = find_owner(best_sentence, speaker)
        due = find_due_date(full_text)
        confidence = best_score
        confidence += _CONFIDENCE_BOOST * (len(matched) - 1)
        if owner:
            confidence += _CONFIDENCE_BOOST
        if due:
            confidence += _CONFIDENCE_BOOST

        return [
            Detection(
                description=best_sentence.strip().rstrip(".!?"),
                confidence=round(min(confidence, 1.0), 2),
                owner=owner,
                due_date=due,
                category=classify_category(full_text),
            )
        ]
