"""Data models for action-item extraction."""

from __future__ import annotations

from dataclasses import dataclass

SegmentRange = tuple[int, int]


def ranges_overlap(a: SegmentRange, b: SegmentRange) -> bool:
    """True if two inclusive sequence-id ranges share at least one id."""
    return a[0] <= b[1] and b[0] <= a[1]


@dataclass(frozen=True)
class Detection:
    """One action item a detector found in a speaker turn."""

    description: str
    confidence: float
    owner: str | None = None
    due_date: str | None = None  # free-form, e.g. "Friday", "next week"
    category: str = "General"


@dataclass(frozen=True)
class ActionItemProposal:
    """A candidate action item. Never mutated; a newer proposal supersedes it."""

    id: str
    source_segment_range: SegmentRange
    speaker_id: str
    text: str
    confidence: float
    suggested_owner: str | None = None
    suggested_due_date: str | None = None
    category: str = "General"
    evidence_text: str = ""
