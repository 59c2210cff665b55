"""Data models for knowledge retrieval."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


class RetrievalMode(StrEnum):
    LIVE = "live"  # recent transcript window as context
    POST_MEETING = "post_meeting"  # full transcript as context


class SourceTier(StrEnum):
    """Priority class of a corpus source."""

    COMPLIANCE = "compliance"
    MEETING_NOTES = "meeting_notes"
    DOCUMENT = "document"
    PRODUCT_CATALOG = "product_catalog"


# Lower ranks first when scores are within the compliance epsilon.
TIER_PRIORITY: dict[SourceTier, int] = {
    SourceTier.COMPLIANCE: 0,
    SourceTier.MEETING_NOTES: 1,
    SourceTier.DOCUMENT: 2,
    SourceTier.PRODUCT_CATALOG: 3,
}


@dataclass(frozen=True)
class CorpusDocument:
    """A document submitted for indexing."""

    id: str
    source_label: str
    content: str
    priority_tier: SourceTier = SourceTier.DOCUMENT


@dataclass(frozen=True)
class CorpusHit:
    """A scored corpus entry as returned by a corpus collaborator."""

    source_id: str
    source_label: str
    snippet: str
    score: float
    tier: SourceTier
    indexed_seq: int = 0  # higher = indexed more recently


@dataclass(frozen=True)
class RetrievalQuery:
    text: str
    mode: RetrievalMode = RetrievalMode.LIVE
    context_window: int | None = None  # segments of recent transcript (live mode)


@dataclass(frozen=True)
class RetrievalHit:
    """One attributed result. Never produced without a ``source_id``."""

    snippet: str
    source_id: str
    source_label: str
    score: float
    tier: SourceTier


@dataclass(frozen=True)
class RetrievalResult:
    hits: tuple[RetrievalHit, ...]
    mode: RetrievalMode

    @property
    def no_match(self) -> bool:
        return not self.hits
