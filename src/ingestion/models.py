"""Data models for the transcript stream."""

from __future__ import annotations

from dataclasses import dataclass
from enum import StrEnum


@dataclass(frozen=True)
class RawSegment:
    """A transcript segment as delivered by the upstream feed (not yet validated)."""

    sequence_id: int
    speaker_id: str
    text: str
    start_offset_ms: int
    end_offset_ms: int


@dataclass(frozen=True)
class TranscriptSegment:
    """A validated, admitted segment. Immutable once admitted."""

    sequence_id: int
    speaker_id: str
    text: str
    start_offset_ms: int
    end_offset_ms: int


@dataclass(frozen=True)
class Gap:
    """Marker for a contiguous run of sequence ids declared permanently missing."""

    start_seq: int
    end_seq: int


# What downstream consumers receive, in sequence order.
StreamEntry = TranscriptSegment | Gap


class AdmitStatus(StrEnum):
    """Outcome of admitting one raw segment."""

    ACCEPTED = "accepted"
    BUFFERED = "buffered"
    DUPLICATE = "duplicate"
    LATE = "late"  # id already skipped by a declared gap


@dataclass
class Chunk:
    """A speaker-turn chunk of a finished transcript, ready for corpus indexing."""

    content: str
    speaker: str | None = None
    start_offset_ms: int | None = None
    end_offset_ms: int | None = None
    first_seq: int = 0
    last_seq: int = 0
    chunk_index: int = 0
