"""Incremental action-item extraction over the ordered transcript stream."""

from __future__ import annotations

import logging
from collections import deque
from collections.abc import Iterable, Iterator, Sequence
from typing import Protocol

from src.config import Settings
from src.extraction.models import ActionItemProposal, Detection
from src.extraction.rules import RuleBasedDetector
from src.ingestion.chunking import group_speaker_turns
from src.ingestion.models import Gap, StreamEntry, TranscriptSegment
from src.pipeline_config import ExtractionBackend, SessionConfig

logger = logging.getLogger(__name__)


class ActionItemDetector(Protocol):
    """Model behind the extractor: finds action items in one speaker turn."""

    def detect(self, turn: Sequence[TranscriptSegment]) -> list[Detection]: ...


def build_detector(config: SessionConfig, settings: Settings) -> ActionItemDetector:
    """Return the detector selected by the session config."""
    if config.extraction_backend is ExtractionBackend.CLAUDE:
        from src.extraction.claude import ClaudeDetector

        return ClaudeDetector(api_key=settings.anthropic_api_key, model=settings.llm_model)
    return RuleBasedDetector()


class ActionItemExtractor:
    """Turns the transcript stream into action-item proposals, incrementally.

    Consecutive segments by one speaker form a turn; a gap marker closes the
    current turn.  Each turn is sent to the detector once per distinct segment
    range, so a turn that keeps growing across calls produces a new, wider
    proposal whose range overlaps the earlier one.  Re-delivered entries are
    ignored, and no proposal is ever emitted twice for the same range.

    A range only counts as evaluated once the detector has answered for it.
    When the detector raises, closed turns stay queued and the open turn stays
    open; the next :meth:`process` or :meth:`flush` call sends them again.

    Low-confidence detections are emitted like any other.
    """

    def __init__(self, detector: ActionItemDetector) -> None:
        self._detector = detector
        self._last_seq = 0
        self._open_turn: list[TranscriptSegment] = []
        self._closed_turns: deque[list[TranscriptSegment]] = deque()
        self._evaluated: set[tuple[int, int]] = set()
        self._emitted: dict[str, ActionItemProposal] = {}

    @property
    def emitted(self) -> list[ActionItemProposal]:
        """Every proposal returned so far, oldest first."""
        return list(self._emitted.values())

    @property
    def backlog(self) -> list[tuple[int, int]]:
        """Segment ranges still waiting for a detector answer."""
        ranges = [_span(turn) for turn in self._closed_turns]
        if self._open_turn and _span(self._open_turn) not in self._evaluated:
            ranges.append(_span(self._open_turn))
        return ranges

    def process(self, stream_slice: Iterable[StreamEntry]) -> Iterator[ActionItemProposal]:
        """Consume the next slice of the stream and yield new proposals.

        The returned iterator is lazy; it must be exhausted for the extractor
        to advance past the slice.  Detector failures propagate to the caller.
        """
        fresh: list[StreamEntry] = []
        for entry in stream_slice:
            seq = entry.end_seq if isinstance(entry, Gap) else entry.sequence_id
            if seq <= self._last_seq:
                continue
            self._last_seq = seq
            fresh.append(entry)

        if fresh:
            turns = group_speaker_turns([*self._open_turn, *fresh])
            if isinstance(fresh[-1], Gap):
                self._open_turn = []
            else:
                self._open_turn = turns.pop() if turns else []
            self._closed_turns.extend(turns)

        yield from self._drain_closed()
        # The open turn may still grow; evaluate what is known so far.
        if self._open_turn:
            yield from self._evaluate(self._open_turn)

    def flush(self) -> Iterator[ActionItemProposal]:
        """Close the open turn at end of stream."""
        if self._open_turn:
            self._closed_turns.append(self._open_turn)
            self._open_turn = []
        yield from self._drain_closed()

    def _drain_closed(self) -> Iterator[ActionItemProposal]:
        while self._closed_turns:
            proposals = self._evaluate(self._closed_turns[0])
            self._closed_turns.popleft()
            yield from proposals

    def _evaluate(self, turn: list[TranscriptSegment]) -> list[ActionItemProposal]:
        start, end = _span(turn)
        if (start, end) in self._evaluated:
            return []
        detections = self._detector.detect(turn)
        self._evaluated.add((start, end))

        evidence = " ".join(s.text for s in turn)
        proposals: list[ActionItemProposal] = []
        for ordinal, detection in enumerate(detections):
            proposal_id = f"prop-{start}-{end}" + (f"-{ordinal}" if ordinal else "")
            proposal = ActionItemProposal(
                id=proposal_id,
                source_segment_range=(start, end),
                speaker_id=turn[0].speaker_id,
                text=detection.description,
                confidence=detection.confidence,
                suggested_owner=detection.owner,
                suggested_due_date=detection.due_date,
                category=detection.category,
                evidence_text=evidence,
            )
            self._emitted[proposal_id] = proposal
            logger.debug(
                "Proposal %s over segments %d-%d (confidence %.2f)",
                proposal_id,
                start,
                end,
                proposal.confidence,
            )
            proposals.append(proposal)
        return proposals


def _span(turn: Sequence[TranscriptSegment]) -> tuple[int, int]:
    return turn[0].sequence_id, turn[-1].sequence_id
