"""Transcript stream ingestor: dedupe, order and gap-detect live transcript segments.

The ingestor is the single writer of a session's transcript.  Segments arrive
at-least-once and possibly out of order; they are delivered downstream strictly
by ``sequence_id``.  Segments above ``watermark + 1`` wait in a buffer until the
missing ids arrive or the gap has been open for ``gap_timeout_ms``, at which
point a :class:`Gap` marker is delivered in place of the missing run.

Delivered entries form an append-only sequence.  Consumers either subscribe
for push delivery or read with their own :class:`StreamReader` cursor.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable

from src.errors import SegmentConflictError, SessionClosedError, ValidationError
from src.ingestion.models import AdmitStatus, Gap, RawSegment, StreamEntry, TranscriptSegment

logger = logging.getLogger(__name__)

StreamListener = Callable[[StreamEntry], None]


def validate_segment(raw: RawSegment) -> TranscriptSegment:
    """Validate a raw segment and return the immutable admitted form.

    Raises:
        ValidationError: If any field is malformed.
    """
    if isinstance(raw.sequence_id, bool) or not isinstance(raw.sequence_id, int):
        raise ValidationError(f"sequence_id must be an integer, got {raw.sequence_id!r}")
    if raw.sequence_id < 1:
        raise ValidationError(f"sequence_id must be >= 1, got {raw.sequence_id}")
    speaker = (raw.speaker_id or "").strip()
    if not speaker:
        raise ValidationError(f"Segment {raw.sequence_id} has no speaker")
    text = (raw.text or "").strip()
    if not text:
        raise ValidationError(f"Segment {raw.sequence_id} has no text")
    if raw.start_offset_ms < 0 or raw.end_offset_ms < 0:
        raise ValidationError(f"Segment {raw.sequence_id} has a negative offset")
    if raw.end_offset_ms < raw.start_offset_ms:
        raise ValidationError(f"Segment {raw.sequence_id} ends before it starts")
    return TranscriptSegment(
        sequence_id=raw.sequence_id,
        speaker_id=speaker,
        text=text,
        start_offset_ms=raw.start_offset_ms,
        end_offset_ms=raw.end_offset_ms,
    )


class TranscriptIngestor:
    """Orders, dedupes and gap-checks one session's transcript feed.

    Args:
        gap_timeout_ms: How long a gap may stay open before it is declared
            permanent and skipped.
        clock: Monotonic clock in seconds; injectable for tests.
    """

    def __init__(
        self,
        gap_timeout_ms: int,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._gap_timeout_s = gap_timeout_ms / 1000.0
        self._clock = clock
        self._admitted: dict[int, TranscriptSegment] = {}
        self._pending: dict[int, tuple[TranscriptSegment, float]] = {}
        self._delivered: list[StreamEntry] = []
        self._watermark = 0
        self._listeners: list[StreamListener] = []
        self._closed = False

    @property
    def watermark(self) -> int:
        """Highest sequence id known to be contiguous and delivered (gaps included)."""
        return self._watermark

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending_count(self) -> int:
        return len(self._pending)

    def subscribe(self, listener: StreamListener) -> None:
        """Register *listener* to be called with every entry as it is delivered."""
        self._listeners.append(listener)

    def admit(self, raw: RawSegment) -> AdmitStatus:
        """Admit one segment from the feed.

        Returns:
            ``ACCEPTED`` if the segment was delivered downstream by this call,
            ``BUFFERED`` if it waits behind a gap, ``DUPLICATE`` for an identical
            re-delivery, ``LATE`` if its id was already skipped by a declared gap.

        Raises:
            ValidationError: Malformed segment.
            SegmentConflictError: Same id re-delivered with different content.
            SessionClosedError: The stream was closed at meeting end.
        """
        if self._closed:
            raise SessionClosedError("Transcript stream is closed")
        segment = validate_segment(raw)
        seq = segment.sequence_id

        existing = self._admitted.get(seq)
        if existing is not None:
            if existing == segment:
                return AdmitStatus.DUPLICATE
            raise SegmentConflictError(seq)

        if seq <= self._watermark:
            logger.warning(
                "Dropping late segment %d: already skipped by a declared gap (watermark %d)",
                seq,
                self._watermark,
            )
            return AdmitStatus.LATE

        self._admitted[seq] = segment
        self._pending[seq] = (segment, self._clock())
        self._drain()
        self._expire_gaps(self._gap_timeout_s)

        if seq <= self._watermark:
            return AdmitStatus.ACCEPTED
        return AdmitStatus.BUFFERED

    def tick(self) -> list[StreamEntry]:
        """Declare any gap whose timeout has elapsed and return newly delivered entries."""
        before = len(self._delivered)
        self._expire_gaps(self._gap_timeout_s)
        return self._delivered[before:]

    def close(self) -> list[StreamEntry]:
        """Declare every open gap, flush the buffer and refuse further segments."""
        before = len(self._delivered)
        self._expire_gaps(0.0, force=True)
        self._closed = True
        return self._delivered[before:]

    # -- readers -------------------------------------------------------------

    def entries_since(self, cursor: int) -> list[StreamEntry]:
        """Return delivered entries from position *cursor* onward."""
        return self._delivered[cursor:]

    def entries(self) -> list[StreamEntry]:
        return list(self._delivered)

    def segments(self) -> list[TranscriptSegment]:
        """All delivered segments in sequence order, without gap markers."""
        return [e for e in self._delivered if isinstance(e, TranscriptSegment)]

    def recent_segments(self, count: int) -> list[TranscriptSegment]:
        """The last *count* delivered segments."""
        if count <= 0:
            return []
        recent: list[TranscriptSegment] = []
        for entry in reversed(self._delivered):
            if isinstance(entry, TranscriptSegment):
                recent.append(entry)
                if len(recent) == count:
                    break
        recent.reverse()
        return recent

    def reader(self) -> StreamReader:
        return StreamReader(self)

    # -- internals -----------------------------------------------------------

    def _deliver(self, entry: StreamEntry) -> None:
        self._delivered.append(entry)
        for listener in self._listeners:
            listener(entry)

    def _drain(self) -> None:
        """Deliver buffered segments contiguous with the watermark."""
        while self._watermark + 1 in self._pending:
            segment, _ = self._pending.pop(self._watermark + 1)
            self._watermark = segment.sequence_id
            self._deliver(segment)

    def _expire_gaps(self, timeout_s: float, force: bool = False) -> None:
        """Skip the gap at the head of the buffer once it has been open for *timeout_s*.

        A gap is considered open since the earliest arrival among the segments
        waiting behind it.
        """
        now = self._clock()
        while self._pending:
            opened_at = min(arrived for _, arrived in self._pending.values())
            if not force and now - opened_at < timeout_s:
                return
            head = min(self._pending)
            gap = Gap(start_seq=self._watermark + 1, end_seq=head - 1)
            logger.info("Declaring transcript gap %d-%d permanent", gap.start_seq, gap.end_seq)
            self._watermark = gap.end_seq
            self._deliver(gap)
            self._drain()


class StreamReader:
    """Cursor over an ingestor's delivered entries; each reader tracks its own position."""

    def __init__(self, ingestor: TranscriptIngestor) -> None:
        self._ingestor = ingestor
        self._cursor = 0

    @property
    def cursor(self) -> int:
        return self._cursor

    def read(self) -> list[StreamEntry]:
        """Return entries delivered since the previous read."""
        entries = self._ingestor.entries_since(self._cursor)
        self._cursor += len(entries)
        return entries
