"""Speaker-turn grouping and chunking of the ordered transcript stream."""

from __future__ import annotations

from collections.abc import Iterable

from src.ingestion.models import Chunk, Gap, StreamEntry, TranscriptSegment


def group_speaker_turns(entries: Iterable[StreamEntry]) -> list[list[TranscriptSegment]]:
    """Group consecutive segments by the same speaker.

    A :class:`Gap` always ends the current turn: nothing is assumed about
    what was said in the missing audio.
    """
    turns: list[list[TranscriptSegment]] = []
    current: list[TranscriptSegment] = []
    for entry in entries:
        if isinstance(entry, Gap):
            if current:
                turns.append(current)
            current = []
            continue
        if current and current[-1].speaker_id != entry.speaker_id:
            turns.append(current)
            current = []
        current.append(entry)
    if current:
        turns.append(current)
    return turns


def speaker_turn_chunk(
    entries: Iterable[StreamEntry],
    max_chunk_words: int = 500,
) -> list[Chunk]:
    """Chunk a transcript by speaker turn.

    If a single speaker turn exceeds *max_chunk_words* words it is split
    into smaller chunks.

    Args:
        entries: Ordered stream entries (segments and gap markers).
        max_chunk_words: Maximum word count per chunk.

    Returns:
        List of :class:`Chunk` instances in transcript order.
    """
    chunks: list[Chunk] = []
    chunk_idx = 0

    for turn in group_speaker_turns(entries):
        combined_text = " ".join(s.text for s in turn)
        words = combined_text.split()
        first, last = turn[0], turn[-1]

        if len(words) <= max_chunk_words:
            pieces = [combined_text]
        else:
            # Split long turn into sub-chunks
            pieces = [
                " ".join(words[pos : pos + max_chunk_words])
                for pos in range(0, len(words), max_chunk_words)
            ]

        for piece in pieces:
            chunks.append(
                Chunk(
                    content=piece,
                    speaker=first.speaker_id,
                    start_offset_ms=first.start_offset_ms,
                    end_offset_ms=last.end_offset_ms,
                    first_seq=first.sequence_id,
                    last_seq=last.sequence_id,
                    chunk_index=chunk_idx,
                )
            )
            chunk_idx += 1

    return chunks
