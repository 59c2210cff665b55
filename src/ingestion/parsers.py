"""Transcript file parsers (WebVTT and JSON) producing raw segments for replay.

Recorded meetings are replayed through the same :class:`TranscriptIngestor`
as a live feed.  Sequence ids are assigned by recording offset, not by the
order cues appear in the file.
"""

from __future__ import annotations

import json
import re
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from src.errors import ValidationError
from src.ingestion.models import RawSegment

UNKNOWN_SPEAKER = "unknown"


@dataclass
class _Cue:
    speaker: str
    text: str
    start_ms: int
    end_ms: int


def _parse_vtt_timestamp(ts: str) -> int:
    """Convert a VTT timestamp (HH:MM:SS.mmm) to milliseconds."""
    parts = ts.strip().split(":")
    if len(parts) == 3:
        hours, minutes, seconds = parts
    elif len(parts) == 2:
        hours = "0"
        minutes, seconds = parts
    else:
        return 0
    return round((int(hours) * 3600 + int(minutes) * 60 + float(seconds)) * 1000)


def assign_sequence_ids(cues: list[_Cue]) -> list[RawSegment]:
    """Number cues 1..n by recording offset (stable for equal offsets)."""
    ordered = sorted(cues, key=lambda c: (c.start_ms, c.end_ms))
    return [
        RawSegment(
            sequence_id=i,
            speaker_id=c.speaker,
            text=c.text,
            start_offset_ms=c.start_ms,
            end_offset_ms=c.end_ms,
        )
        for i, c in enumerate(ordered, start=1)
    ]


def parse_vtt(content: str) -> list[RawSegment]:
    """Parse a WebVTT file into raw segments.

    Handles timestamps like ``00:01:23.456 --> 00:01:30.789`` and speaker labels
    in two formats:

    - Standard colon-style: ``Emma Thompson: Hello``
    - Microsoft Teams inline voice tags: ``<v Emma Thompson>Hello</v>``

    Teams ``<v SpeakerName>`` tags take precedence over colon-style labels.
    """
    cues: list[_Cue] = []

    timestamp_re = re.compile(
        r"(\d{1,2}:\d{2}:\d{2}[.,]\d{3})\s*-->\s*(\d{1,2}:\d{2}:\d{2}[.,]\d{3})"
    )
    speaker_re = re.compile(r"^(.+?):\s+(.+)$")
    # The closing </v> tag is optional per the WebVTT spec.
    teams_voice_re = re.compile(r"^<v ([^>]+)>(.*?)(?:</v>)?$", re.DOTALL)

    lines = content.strip().splitlines()
    i = 0
    while i < len(lines):
        line = lines[i].strip()
        match = timestamp_re.search(line)
        if match:
            start = _parse_vtt_timestamp(match.group(1).replace(",", "."))
            end = _parse_vtt_timestamp(match.group(2).replace(",", "."))

            # Collect text lines until blank line or next timestamp / end
            text_lines: list[str] = []
            i += 1
            while i < len(lines) and lines[i].strip() and not timestamp_re.search(lines[i]):
                text_lines.append(lines[i].strip())
                i += 1

            full_text = " ".join(text_lines)
            speaker = UNKNOWN_SPEAKER

            teams_match = teams_voice_re.match(full_text)
            if teams_match:
                speaker = teams_match.group(1).strip()
                full_text = teams_match.group(2).strip()
            else:
                speaker_match = speaker_re.match(full_text)
                if speaker_match:
                    speaker = speaker_match.group(1)
                    full_text = speaker_match.group(2)

            if full_text:
                cues.append(_Cue(speaker=speaker, text=full_text, start_ms=start, end_ms=end))
        else:
            i += 1

    return assign_sequence_ids(cues)


def parse_json(content: str) -> list[RawSegment]:
    """Parse a JSON transcript (AssemblyAI or the internal feed format).

    AssemblyAI (times in milliseconds)::

        {"utterances": [{"speaker": "A", "text": "...", "start": ms, "end": ms}]}

    Internal feed format; explicit ``sequence_id`` values are kept as-is so a
    captured feed replays with its original numbering (and its gaps)::

        {"segments": [{"sequence_id": 1, "speaker_id": "...", "text": "...",
                       "start_offset_ms": 0, "end_offset_ms": 900}]}

    Raises:
        ValidationError: Not JSON, not an object, or an entry missing its text.
    """
    try:
        data = json.loads(content)
    except json.JSONDecodeError as exc:
        raise ValidationError(f"Transcript is not valid JSON: {exc}") from exc
    if not isinstance(data, dict):
        msg = f"JSON transcript must be an object, got {type(data).__name__}"
        raise ValidationError(msg)

    try:
        return _segments_from_json(data)
    except (KeyError, TypeError, ValueError, AttributeError) as exc:
        raise ValidationError(f"Malformed JSON transcript entry: {exc!r}") from exc


def _segments_from_json(data: dict[str, Any]) -> list[RawSegment]:
    if "utterances" in data:
        cues = [
            _Cue(
                speaker=str(utt.get("speaker") or UNKNOWN_SPEAKER),
                text=utt["text"],
                start_ms=int(utt.get("start", 0)),
                end_ms=int(utt.get("end", 0)),
            )
            for utt in data["utterances"]
        ]
        return assign_sequence_ids(cues)

    if "segments" in data:
        items = data["segments"]
        if all("sequence_id" in seg for seg in items):
            return [
                RawSegment(
                    sequence_id=int(seg["sequence_id"]),
                    speaker_id=str(seg.get("speaker_id") or UNKNOWN_SPEAKER),
                    text=seg["text"],
                    start_offset_ms=int(seg.get("start_offset_ms", 0)),
                    end_offset_ms=int(seg.get("end_offset_ms", 0)),
                )
                for seg in items
            ]
        cues = [
            _Cue(
                speaker=str(seg.get("speaker_id") or UNKNOWN_SPEAKER),
                text=seg["text"],
                start_ms=int(seg.get("start_offset_ms", 0)),
                end_ms=int(seg.get("end_offset_ms", 0)),
            )
            for seg in items
        ]
        return assign_sequence_ids(cues)

    msg = f"Unrecognized JSON transcript format. Keys: {list(data.keys())}"
    raise ValidationError(msg)


def parse_transcript(content: str, format: str) -> list[RawSegment]:
    """Dispatch to the correct parser based on *format* (``"vtt"`` or ``"json"``).

    Raises:
        ValidationError: If *format* is not recognized.
    """
    dispatch: dict[str, Callable[[str], list[RawSegment]]] = {
        "vtt": parse_vtt,
        "json": parse_json,
    }

    parser = dispatch.get(format)
    if parser is None:
        msg = f"Unknown transcript format: {format!r}. Supported: {list(dispatch.keys())}"
        raise ValidationError(msg)

    return parser(content)
