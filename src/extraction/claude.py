"""Claude-powered action-item detection using tool-use structured output."""

from __future__ import annotations

import json
from collections.abc import Sequence
from typing import Any

from anthropic import Anthropic, APIError

from src.errors import UpstreamUnavailable
from src.extraction.models import Detection
from src.ingestion.models import TranscriptSegment

# Tool definition for Claude structured output
DETECTION_TOOL: dict[str, Any] = {
    "name": "record_action_items",
    "description": (
        "Record the action items found in one speaker turn of a client meeting. "
        "Call this once, with an empty list if the turn contains no action item."
    ),
    "input_schema": {
        "type": "object",
        "properties": {
            "action_items": {
                "type": "array",
                "description": "Action items: tasks someone committed to or was asked to do.",
                "items": {
                    "type": "object",
                    "properties": {
                        "description": {
                            "type": "string",
                            "description": "Short imperative description of the task.",
                        },
                        "owner": {
                            "type": "string",
                            "description": "Person who should do it (null if unclear).",
                        },
                        "due_date": {
                            "type": "string",
                            "description": "Deadline if mentioned (free-form text, e.g. 'next Friday').",
                        },
                        "category": {
                            "type": "string",
                            "description": (
                                "One of Scheduling, Tax Planning, Investment, "
                                "Documentation, Analysis, General."
                            ),
                        },
                        "confidence": {
                            "type": "number",
                            "description": "Confidence score 0-1.",
                        },
                    },
                    "required": ["description", "confidence"],
                },
            },
        },
        "required": ["action_items"],
    },
}

SYSTEM_PROMPT = (
    "You are a meeting intelligence assistant for a financial advisor. You read "
    "one speaker turn at a time from a live client meeting transcript and record "
    "action items: commitments, requests and follow-ups.\n\n"
    "Use the record_action_items tool to return your results. Report weak or "
    "tentative items too, with a low confidence score (0-1); do not drop them."
)


class ClaudeDetector:
    """Detects action items in a speaker turn with Claude.

    Args:
        api_key: Anthropic API key.
        model: Claude model name.
        client: Optional pre-built client (tests inject a mock).
    """

    def __init__(self, api_key: str, model: str, client: Anthropic | None = None) -> None:
        self._client = client or Anthropic(api_key=api_key)
        self._model = model

    def detect(self, turn: Sequence[TranscriptSegment]) -> list[Detection]:
        if not turn:
            return []
        speaker = turn[0].speaker_id
        text = " ".join(s.text for s in turn)
        try:
            response = self._client.messages.create(
                model=self._model,
                max_tokens=1024,
                system=SYSTEM_PROMPT,
                tools=[DETECTION_TOOL],
                tool_choice={"type": "tool", "name": "record_action_items"},
                messages=[{"role": "user", "content": f"{speaker}: {text}"}],
            )
        except APIError as exc:
            raise UpstreamUnavailable(f"Extraction model unavailable: {exc}") from exc

        return _parse_tool_response(response)


def _parse_tool_response(response: Any) -> list[Detection]:
    """Parse the Claude tool_use response into a Detection list."""
    detections: list[Detection] = []

    for block in response.content:
        if block.type != "tool_use":
            continue
        if block.name != "record_action_items":
            continue

        data = block.input
        if isinstance(data, str):
            data = json.loads(data)

        for item in data.get("action_items", []):
            confidence = float(item.get("confidence", 0.0))
            detections.append(
                Detection(
                    description=item["description"],
                    confidence=min(max(confidence, 0.0), 1.0),
                    owner=item.get("owner"),
                    due_date=item.get("due_date"),
                    category=item.get("category") or "General",
                )
            )

    return detections
