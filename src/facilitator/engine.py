"""Facilitator advisory engine.

A pure view over session state: topic coverage against the checklist, time
used against the schedule, and open follow-up tasks.  No I/O, cheap enough
to recompute on every stream entry or task change.
"""

from __future__ import annotations

import re

from src.facilitator.models import AdvisoryKind, AdvisoryPrompt, SessionState
from src.ingestion.chunking import group_speaker_turns
from src.tasks.models import TaskStatus

_FOLLOW_UP_RE = re.compile(r"\bfollow[\s-]?up\b", re.IGNORECASE)

_OPEN_STATUSES = frozenset(
    {TaskStatus.PROPOSED, TaskStatus.TODO, TaskStatus.IN_PROGRESS, TaskStatus.DONE}
)


def covered_topics(state: SessionState) -> set[str]:
    """Checklist topics whose keywords appear in the transcript so far.

    Keywords are matched within one speaker turn at a time, so a phrase is
    never stitched together across a gap or a change of speaker.
    """
    turns = [
        " ".join(s.text.lower() for s in turn) for turn in group_speaker_turns(state.entries)
    ]
    covered: set[str] = set()
    for topic, keywords in state.topic_checklist.items():
        patterns = [re.compile(rf"\b{re.escape(k.lower())}\b") for k in keywords]
        if any(p.search(text) for p in patterns for text in turns):
            covered.add(topic)
    return covered


def _time_reminder(state: SessionState, reminder_fraction: float) -> AdvisoryPrompt | None:
    if state.scheduled_ms <= 0:
        return None
    if state.elapsed_ms >= state.scheduled_ms:
        over = (state.elapsed_ms - state.scheduled_ms) // 60_000
        return AdvisoryPrompt(
            kind=AdvisoryKind.TIME_REMINDER,
            message=f"Scheduled time is over by {over} minutes.",
        )
    if state.elapsed_ms >= state.scheduled_ms * reminder_fraction:
        remaining = -(-(state.scheduled_ms - state.elapsed_ms) // 60_000)  # ceil
        return AdvisoryPrompt(
            kind=AdvisoryKind.TIME_REMINDER,
            message=f"{remaining} minutes remaining in scheduled time.",
        )
    return None


def evaluate(state: SessionState, reminder_fraction: float = 0.75) -> list[AdvisoryPrompt]:
    """Compute the current advisory prompts.

    Order: uncovered-topic suggestions (checklist order), then the time
    reminder, then one follow-up prompt per open follow-up task.
    """
    prompts: list[AdvisoryPrompt] = []

    covered = covered_topics(state)
    for topic in state.topic_checklist:
        if topic not in covered:
            prompts.append(
                AdvisoryPrompt(
                    kind=AdvisoryKind.SUGGESTION,
                    message=f"You haven't covered {topic} yet. Consider bringing it up.",
                    topic=topic,
                )
            )

    reminder = _time_reminder(state, reminder_fraction)
    if reminder is not None:
        prompts.append(reminder)

    for task in state.tasks:
        if task.status not in _OPEN_STATUSES:
            continue
        if task.status is TaskStatus.PROPOSED and (task.confidence or 0.0) < state.visibility_threshold:
            continue
        if task.category == "Scheduling" or _FOLLOW_UP_RE.search(task.description):
            prompts.append(
                AdvisoryPrompt(
                    kind=AdvisoryKind.FOLLOW_UP_DETECTED,
                    message=f"Follow-up detected. Consider scheduling: {task.description}.",
                    task_id=task.id,
                )
            )

    return prompts
