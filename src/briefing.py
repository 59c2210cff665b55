"""Pre-meeting brief: who is attending, what is still open, and what to raise."""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from enum import StrEnum

from src.retrieval.corpus import KnowledgeCorpus
from src.retrieval.models import SourceTier
from src.tasks.models import Task

MAX_SUGGESTED_SERVICES = 4


class RiskType(StrEnum):
    COMPLIANCE = "compliance"
    RISK = "risk"
    REGULATORY = "regulatory"


class RiskSeverity(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


_SEVERITY_ORDER = {RiskSeverity.HIGH: 0, RiskSeverity.MEDIUM: 1, RiskSeverity.LOW: 2}


@dataclass(frozen=True)
class Participant:
    name: str
    role: str
    email: str = ""
    is_advisor: bool = False


@dataclass(frozen=True)
class RiskFlag:
    type: RiskType
    message: str
    severity: RiskSeverity = RiskSeverity.MEDIUM


@dataclass(frozen=True)
class MeetingBrief:
    """Everything the advisor should see before the meeting starts."""

    title: str
    scheduled_at: str
    participants: tuple[Participant, ...]
    previous_highlights: tuple[str, ...]
    open_tasks: tuple[Task, ...]
    risk_flags: tuple[RiskFlag, ...]
    suggested_services: tuple[str, ...] = field(default_factory=tuple)

    @property
    def advisors(self) -> list[Participant]:
        return [p for p in self.participants if p.is_advisor]

    @property
    def clients(self) -> list[Participant]:
        return [p for p in self.participants if not p.is_advisor]


def suggest_services(
    corpus: KnowledgeCorpus,
    prompts: Iterable[str],
    limit: int = MAX_SUGGESTED_SERVICES,
) -> list[str]:
    """Look up catalog products relevant to *prompts*, best match first.

    Each prompt (a previous highlight or an agenda topic) is searched
    separately; only product-catalog hits are kept, deduplicated by label.
    """
    scored: dict[str, float] = {}
    for prompt in prompts:
        if not prompt.strip():
            continue
        for hit in corpus.search(prompt, "", limit):
            if hit.tier is not SourceTier.PRODUCT_CATALOG or not hit.source_id:
                continue
            scored[hit.source_label] = max(scored.get(hit.source_label, 0.0), hit.score)
    ranked = sorted(scored.items(), key=lambda item: -item[1])
    return [label for label, _ in ranked[:limit]]


def build_brief(
    title: str,
    scheduled_at: str,
    participants: Sequence[Participant],
    previous_highlights: Sequence[str],
    tasks: Iterable[Task],
    risk_flags: Sequence[RiskFlag] = (),
    corpus: KnowledgeCorpus | None = None,
    agenda_topics: Sequence[str] = (),
) -> MeetingBrief:
    """Assemble the pre-meeting brief.

    Args:
        title: Meeting title.
        scheduled_at: ISO timestamp of the scheduled start.
        participants: Attendees, advisors and clients.
        previous_highlights: Notes carried over from the last meeting.
        tasks: Known tasks; only non-terminal ones are listed as open.
        risk_flags: Flags to surface; listed most severe first.
        corpus: When given, used to suggest catalog services.
        agenda_topics: Extra search prompts for service suggestions.

    Returns:
        The assembled :class:`MeetingBrief`.
    """
    services: list[str] = []
    if corpus is not None:
        services = suggest_services(corpus, [*previous_highlights, *agenda_topics])

    return MeetingBrief(
        title=title,
        scheduled_at=scheduled_at,
        participants=tuple(participants),
        previous_highlights=tuple(previous_highlights),
        open_tasks=tuple(t for t in tasks if not t.is_terminal),
        risk_flags=tuple(sorted(risk_flags, key=lambda f: _SEVERITY_ORDER[f.severity])),
        suggested_services=tuple(services),
    )
