"""Session configuration: strategy enums and the per-session SessionConfig dataclass."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from src.config import Settings


class ExtractionBackend(str, Enum):
    """Available action-item detectors."""

    RULES = "rules"
    CLAUDE = "claude"


# Default advisory checklist for a client portfolio review: topic -> trigger keywords.
DEFAULT_TOPIC_CHECKLIST: dict[str, tuple[str, ...]] = {
    "portfolio performance": ("performance", "return", "returns"),
    "risk tolerance": ("risk tolerance", "risk profile", "volatility"),
    "tax planning": ("tax", "taxes"),
    "estate planning": ("estate", "inheritance", "trust"),
    "ESG investments": ("esg", "sustainable", "impact investing"),
}


@dataclass(frozen=True)
class SessionConfig:
    """Immutable configuration for one meeting session.

    Passed explicitly into every pipeline component at construction.  Use
    :meth:`from_settings` to derive one from the application settings.
    """

    gap_timeout_ms: int = 5000
    extraction_backend: ExtractionBackend = ExtractionBackend.RULES
    visibility_threshold: float = 0.5
    dispatch_max_attempts: int = 5
    dispatch_backoff_min_s: float = 0.5
    dispatch_backoff_max_s: float = 30.0
    dispatch_workers: int = 4
    compliance_epsilon: float = 0.02
    live_context_segments: int = 8
    context_weight: float = 0.2
    retrieval_max_results: int = 5
    corpus_max_attempts: int = 3
    corpus_backoff_s: float = 0.2
    scheduled_duration_ms: int = 45 * 60 * 1000
    time_reminder_fraction: float = 0.75
    topic_checklist: dict[str, tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_TOPIC_CHECKLIST)
    )

    @classmethod
    def from_settings(cls, settings: Settings, **overrides: object) -> SessionConfig:
        """Build a session config from application settings plus per-session overrides."""
        base = cls(
            gap_timeout_ms=settings.gap_timeout_ms,
            extraction_backend=ExtractionBackend(settings.extraction_backend),
            visibility_threshold=settings.visibility_threshold,
            dispatch_max_attempts=settings.dispatch_max_attempts,
            dispatch_backoff_min_s=settings.dispatch_backoff_min_s,
            dispatch_backoff_max_s=settings.dispatch_backoff_max_s,
            dispatch_workers=settings.dispatch_workers,
            compliance_epsilon=settings.compliance_epsilon,
            live_context_segments=settings.live_context_segments,
            context_weight=settings.context_weight,
            retrieval_max_results=settings.retrieval_max_results,
            corpus_max_attempts=settings.corpus_max_attempts,
            corpus_backoff_s=settings.corpus_backoff_s,
            scheduled_duration_ms=settings.scheduled_duration_min * 60 * 1000,
            time_reminder_fraction=settings.time_reminder_fraction,
        )
        return replace(base, **overrides)  # type: ignore[arg-type]
