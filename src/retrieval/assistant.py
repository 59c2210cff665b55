"""Knowledge retrieval assistant: ranked, source-attributed answers to advisor queries."""

from __future__ import annotations

import logging
from collections.abc import Sequence

from tenacity import (
    Retrying,
    before_sleep_log,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from src.errors import UpstreamUnavailable, ValidationError
from src.ingestion.ingestor import TranscriptIngestor
from src.ingestion.models import TranscriptSegment
from src.pipeline_config import SessionConfig
from src.retrieval.corpus import KnowledgeCorpus
from src.retrieval.models import (
    TIER_PRIORITY,
    CorpusHit,
    RetrievalHit,
    RetrievalMode,
    RetrievalQuery,
    RetrievalResult,
)

logger = logging.getLogger(__name__)


def rank_hits(hits: Sequence[CorpusHit], epsilon: float) -> list[CorpusHit]:
    """Order hits by score, letting higher-priority tiers win near-ties.

    Hits are sorted by score (recency breaks exact ties), then split into
    bands whose scores lie within *epsilon* of the band's best.  Inside a
    band the source tier decides first, so a compliance source is never
    outranked by catalog content scoring about the same.
    """
    ordered = sorted(hits, key=lambda h: (-h.score, -h.indexed_seq))
    ranked: list[CorpusHit] = []
    i = 0
    while i < len(ordered):
        head = ordered[i].score
        j = i
        while j < len(ordered) and head - ordered[j].score <= epsilon:
            j += 1
        band = sorted(
            ordered[i:j],
            key=lambda h: (TIER_PRIORITY[h.tier], -h.score, -h.indexed_seq),
        )
        ranked.extend(band)
        i = j
    return ranked


def _transcript_text(segments: Sequence[TranscriptSegment]) -> str:
    return "\n".join(f"{s.speaker_id}: {s.text}" for s in segments)


class KnowledgeAssistant:
    """Answers free-text queries against a corpus with session context.

    Args:
        corpus: The corpus collaborator.
        config: Session configuration.
        transcript: The session's transcript stream, if any.  Live queries use
            its most recent segments as context; post-meeting queries use all of it.
    """

    def __init__(
        self,
        corpus: KnowledgeCorpus,
        config: SessionConfig,
        transcript: TranscriptIngestor | None = None,
    ) -> None:
        self._corpus = corpus
        self._config = config
        self._transcript = transcript

    def context_for(self, query: RetrievalQuery) -> str:
        if self._transcript is None:
            return ""
        if query.mode is RetrievalMode.POST_MEETING:
            return _transcript_text(self._transcript.segments())
        window = query.context_window or self._config.live_context_segments
        return _transcript_text(self._transcript.recent_segments(window))

    def answer(self, query: RetrievalQuery) -> RetrievalResult:
        """Return ranked, attributed hits for *query*.

        An empty result (``no_match``) is returned when nothing in the corpus
        matches; nothing is ever made up.

        Raises:
            ValidationError: Blank query text.
            UpstreamUnavailable: The corpus stayed unreachable through the retry budget.
        """
        if not query.text.strip():
            raise ValidationError("Query text must not be empty")

        context = self.context_for(query)
        limit = self._config.retrieval_max_results
        hits = self._search(query.text, context, limit * 2)

        attributed = []
        for hit in hits:
            if not hit.source_id:
                logger.warning("Dropping corpus hit without a source id: %r", hit.snippet[:60])
                continue
            attributed.append(hit)

        ranked = rank_hits(attributed, self._config.compliance_epsilon)[:limit]
        if not ranked:
            logger.info("No corpus match for %r (%s)", query.text, query.mode)
        return RetrievalResult(
            hits=tuple(
                RetrievalHit(
                    snippet=h.snippet,
                    source_id=h.source_id,
                    source_label=h.source_label,
                    score=h.score,
                    tier=h.tier,
                )
                for h in ranked
            ),
            mode=query.mode,
        )

    def _search(self, text: str, context: str, limit: int) -> list[CorpusHit]:
        backoff = self._config.corpus_backoff_s
        for attempt in Retrying(
            stop=stop_after_attempt(self._config.corpus_max_attempts),
            wait=wait_exponential(multiplier=backoff, min=backoff, max=backoff * 8),
            retry=retry_if_exception_type(UpstreamUnavailable),
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        ):
            with attempt:
                return self._corpus.search(text, context, limit)
        raise AssertionError("unreachable")  # pragma: no cover
