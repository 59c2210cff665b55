"""In-process knowledge corpus with lexical relevance scoring.

Scores are idf-weighted query-term coverage in ``[0, 1]``, blended with a
cosine similarity against the session context.  A document sharing no term
with the query scores 0 whatever the context says.
"""

from __future__ import annotations

import itertools
import math
import re
import threading
from collections import Counter
from typing import Protocol

from src.retrieval.models import CorpusDocument, CorpusHit

_TOKEN_RE = re.compile(r"[a-z0-9]+")
_SENTENCE_SPLIT_RE = re.compile(r"(?<=[.!?])\s+")
SNIPPET_MAX_CHARS = 240

STOPWORDS = frozenset(
    "a an and are as at be by can do for from has have how i in is it of on or our "
    "should that the their this to we what when which who will with you your".split()
)


class KnowledgeCorpus(Protocol):
    """Search capability a corpus collaborator must expose.

    Implementations raise :class:`~src.errors.UpstreamUnavailable` when the
    backing store cannot be reached.
    """

    def search(self, query: str, context: str, limit: int) -> list[CorpusHit]: ...

    def index(self, document: CorpusDocument) -> None: ...


def tokenize(text: str) -> list[str]:
    return [t for t in _TOKEN_RE.findall(text.lower()) if t not in STOPWORDS]


def _cosine(a: Counter[str], b: Counter[str]) -> float:
    if not a or not b:
        return 0.0
    dot = sum(count * b[term] for term, count in a.items() if term in b)
    norm = math.sqrt(sum(v * v for v in a.values())) * math.sqrt(sum(v * v for v in b.values()))
    return dot / norm if norm else 0.0


def best_snippet(content: str, query_terms: set[str]) -> str:
    """The sentence with the most query terms, truncated for display."""
    sentences = [s for s in _SENTENCE_SPLIT_RE.split(content.strip()) if s]
    if not sentences:
        return ""
    best = max(sentences, key=lambda s: len(query_terms & set(tokenize(s))))
    if len(best) > SNIPPET_MAX_CHARS:
        best = best[: SNIPPET_MAX_CHARS - 3].rstrip() + "..."
    return best


class InMemoryCorpus:
    """Thread-safe in-memory corpus.

    Args:
        context_weight: Share of the score taken from similarity to the
            session context (0 disables context blending).
    """

    def __init__(self, context_weight: float = 0.2) -> None:
        self._context_weight = context_weight
        self._lock = threading.Lock()
        self._docs: dict[str, tuple[CorpusDocument, Counter[str], int]] = {}
        self._seq = itertools.count(1)

    def __len__(self) -> int:
        return len(self._docs)

    def index(self, document: CorpusDocument) -> None:
        """Add or replace a document; re-indexing makes it the most recent."""
        with self._lock:
            self._docs[document.id] = (document, Counter(tokenize(document.content)), next(self._seq))

    def documents(self) -> list[CorpusDocument]:
        with self._lock:
            return [doc for doc, _, _ in self._docs.values()]

    def _idf(self, term: str, entries: list[tuple[CorpusDocument, Counter[str], int]]) -> float:
        df = sum(1 for _, terms, _ in entries if term in terms)
        return math.log((len(entries) + 1) / (df + 0.5))

    def search(self, query: str, context: str = "", limit: int = 10) -> list[CorpusHit]:
        with self._lock:
            entries = list(self._docs.values())
        query_terms = set(tokenize(query))
        if not query_terms or not entries:
            return []

        idf = {term: self._idf(term, entries) for term in query_terms}
        total = sum(idf.values())
        context_vec = Counter(tokenize(context))

        hits: list[CorpusHit] = []
        for doc, terms, seq in entries:
            matched = [t for t in query_terms if t in terms]
            if not matched or total <= 0:
                continue
            score = sum(idf[t] for t in matched) / total
            if context_vec and self._context_weight:
                score = (1 - self._context_weight) * score + self._context_weight * _cosine(
                    context_vec, terms
                )
            hits.append(
                CorpusHit(
                    source_id=doc.id,
                    source_label=doc.source_label,
                    snippet=best_snippet(doc.content, query_terms),
                    score=round(score, 4),
                    tier=doc.priority_tier,
                    indexed_seq=seq,
                )
            )

        hits.sort(key=lambda h: (-h.score, -h.indexed_seq))
        return hits[:limit]
