"""Supabase-backed corpus: pgvector hybrid search with OpenAI embeddings."""

from __future__ import annotations

import os
from typing import Any, cast

import httpx
import openai
from openai import OpenAI
from postgrest.exceptions import APIError as PostgrestAPIError
from supabase import Client, create_client

from src.errors import UpstreamUnavailable
from src.retrieval.corpus import best_snippet, tokenize
from src.retrieval.models import CorpusDocument, CorpusHit, SourceTier

DOCUMENTS_TABLE = "documents"
SEARCH_RPC = "search_documents"

# Only the tail of a long live context is folded into the query embedding.
CONTEXT_TAIL_CHARS = 1000


def get_supabase_client(url: str | None = None, key: str | None = None) -> Client:
    """Create and return a Supabase client, defaulting to environment variables."""
    return create_client(
        url or os.getenv("SUPABASE_URL", ""),
        key or os.getenv("SUPABASE_KEY", ""),
    )


class SupabaseCorpus:
    """Corpus collaborator backed by the ``documents`` table and ``search_documents`` RPC.

    Both are created by ``supabase/migrations/20250120000000_knowledge_documents.sql``.

    Args:
        client: Supabase client.
        openai_api_key: Key for the embeddings API.
        embedding_model: OpenAI embedding model name.
        vector_weight: Weight for semantic similarity score.
        text_weight: Weight for keyword match score.
    """

    def __init__(
        self,
        client: Client,
        openai_api_key: str,
        embedding_model: str = "text-embedding-3-small",
        vector_weight: float = 0.7,
        text_weight: float = 0.3,
    ) -> None:
        self._client = client
        self._openai = OpenAI(api_key=openai_api_key)
        self._embedding_model = embedding_model
        self._vector_weight = vector_weight
        self._text_weight = text_weight

    def _embed(self, text: str) -> list[float]:
        response = self._openai.embeddings.create(input=[text], model=self._embedding_model)
        return response.data[0].embedding

    def index(self, document: CorpusDocument) -> None:
        try:
            embedding = self._embed(document.content)
            self._client.table(DOCUMENTS_TABLE).upsert(
                {
                    "id": document.id,
                    "source_label": document.source_label,
                    "content": document.content,
                    "priority_tier": document.priority_tier.value,
                    "embedding": embedding,
                }
            ).execute()
        except (openai.APIError, PostgrestAPIError, httpx.HTTPError) as exc:
            raise UpstreamUnavailable(f"Corpus indexing failed: {exc}") from exc

    def search(self, query: str, context: str = "", limit: int = 10) -> list[CorpusHit]:
        embed_text = f"{query}\n{context[-CONTEXT_TAIL_CHARS:]}" if context else query
        try:
            embedding = self._embed(embed_text)
            result = self._client.rpc(
                SEARCH_RPC,
                {
                    "query_embedding": embedding,
                    "query_text": query,
                    "match_count": limit,
                    "vector_weight": self._vector_weight,
                    "text_weight": self._text_weight,
                },
            ).execute()
        except (openai.APIError, PostgrestAPIError, httpx.HTTPError) as exc:
            raise UpstreamUnavailable(f"Corpus search failed: {exc}") from exc

        # Supabase .data is typed as JSON (broad union); cast to concrete type.
        rows = cast(list[dict[str, Any]], result.data)
        query_terms = set(tokenize(query))
        return [
            CorpusHit(
                source_id=str(row.get("id") or ""),
                source_label=row.get("source_label") or "",
                snippet=best_snippet(row.get("content") or "", query_terms),
                score=float(row.get("combined_score") or 0.0),
                tier=SourceTier(row.get("priority_tier") or SourceTier.DOCUMENT),
                indexed_seq=int(row.get("indexed_seq") or 0),
            )
            for row in rows
        ]
