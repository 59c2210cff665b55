"""Document feed endpoint: add or update a knowledge corpus document."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from src.api.deps import get_store, http_error
from src.api.models import DocumentIn, DocumentResponse
from src.errors import PipelineError
from src.retrieval.models import CorpusDocument
from src.session import SessionStore

router = APIRouter()


@router.post("/api/documents", response_model=DocumentResponse, status_code=201)
def index_document(
    document: DocumentIn,
    store: SessionStore = Depends(get_store),
) -> DocumentResponse:
    """Index a document into the shared corpus, replacing any with the same id."""
    if not document.id.strip() or not document.content.strip():
        raise HTTPException(status_code=422, detail="Document id and content are required")
    try:
        store.corpus.index(
            CorpusDocument(
                id=document.id,
                source_label=document.source_label or document.id,
                content=document.content,
                priority_tier=document.priority_tier,
            )
        )
    except PipelineError as exc:
        raise http_error(exc) from exc
    return DocumentResponse(id=document.id)
