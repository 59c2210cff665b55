"""Query endpoint: ranked, source-attributed answers from the knowledge corpus."""

from __future__ import annotations

from fastapi import APIRouter, Depends

from src.api.deps import get_store, http_error
from src.api.models import HitOut, QueryRequest, QueryResponse
from src.config import get_settings
from src.errors import PipelineError
from src.retrieval.generation import synthesize_answer
from src.retrieval.models import RetrievalQuery
from src.session import SessionStore

router = APIRouter()


@router.post("/api/sessions/{session_id}/query", response_model=QueryResponse)
def query(
    session_id: str,
    request: QueryRequest,
    store: SessionStore = Depends(get_store),
) -> QueryResponse:
    """Answer an advisor's question during or after the meeting.

    Live queries use the recent transcript as context; post-meeting queries
    use the whole transcript.  With ``synthesize`` set, Claude writes a short
    cited answer over the hits; otherwise only the hits are returned.
    """
    try:
        session = store.get(session_id)
        result = session.answer(
            RetrievalQuery(
                text=request.question,
                mode=request.mode,
                context_window=request.context_window,
            )
        )
    except PipelineError as exc:
        raise http_error(exc) from exc

    response = QueryResponse(
        mode=result.mode,
        no_match=result.no_match,
        hits=[HitOut.model_validate(h) for h in result.hits],
    )
    if not request.synthesize or result.no_match:
        return response

    settings = get_settings()
    try:
        generated = synthesize_answer(
            request.question,
            result,
            api_key=settings.anthropic_api_key,
            model=settings.llm_model,
        )
    except PipelineError as exc:
        # Claude overloaded or unreachable: return 503 so the browser still
        # receives a JSON response with CORS headers intact.
        raise http_error(exc) from exc

    response.answer = generated["answer"]
    response.model = generated.get("model")
    response.usage = generated.get("usage")
    return response
