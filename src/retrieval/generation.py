"""Claude-powered answer synthesis over attributed retrieval hits."""

from __future__ import annotations

from typing import Any

from anthropic import Anthropic, APIError
from anthropic.types import TextBlock

from src.errors import UpstreamUnavailable, ValidationError
from src.retrieval.models import RetrievalResult

SYSTEM_PROMPT = (
    "You are a knowledge assistant for a financial advisor in a client meeting. "
    "Answer the question using only the numbered sources provided.\n\n"
    "Rules:\n"
    "- Cite every claim with [Source N] notation.\n"
    "- If the sources do not answer the question, say so.\n"
    "- Compliance sources take precedence over product material.\n"
    "- Be concise and direct."
)


def synthesize_answer(
    question: str,
    result: RetrievalResult,
    api_key: str,
    model: str,
    client: Anthropic | None = None,
) -> dict[str, Any]:
    """Write a short cited answer from the hits of *result*.

    The hits are returned alongside the text, so the answer never travels
    without its attribution.

    Raises:
        ValidationError: *result* has no hits (there is nothing to cite).
        UpstreamUnavailable: Claude could not be reached.
    """
    if result.no_match:
        raise ValidationError("Cannot synthesize an answer without sources")

    context = "\n\n".join(
        f"[Source {i + 1}] ({hit.tier}) {hit.source_label}: {hit.snippet}"
        for i, hit in enumerate(result.hits)
    )

    client = client or Anthropic(api_key=api_key)
    try:
        response = client.messages.create(
            model=model,
            max_tokens=1024,
            system=SYSTEM_PROMPT,
            messages=[
                {
                    "role": "user",
                    "content": f"Sources:\n\n{context}\n\nQuestion: {question}",
                }
            ],
        )
    except APIError as exc:
        raise UpstreamUnavailable(f"LLM unavailable: {exc}") from exc

    # response.content[0] is a union of block types; we always request plain text.
    block = response.content[0]
    if not isinstance(block, TextBlock):
        raise ValueError(f"Expected TextBlock from Claude, got {type(block).__name__}")

    return {
        "answer": block.text,
        "sources": list(result.hits),
        "model": response.model,
        "usage": {
            "input_tokens": response.usage.input_tokens,
            "output_tokens": response.usage.output_tokens,
        },
    }
