"""
Grounded web search through Gemini's built-in Google Search tool.

The answer text comes back with grounding metadata: the web pages consulted
(`grounding_chunks`) and which spans of the answer each page supports
(`grounding_supports`). Those are flattened into citations and sources.
"""
from __future__ import annotations

import logging
from typing import Any, Optional

from google.genai import types

from workflows_ai.llm.gemini import finish_reason, generation_config, usage_from_response
from workflows_ai.models.results import NodeResult, NodeSuccess, node_failure, now_ms

logger = logging.getLogger(__name__)

# The provider caps domain hints; extra ones are dropped
MAX_ALLOWED_DOMAINS = 20


def _grounding(response: Any) -> Any:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    return getattr(candidates[0], "grounding_metadata", None)


def extract_sources(response: Any) -> list[dict[str, Any]]:
    grounding = _grounding(response)
    sources = []
    for chunk in getattr(grounding, "grounding_chunks", None) or []:
        web = getattr(chunk, "web", None)
        if web is None:
            continue
        sources.append({"url": web.uri, "title": web.title})
    return sources


def extract_citations(response: Any) -> list[dict[str, Any]]:
    """One citation per (answer span, supporting page) pair."""
    grounding = _grounding(response)
    sources = extract_sources(response)
    citations = []
    for support in getattr(grounding, "grounding_supports", None) or []:
        segment = getattr(support, "segment", None)
        for chunk_index in getattr(support, "grounding_chunk_indices", None) or []:
            if chunk_index >= len(sources):
                continue
            citations.append(
                {
                    **sources[chunk_index],
                    "startIndex": getattr(segment, "start_index", None),
                    "endIndex": getattr(segment, "end_index", None),
                }
            )
    return citations


def search_queries(response: Any) -> list[str]:
    grounding = _grounding(response)
    return list(getattr(grounding, "web_search_queries", None) or [])


def _query_with_domains(query: str, allowed_domains: Optional[list[str]]) -> str:
    if not allowed_domains:
        return query
    domains = ", ".join(allowed_domains[:MAX_ALLOWED_DOMAINS])
    return f"{query}\n\nOnly use sources from these domains: {domains}"


async def web_search(
    client: Any,
    *,
    query: str,
    model: str,
    allowed_domains: Optional[list[str]] = None,
    include_sources: bool = False,
    temperature: float = 0.2,
) -> NodeResult:
    """
    Answer a query with Google Search grounding.

    Args:
        client: google-genai client
        query: The search question
        model: A model registered with the "search" capability
        allowed_domains: Optional domain hints, at most MAX_ALLOWED_DOMAINS are kept
        include_sources: Also return every page consulted, not only cited ones

    Returns:
        NodeSuccess with `text` (the grounded answer) and `object`
        {citations, searchQueries[, sources]}, or a NodeFailure.
    """
    try:
        response = await client.aio.models.generate_content(
            model=model,
            contents=_query_with_domains(query, allowed_domains),
            config=generation_config(
                temperature=temperature,
                tools=[types.Tool(google_search=types.GoogleSearch())],
            ),
        )
    except Exception as e:
        logger.warning("Web search with %s failed: %s", model, e)
        return node_failure(e, model=model)

    citations = extract_citations(response)
    sources = extract_sources(response)
    found: dict[str, Any] = {"citations": citations, "searchQueries": search_queries(response)}
    if include_sources:
        found["sources"] = sources

    return NodeSuccess(
        text=response.text or "",
        object=found,
        usage=usage_from_response(response),
        metadata={
            "model": model,
            "finishReason": finish_reason(response),
            "citationCount": len(citations),
            "sourceCount": len(sources),
            "timestamp": now_ms(),
        },
    )
