"""
Text generation node: one-shot and token-streaming variants.

Both return a NodeResult and never raise for provider errors; the streaming
variant also reports through on_chunk / on_finish / on_error so callers can
forward tokens as they arrive.
"""
from __future__ import annotations

import logging
from typing import Any, Callable, Dict, List, Optional

from workflows_ai.agents.callbacks import invoke_callback, invoke_error_callback
from workflows_ai.llm.gemini import build_contents, finish_reason, generation_config, usage_from_response
from workflows_ai.models.results import NodeResult, NodeSuccess, node_failure, now_ms

logger = logging.getLogger(__name__)


async def generate_text(
    client: Any,
    *,
    prompt: str,
    model: str,
    temperature: float = 0.7,
    max_tokens: int = 2048,
    system_prompt: str = "",
    messages: Optional[List[Dict[str, Any]]] = None,
) -> NodeResult:
    try:
        response = await client.aio.models.generate_content(
            model=model,
            contents=build_contents(prompt, messages),
            config=generation_config(
                temperature=temperature, max_tokens=max_tokens, system_prompt=system_prompt
            ),
        )
        return NodeSuccess(
            text=response.text or "",
            usage=usage_from_response(response),
            metadata={"model": model, "finishReason": finish_reason(response), "timestamp": now_ms()},
        )
    except Exception as e:
        logger.warning("Text generation with %s failed: %s", model, e)
        return node_failure(e, model=model)


async def stream_text(
    client: Any,
    *,
    prompt: str,
    model: str,
    temperature: float = 0.7,
    max_tokens: int = 2048,
    system_prompt: str = "",
    messages: Optional[List[Dict[str, Any]]] = None,
    on_chunk: Optional[Callable[[str, str], Any]] = None,
    on_finish: Optional[Callable[[NodeSuccess], Any]] = None,
    on_error: Optional[Callable[[BaseException], Any]] = None,
) -> NodeResult:
    """
    Stream tokens from the model.

    on_chunk(chunk, full_text) is awaited for every non-empty delta, in order.
    Exactly one of on_finish(result) / on_error(exc) fires at the end.
    """
    full_text = ""
    usage = None
    reason = None
    try:
        stream = await client.aio.models.generate_content_stream(
            model=model,
            contents=build_contents(prompt, messages),
            config=generation_config(
                temperature=temperature, max_tokens=max_tokens, system_prompt=system_prompt
            ),
        )
        async for chunk in stream:
            usage = usage_from_response(chunk) or usage
            reason = finish_reason(chunk) or reason
            piece = chunk.text or ""
            if not piece:
                continue
            full_text += piece
            await invoke_callback(on_chunk, piece, full_text)
    except Exception as e:
        logger.warning("Text stream with %s failed after %d chars: %s", model, len(full_text), e)
        await invoke_error_callback(on_error, e)
        return node_failure(e, model=model, partialText=full_text)

    result = NodeSuccess(
        text=full_text,
        usage=usage,
        metadata={"model": model, "finishReason": reason, "timestamp": now_ms()},
    )
    await invoke_callback(on_finish, result)
    return result
