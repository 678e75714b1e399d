"""
Structured-data node: JSON output constrained by a SchemaDescriptor.
"""
from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Optional

from workflows_ai.agents.callbacks import invoke_callback, invoke_error_callback
from workflows_ai.llm.gemini import finish_reason, generation_config, usage_from_response
from workflows_ai.models.results import NodeResult, NodeSuccess, node_failure, now_ms
from workflows_ai.models.schema import SchemaDescriptor

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"^\s*```(?:json)?\s*|\s*```\s*$", re.IGNORECASE)

# how far back a truncated stream is walked looking for a clean cut
_MAX_REPAIR_WINDOW = 256


def _strip_fences(text: str) -> str:
    return _FENCE.sub("", text)


def _closers(text: str) -> Optional[str]:
    stack = []
    in_string = False
    escaped = False
    for ch in text:
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch in "{[":
            stack.append("}" if ch == "{" else "]")
        elif ch in "}]":
            if not stack or stack[-1] != ch:
                return None
            stack.pop()
    if escaped:
        return None
    return ('"' if in_string else "") + "".join(reversed(stack))


def parse_partial_json(text: str) -> Any:
    """
    Best-effort parse of a JSON document that may be cut off mid-stream.

    Open strings, objects and arrays are closed; a dangling key or separator
    is dropped. Returns None when nothing usable has arrived yet.
    """
    text = _strip_fences(text).strip()
    if not text:
        return None
    try:
        return json.loads(text)
    except ValueError:
        pass
    floor = max(0, len(text) - _MAX_REPAIR_WINDOW)
    for end in range(len(text), floor, -1):
        candidate = text[:end].rstrip().rstrip(",")
        if not candidate:
            break
        closers = _closers(candidate)
        if closers is None:
            continue
        try:
            return json.loads(candidate + closers)
        except ValueError:
            continue
    return None


def _parse_final(text: str, schema: SchemaDescriptor) -> tuple[Any, Optional[str]]:
    try:
        obj = json.loads(_strip_fences(text))
    except ValueError as e:
        return None, f"Model returned invalid JSON: {e}"
    violations = schema.validate_object(obj)
    if violations:
        return None, "Structured output did not match schema: " + "; ".join(violations)
    return obj, None


def _config(schema: SchemaDescriptor, temperature: float, system_prompt: str):
    return generation_config(
        temperature=temperature,
        system_prompt=system_prompt,
        response_mime_type="application/json",
        response_schema=schema.to_json_schema(),
    )


async def generate_structured(
    client: Any,
    *,
    prompt: str,
    schema: SchemaDescriptor,
    model: str,
    temperature: float = 0.3,
    system_prompt: str = "",
) -> NodeResult:
    try:
        response = await client.aio.models.generate_content(
            model=model,
            contents=prompt,
            config=_config(schema, temperature, system_prompt),
        )
    except Exception as e:
        logger.warning("Structured generation with %s failed: %s", model, e)
        return node_failure(e, model=model, schemaName=schema.name)

    obj, error = _parse_final(response.text or "", schema)
    if error:
        logger.warning("Structured output from %s rejected: %s", model, error)
        return node_failure(error, model=model, schemaName=schema.name)
    return NodeSuccess(
        object=obj,
        usage=usage_from_response(response),
        metadata={
            "model": model,
            "schemaName": schema.name,
            "finishReason": finish_reason(response),
            "timestamp": now_ms(),
        },
    )


async def stream_structured(
    client: Any,
    *,
    prompt: str,
    schema: SchemaDescriptor,
    model: str,
    temperature: float = 0.3,
    system_prompt: str = "",
    on_partial: Optional[Callable[[Any], Any]] = None,
    on_finish: Optional[Callable[[NodeSuccess], Any]] = None,
    on_error: Optional[Callable[[BaseException], Any]] = None,
) -> NodeResult:
    """
    Like generate_structured, reporting each new partial object via on_partial.

    Exactly one of on_finish(result) / on_error(exc) fires at the end.
    """
    buffer = ""
    last_partial: Any = None
    usage = None
    try:
        stream = await client.aio.models.generate_content_stream(
            model=model,
            contents=prompt,
            config=_config(schema, temperature, system_prompt),
        )
        async for chunk in stream:
            usage = usage_from_response(chunk) or usage
            if not chunk.text:
                continue
            buffer += chunk.text
            partial = parse_partial_json(buffer)
            if partial is not None and partial != last_partial:
                last_partial = partial
                await invoke_callback(on_partial, partial)
    except Exception as e:
        logger.warning("Structured stream with %s failed: %s", model, e)
        await invoke_error_callback(on_error, e)
        return node_failure(e, model=model, schemaName=schema.name)

    obj, error = _parse_final(buffer, schema)
    if error:
        logger.warning("Structured stream from %s rejected: %s", model, error)
        await invoke_error_callback(on_error, ValueError(error))
        return node_failure(error, model=model, schemaName=schema.name)
    result = NodeSuccess(
        object=obj,
        usage=usage,
        metadata={"model": model, "schemaName": schema.name, "timestamp": now_ms()},
    )
    await invoke_callback(on_finish, result)
    return result
