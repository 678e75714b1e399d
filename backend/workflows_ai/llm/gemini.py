"""
Thin helpers around the google-genai client shared by every node adapter.
"""
from __future__ import annotations

import base64
import logging
from typing import Any, Optional

from google import genai
from google.genai import types

from workflows_ai.models.results import TokenUsage

logger = logging.getLogger(__name__)


def create_client(api_key: Optional[str]) -> Optional[genai.Client]:
    if not api_key:
        logger.warning("GEMINI_API_KEY is not set; node calls will fail until it is configured")
        return None
    return genai.Client(api_key=api_key)


def generation_config(
    *,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
    system_prompt: Optional[str] = None,
    **extra: Any,
) -> types.GenerateContentConfig:
    return types.GenerateContentConfig(
        temperature=temperature,
        max_output_tokens=max_tokens,
        system_instruction=system_prompt or None,
        **extra,
    )


def build_contents(prompt: str, messages: Optional[list[dict[str, Any]]] = None) -> Any:
    """Plain prompt, or prior chat turns followed by the prompt as the last user turn."""
    if not messages:
        return prompt
    contents = []
    for message in messages:
        role = "model" if message.get("role") in ("assistant", "model") else "user"
        contents.append(
            types.Content(role=role, parts=[types.Part.from_text(text=str(message.get("content", "")))])
        )
    contents.append(types.Content(role="user", parts=[types.Part.from_text(text=prompt)]))
    return contents


def usage_from_response(response: Any) -> Optional[TokenUsage]:
    meta = getattr(response, "usage_metadata", None)
    if meta is None:
        return None
    prompt_tokens = getattr(meta, "prompt_token_count", None) or 0
    completion_tokens = getattr(meta, "candidates_token_count", None) or 0
    total_tokens = getattr(meta, "total_token_count", None) or prompt_tokens + completion_tokens
    return TokenUsage(
        prompt_tokens=prompt_tokens,
        completion_tokens=completion_tokens,
        total_tokens=total_tokens,
    )


def finish_reason(response: Any) -> Optional[str]:
    candidates = getattr(response, "candidates", None) or []
    if not candidates:
        return None
    reason = getattr(candidates[0], "finish_reason", None)
    if reason is None:
        return None
    return getattr(reason, "name", str(reason))


def inline_parts(response: Any) -> list[tuple[bytes, Optional[str]]]:
    """(data, mime_type) for every inline blob in the first candidate."""
    candidates = getattr(response, "candidates", None) or []
    if not candidates or candidates[0].content is None:
        return []
    found = []
    for part in candidates[0].content.parts or []:
        inline = getattr(part, "inline_data", None)
        if inline is not None and inline.data:
            found.append((inline.data, inline.mime_type))
    return found


def to_data_url(data: bytes, mime_type: str) -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode('utf-8')}"


def from_data_url(value: str) -> tuple[bytes, Optional[str]]:
    mime_type = None
    if value.startswith("data:"):
        header, value = value.split(",", 1)
        mime_type = header[5:].split(";", 1)[0] or None
    return base64.b64decode(value), mime_type
